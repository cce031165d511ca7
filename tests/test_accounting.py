import io

import pytest

from sb2logz.accounting import (
    ACCT_BYTEORDER,
    ACCT_VERSION,
    RECORD_SIZE,
    AccountingCorrelator,
    UnknownAccountingFormat,
    decode_comp_t,
    decode_record,
    read_records,
)
from sb2logz.log_analyzer import SessionLogAnalyzer
from tests.utils.loglines import acct_record, exited, line, start


@pytest.fixture
def analyzer():
    lines = [
        line("sh[10]", start(1, binary="/bin/sh")),
        line("gcc[11]", start(10, binary="/usr/bin/gcc")),
        line("sh[10]", exited(11, 0)),
        line("gcc[11]", start(10, binary="/usr/bin/gcc")),
    ]
    return SessionLogAnalyzer(lines)


def test_record_size():
    assert RECORD_SIZE == 64


@pytest.mark.parametrize("value, expected", [(0, 0), (100, 100), (0x1FFF, 0x1FFF), (0x2001, 8), (0x4003, 192)])
def test_decode_comp_t(value, expected):
    assert decode_comp_t(value) == expected


def test_decode_record():
    rec = decode_record(acct_record(11, 10, etime=250.0, utime=120, stime=30, comm=b"gcc"))
    assert (rec.version, rec.pid, rec.ppid) == (3, 11, 10)
    assert rec.elapsed_ticks == 250.0
    assert (rec.user_ticks, rec.sys_ticks) == (120, 30)
    assert rec.command == "gcc"


def test_decode_record_rejects_other_versions():
    with pytest.raises(UnknownAccountingFormat):
        decode_record(acct_record(1, 0, version=2))


def test_decode_record_rejects_big_endian_records():
    with pytest.raises(UnknownAccountingFormat):
        decode_record(acct_record(11, 10, version=ACCT_VERSION | ACCT_BYTEORDER))


def test_read_records_ignores_truncated_tail():
    data = acct_record(1, 0) + acct_record(2, 1) + b"\0" * 10
    assert [r.pid for r in read_records(io.BytesIO(data))] == [1, 2]


def test_correlation_matches_pid_and_ppid(analyzer):
    data = b"".join([
        acct_record(11, 10, etime=200.0, utime=100, stime=50),
        acct_record(11, 99, etime=900.0, utime=900, stime=900),  # same pid, other parent
        acct_record(10, 1, etime=500.0, utime=10, stime=10),
    ])
    correlator = analyzer.correlate_accounting(io.BytesIO(data), clock_ticks=100)

    sh, gcc_first, gcc_second = analyzer.tree.nodes
    assert correlator.records_total == 3
    assert correlator.matched == 2
    assert correlator.unmatched == 1
    assert gcc_first.timing.elapsed == pytest.approx(2.0)
    assert gcc_first.timing.user == pytest.approx(1.0)
    assert gcc_first.timing.sys == pytest.approx(0.5)
    assert gcc_second.timing is None
    assert sh.timing.elapsed == pytest.approx(5.0)

    assert correlator.max_elapsed == pytest.approx(5.0)
    assert correlator.total_user == pytest.approx(1.1)
    assert correlator.total_sys == pytest.approx(0.6)


def test_reused_pid_records_match_in_order(analyzer):
    data = acct_record(11, 10, utime=100) + acct_record(11, 10, utime=300)
    AccountingCorrelator(analyzer.tree, clock_ticks=100).correlate_file(io.BytesIO(data))

    _, gcc_first, gcc_second = analyzer.tree.nodes
    assert gcc_first.timing.user == pytest.approx(1.0)
    assert gcc_second.timing.user == pytest.approx(3.0)
    gcc = analyzer.tree.programs.get(("Default", "/usr/bin/gcc"))
    assert gcc.user == pytest.approx(4.0)
    assert gcc.instances == 2


def test_version_mismatch_aborts_without_partial_results(analyzer):
    data = acct_record(10, 1, utime=100) + acct_record(11, 10, version=2)
    with pytest.raises(UnknownAccountingFormat):
        analyzer.correlate_accounting(io.BytesIO(data), clock_ticks=100)
    assert all(n.timing is None for n in analyzer.tree.nodes)
    assert analyzer.accounting is None
