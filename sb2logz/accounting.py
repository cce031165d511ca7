"""
Process accounting correlation.

Reads Linux 'acct_v3' records (cf. /usr/include/linux/acct.h) and joins them
to the reconstructed process tree by (pid, ppid).
"""

from __future__ import annotations

import logging
import os
import struct
from collections import defaultdict
from dataclasses import dataclass
from typing import BinaryIO, Dict, Iterable, Iterator, List, Optional, Tuple

from .process_tree import ProcessTreeBuilder, Timing

logger = logging.getLogger("accounting")

ACCT_VERSION = 3
# set in the version byte when the record was written big-endian
ACCT_BYTEORDER = 0x80

# flag, version, tty, exitcode, uid, gid, pid, ppid, btime, etime,
# utime, stime, mem, io, rw, minflt, majflt, swaps, comm
_ACCT_V3 = struct.Struct("<BBHIIIIIIfHHHHHHHH16s")
RECORD_SIZE = _ACCT_V3.size


class UnknownAccountingFormat(Exception):
    pass


@dataclass(frozen=True)
class AccountingRecord:
    version: int
    pid: int
    ppid: int
    elapsed_ticks: float
    user_ticks: int
    sys_ticks: int
    command: str = ""


def decode_comp_t(value: int) -> int:
    """comp_t: 13-bit mantissa, 3-bit base-8 exponent."""
    return (value & 0x1FFF) << (((value >> 13) & 0x7) * 3)


def decode_record(data: bytes) -> AccountingRecord:
    fields = _ACCT_V3.unpack(data)
    version = fields[1]
    if version != ACCT_VERSION:
        raise UnknownAccountingFormat(
            f"Unsupported accounting record version {version:#04x} (need {ACCT_VERSION:#04x}, little-endian)"
        )
    comm = fields[18].split(b"\0", 1)[0].decode("utf-8", "replace")
    return AccountingRecord(
        version=version,
        pid=fields[6],
        ppid=fields[7],
        elapsed_ticks=fields[9],
        user_ticks=decode_comp_t(fields[10]),
        sys_ticks=decode_comp_t(fields[11]),
        command=comm,
    )


def read_records(f: BinaryIO) -> Iterator[AccountingRecord]:
    while True:
        data = f.read(RECORD_SIZE)
        if len(data) < RECORD_SIZE:
            if data:
                logger.warning("Ignoring truncated accounting record (%d bytes)", len(data))
            return
        yield decode_record(data)


def default_clock_ticks() -> int:
    try:
        return os.sysconf("SC_CLK_TCK")
    except (ValueError, OSError, AttributeError):
        return 100


class AccountingCorrelator:
    """
    Attach accounting timings to processes and their programs.

    A version mismatch raises UnknownAccountingFormat; nothing is applied in
    that case because records are decoded before any of them is stored.
    """

    def __init__(self, tree: ProcessTreeBuilder, clock_ticks: Optional[int] = None):
        self.tree = tree
        self.clock_ticks = clock_ticks or default_clock_ticks()
        self.records_total = 0
        self.matched = 0
        self.max_elapsed = 0.0
        self.total_user = 0.0
        self.total_sys = 0.0

        self._candidates: Dict[Tuple[int, int], List[int]] = defaultdict(list)
        for node in tree.nodes:
            self._candidates[(node.pid, node.ppid)].append(node.index)

    @property
    def unmatched(self) -> int:
        return self.records_total - self.matched

    @property
    def total_cpu(self) -> float:
        return self.total_user + self.total_sys

    def correlate(self, records: Iterable[AccountingRecord]) -> int:
        records = list(records)
        for rec in records:
            self._apply(rec)
        logger.info("Correlated %d of %d accounting records", self.matched, self.records_total)
        return self.matched

    def correlate_file(self, f: BinaryIO) -> int:
        return self.correlate(read_records(f))

    def _apply(self, rec: AccountingRecord) -> None:
        self.records_total += 1
        slots = self._candidates.get((rec.pid, rec.ppid))
        if not slots:
            return
        node = next((self.tree.node(i) for i in slots if self.tree.node(i).timing is None), None)
        if node is None:
            return

        timing = Timing(
            elapsed=rec.elapsed_ticks / self.clock_ticks,
            user=rec.user_ticks / self.clock_ticks,
            sys=rec.sys_ticks / self.clock_ticks,
        )
        node.timing = timing
        self.matched += 1

        if node.program_ref is not None:
            program = self.tree.programs.get(node.program_ref)
            if program is not None:
                program.add_timing(timing)

        self.max_elapsed = max(self.max_elapsed, timing.elapsed)
        self.total_user += timing.user
        self.total_sys += timing.sys
