# tests/conftest.py
import pytest

from tests.utils.loglines import exited, line, mapped, start


@pytest.fixture
def write_log(tmp_path):
    """Write the given lines to a log file and return its path."""
    def _write(lines, name="sb2.log"):
        path = tmp_path / name
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return str(path)
    return _write


@pytest.fixture
def scenario_a_lines():
    return [
        "#SBOX_TARGET_ROOT=/target",
        line("sh[100]", start(1)),
        line("sh[100]", mapped("open", "/target/etc/x", "/etc/x")),
        line("sh[100]", exited(100, 0)),
    ]
