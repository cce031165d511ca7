"""
Line parser for sb2 session logs.

A data line looks like:

    2024-05-02 10:11:12.345 (NOTICE)<TAB>sh[100]<TAB>message text<TAB>[file.c:123]

Comment lines start with '#' and carry session variables such as
'#SBOX_TARGET_ROOT=/path'. Messages are further matched against an ordered
list of event patterns; the first match wins and unmatched messages are
informational only.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Pattern, Tuple

from ._types import (
    DisabledPassedEvent,
    Event,
    ExecMarkerEvent,
    ExitEvent,
    Level,
    LogRecord,
    MappedEvent,
    PassedEvent,
    ProcessIdentity,
    SessionInfo,
    StartEvent,
)

logger = logging.getLogger("log_parser")

COMMENT_PREFIX = "#"

# session variable name -> SessionInfo attribute
SESSION_VARIABLES = {
    "SBOX_TARGET_ROOT": "target_root",
    "SBOX_TOOLS_ROOT": "tools_root",
    "SBOX_MAPMODE": "mapping_mode",
}

_COMMENT_VAR_RE = re.compile(r"^#\s*([A-Za-z_][A-Za-z0-9_]*)=(.*)$")
_TIMESTAMP_RE = re.compile(r"^(?P<ts>.*?)\s*\((?P<level>[A-Z]+)\)\s*$")

# Anchored at the end: the name part may itself contain brackets.
_IDENTITY_PID_TID_RE = re.compile(r"^(?P<name>.*)\[(?P<pid>\d+)/(?P<tid>\d+)\]$")
_IDENTITY_PID_RE = re.compile(r"^(?P<name>.*)\[(?P<pid>\d+)\]$")


def resolve_identity(token: str) -> ProcessIdentity:
    """Decode 'name[pid/tid]' or 'name[pid]'; anything else has no pid."""
    token = token.strip()
    m = _IDENTITY_PID_TID_RE.match(token)
    if m:
        return ProcessIdentity(m.group("name"), int(m.group("pid")), int(m.group("tid")))
    m = _IDENTITY_PID_RE.match(token)
    if m:
        return ProcessIdentity(m.group("name"), int(m.group("pid")))
    return ProcessIdentity(token)


# ----------------------------
# Event dispatch
# ----------------------------

def _start(m: re.Match) -> Event:
    return StartEvent(
        version=m.group("version"),
        build=m.group("build"),
        ppid=int(m.group("ppid")),
        exec_binary=m.group("binary"),
        exec_policy=m.group("policy"),
    )


def _exit_status(m: re.Match) -> Event:
    return ExitEvent(pid=int(m.group("pid")), status=m.group("status"))


def _exit_signal(m: re.Match) -> Event:
    return ExitEvent(pid=int(m.group("pid")), status=m.group("signal").strip())


def _exec_marker(m: re.Match) -> Event:
    return ExecMarkerEvent(indirect_pid=int(m.group("ipid")))


def _mapped(m: re.Match) -> Event:
    return MappedEvent(m.group("func"), m.group("src"), m.group("dest"))


def _passed(m: re.Match) -> Event:
    return PassedEvent(m.group("func"), m.group("path"))


def _disabled(m: re.Match) -> Event:
    return DisabledPassedEvent(m.group("func"), m.group("path"))


EVENT_PATTERNS: List[Tuple[Pattern[str], Callable[[re.Match], Event]]] = [
    (
        re.compile(
            r"^-+\s*Starting\s+\((?P<version>[^)]*)\)\s+\[(?P<build>[^\]]*)\]\s+"
            r"ppid=(?P<ppid>\d+)\s+<(?P<binary>[^>]*)>\s+\((?P<policy>[^)]*)\)"
        ),
        _start,
    ),
    (re.compile(r"^Process\s+(?P<pid>\d+)\s+exit\s+status=(?P<status>-?\d+)\s*$"), _exit_status),
    (re.compile(r"^Process\s+(?P<pid>\d+)\s+terminated\s+by\s+signal\s+(?P<signal>.+)$"), _exit_signal),
    (re.compile(r"^EXEC\b.*\bindirect\s+pid=(?P<ipid>\d+)"), _exec_marker),
    (re.compile(r"^pass:\s+(?P<func>[\w.]+)\s+'(?P<path>.*)'\s*$"), _passed),
    (re.compile(r"^disabled\(E\):\s+(?P<func>[\w.]+)\s+'(?P<path>.*)'\s*$"), _disabled),
    (re.compile(r"^(?P<func>[\w.]+)\s+'(?P<src>.*?)'\s+->\s+'(?P<dest>.*)'\s*$"), _mapped),
]


def match_event(message: str) -> Optional[Event]:
    for pattern, factory in EVENT_PATTERNS:
        m = pattern.match(message)
        if m:
            return factory(m)
    return None


# ----------------------------
# Record parser
# ----------------------------

class LogParser:
    """
    Turns raw log lines into LogRecords.

    Keeps the session variables found in comment lines and the records
    collected per level. One instance = one log stream.
    """

    MIN_FIELDS = 3
    MAX_FIELDS = 4

    def __init__(self):
        self.session = SessionInfo()
        self.by_level: Dict[Level, List[LogRecord]] = defaultdict(list)
        self.lines_total = 0
        self.lines_comment = 0
        self.lines_discarded = 0
        self.records_total = 0
        self.first_timestamp: Optional[str] = None
        self.last_timestamp: Optional[str] = None

    def _parse_comment(self, line: str) -> None:
        m = _COMMENT_VAR_RE.match(line)
        if not m:
            return
        key, value = m.group(1), m.group(2).strip()
        attr = SESSION_VARIABLES.get(key)
        if attr:
            setattr(self.session, attr, value or None)
        else:
            self.session.variables[key] = value

    def parse_line(self, line: str) -> Optional[LogRecord]:
        line = line.rstrip("\r\n")
        self.lines_total += 1
        if not line:
            self.lines_discarded += 1
            return None

        if line.startswith(COMMENT_PREFIX):
            self.lines_comment += 1
            self._parse_comment(line)
            return None

        fields = line.split("\t", self.MAX_FIELDS)[: self.MAX_FIELDS]
        if len(fields) < self.MIN_FIELDS:
            self.lines_discarded += 1
            logger.debug("Discarding malformed line %d: %r", self.lines_total, line)
            return None

        timestamp, level = fields[0].strip(), None
        m = _TIMESTAMP_RE.match(fields[0])
        if m:
            try:
                level = Level(m.group("level"))
                timestamp = m.group("ts")
            except ValueError:
                # INFO, DEBUG etc. are not collected
                timestamp = m.group("ts")

        source = fields[3].strip() if len(fields) > 3 and fields[3].strip() else None
        record = LogRecord(timestamp, level, fields[1].strip(), fields[2], source)

        self.records_total += 1
        if timestamp:
            if self.first_timestamp is None:
                self.first_timestamp = timestamp
            self.last_timestamp = timestamp
        if level is not None:
            self.by_level[level].append(record)
        return record

    def parse(self, lines: Iterable[str]) -> Iterator[LogRecord]:
        for raw in lines:
            record = self.parse_line(raw)
            if record is not None:
                yield record
