from __future__ import annotations

from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

# (exec_policy, exec_binary)
ProgramKey = Tuple[str, str]

NO_PROGRAM: ProgramKey = ("", "")


class Level(Enum):
    ERROR = "ERROR"
    WARNING = "WARNING"
    NOTICE = "NOTICE"


@dataclass(frozen=True)
class LogRecord:
    timestamp: str
    level: Optional[Level]
    process_token: str
    message: str
    source_location: Optional[str] = None

    def __str__(self):
        lvl = f" ({self.level.value})" if self.level else ""
        return f"{self.timestamp}{lvl} {self.process_token}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["level"] = self.level.value if self.level else None
        return d


@dataclass(frozen=True)
class ProcessIdentity:
    name: str
    pid: Optional[int] = None
    tid: int = 0


@dataclass
class SessionInfo:
    target_root: Optional[str] = None
    tools_root: Optional[str] = None
    mapping_mode: Optional[str] = None
    variables: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class StartEvent:
    version: str
    build: str
    ppid: int
    exec_binary: str
    exec_policy: str


@dataclass(frozen=True)
class ExitEvent:
    pid: int
    status: str


@dataclass(frozen=True)
class ExecMarkerEvent:
    indirect_pid: int


@dataclass(frozen=True)
class MappedEvent:
    function: str
    source: str
    destination: str


@dataclass(frozen=True)
class PassedEvent:
    function: str
    path: str


@dataclass(frozen=True)
class DisabledPassedEvent:
    function: str
    path: str


Event = Union[StartEvent, ExitEvent, ExecMarkerEvent, MappedEvent, PassedEvent, DisabledPassedEvent]
