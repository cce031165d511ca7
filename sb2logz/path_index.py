"""
Path mapping indexes.

Every mapped event is stored twice, by source (referencing the destination)
and by destination (referencing the source), so ambiguous mappings in either
direction show up as entries with more than one reference.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from ._types import DisabledPassedEvent, MappedEvent, PassedEvent, SessionInfo

logger = logging.getLogger("path_index")

TARGET_ROOT_PLACEHOLDER = "<TARGET_ROOT>"
TOOLS_ROOT_PLACEHOLDER = "<TOOLS_ROOT>"

# stat-family calls normally follow an open/access of the same path
DEFAULT_BLACKLIST: FrozenSet[str] = frozenset({
    "stat", "stat64", "lstat", "lstat64", "fstatat", "fstatat64", "newfstatat", "statx",
    "__xstat", "__xstat64", "__lxstat", "__lxstat64", "__fxstatat", "__fxstatat64",
})


class PathCategory(Enum):
    MAPPED_BY_SOURCE = "mapped_by_source"
    MAPPED_BY_DESTINATION = "mapped_by_destination"
    PASSED = "passed"
    DISABLED_PASSED = "disabled_passed"


@dataclass
class PathEntry:
    path: str
    count: int = 0
    functions: Set[str] = field(default_factory=set)
    processes: Set[str] = field(default_factory=set)
    references: Set[str] = field(default_factory=set)

    @property
    def ambiguous(self) -> bool:
        return len(self.references) > 1

    def to_dict(self) -> Dict[str, object]:
        return {
            "path": self.path,
            "count": self.count,
            "functions": sorted(self.functions),
            "processes": sorted(self.processes),
            "references": sorted(self.references),
        }


def build_blacklist(disabled: bool = False, extend: Iterable[str] = ()) -> FrozenSet[str]:
    if disabled:
        return frozenset()
    return DEFAULT_BLACKLIST | frozenset(f.strip() for f in extend if f.strip())


class PathMappingAggregator:
    """
    Four independent path indexes fed by mapped/passed/disabled events.

    The blacklist is fixed at construction; the session (for root
    substitution) is shared with the parser and read on every event.
    """

    def __init__(self, session: Optional[SessionInfo] = None, blacklist: Optional[Iterable[str]] = None):
        self.session = session if session is not None else SessionInfo()
        self.blacklist: FrozenSet[str] = DEFAULT_BLACKLIST if blacklist is None else frozenset(blacklist)
        self.indexes: Dict[PathCategory, Dict[str, PathEntry]] = {c: {} for c in PathCategory}
        self.skipped_blacklisted = 0

    @property
    def by_source(self) -> Dict[str, PathEntry]:
        return self.indexes[PathCategory.MAPPED_BY_SOURCE]

    @property
    def by_destination(self) -> Dict[str, PathEntry]:
        return self.indexes[PathCategory.MAPPED_BY_DESTINATION]

    @property
    def passed(self) -> Dict[str, PathEntry]:
        return self.indexes[PathCategory.PASSED]

    @property
    def disabled_passed(self) -> Dict[str, PathEntry]:
        return self.indexes[PathCategory.DISABLED_PASSED]

    def substitute_roots(self, path: str) -> str:
        roots: List[Tuple[str, str]] = []
        if self.session.target_root:
            roots.append((self.session.target_root, TARGET_ROOT_PLACEHOLDER))
        if self.session.tools_root:
            roots.append((self.session.tools_root, TOOLS_ROOT_PLACEHOLDER))
        # nested roots: the longer prefix is the more specific one
        for root, placeholder in sorted(roots, key=lambda r: len(r[0]), reverse=True):
            if path.startswith(root):
                return placeholder + path[len(root):]
        return path

    def _upsert(self, category: PathCategory, path: str, function: str, process: str,
                reference: Optional[str] = None) -> PathEntry:
        index = self.indexes[category]
        entry = index.get(path)
        if entry is None:
            entry = index[path] = PathEntry(path)
        entry.count += 1
        entry.functions.add(function)
        entry.processes.add(process)
        if reference is not None:
            entry.references.add(reference)
        return entry

    def _blacklisted(self, function: str) -> bool:
        if function in self.blacklist:
            self.skipped_blacklisted += 1
            return True
        return False

    def on_mapped(self, event: MappedEvent, process: str) -> None:
        if self._blacklisted(event.function):
            return
        src = self.substitute_roots(event.source)
        dest = self.substitute_roots(event.destination)
        self._upsert(PathCategory.MAPPED_BY_SOURCE, src, event.function, process, dest)
        self._upsert(PathCategory.MAPPED_BY_DESTINATION, dest, event.function, process, src)

    def on_passed(self, event: PassedEvent, process: str) -> None:
        if self._blacklisted(event.function):
            return
        self._upsert(PathCategory.PASSED, self.substitute_roots(event.path), event.function, process)

    def on_disabled_passed(self, event: DisabledPassedEvent, process: str) -> None:
        if self._blacklisted(event.function):
            return
        self._upsert(PathCategory.DISABLED_PASSED, self.substitute_roots(event.path), event.function, process)

    def ambiguous(self) -> Dict[PathCategory, List[PathEntry]]:
        """Mapped entries that resolved to more than one counterpart path."""
        return {
            category: [e for _, e in sorted(self.indexes[category].items()) if e.ambiguous]
            for category in (PathCategory.MAPPED_BY_SOURCE, PathCategory.MAPPED_BY_DESTINATION)
        }

    def counts(self) -> Dict[str, int]:
        return {c.value: len(index) for c, index in self.indexes.items()}
