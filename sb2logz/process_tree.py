"""
Process tree reconstruction.

Nodes live in an arena (a list) and refer to each other by arena index, so a
reused pid never loses the older process: the live table only maps a pid to
the arena slot of the process currently running under it.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set

from ._types import NO_PROGRAM, ProcessIdentity, ProgramKey, StartEvent, ExitEvent

logger = logging.getLogger("process_tree")

# sb2's own helper processes, e.g. 'sb2:Lua'
_BOOTSTRAP_NAME_RE = re.compile(r"^sb2:[A-Z][A-Za-z]*$")


def is_bootstrap_name(name: str) -> bool:
    return bool(_BOOTSTRAP_NAME_RE.match(name))


@dataclass
class Timing:
    elapsed: float
    user: float
    sys: float

    @property
    def cpu(self) -> float:
        return self.user + self.sys


@dataclass
class ProgramEntry:
    key: ProgramKey
    instances: int = 0
    executed: Set[ProgramKey] = field(default_factory=set)
    elapsed: float = 0.0
    user: float = 0.0
    sys: float = 0.0

    @property
    def exec_policy(self) -> str:
        return self.key[0]

    @property
    def exec_binary(self) -> str:
        return self.key[1]

    @property
    def cpu(self) -> float:
        return self.user + self.sys

    def add_timing(self, timing: Timing) -> None:
        self.elapsed += timing.elapsed
        self.user += timing.user
        self.sys += timing.sys


class ProgramTable:
    """Programs keyed by (exec_policy, exec_binary)."""

    def __init__(self):
        self.entries: Dict[ProgramKey, ProgramEntry] = {}

    def __len__(self):
        return len(self.entries)

    def __iter__(self) -> Iterator[ProgramEntry]:
        return iter(self.entries.values())

    def get(self, key: ProgramKey) -> Optional[ProgramEntry]:
        return self.entries.get(key)

    def get_or_create(self, key: ProgramKey) -> ProgramEntry:
        entry = self.entries.get(key)
        if entry is None:
            entry = self.entries[key] = ProgramEntry(key)
        return entry

    def add_instance(self, key: ProgramKey) -> ProgramEntry:
        entry = self.get_or_create(key)
        entry.instances += 1
        return entry

    def record_call(self, caller: Optional[ProgramKey], callee: ProgramKey) -> None:
        self.get_or_create(caller or NO_PROGRAM).executed.add(callee)


@dataclass
class ProcessNode:
    index: int
    pid: int
    ppid: int
    current_name: str
    current_exec_policy: str
    exec_binary: str
    program_ref: Optional[ProgramKey] = None
    parent: Optional[int] = None
    children: List[int] = field(default_factory=list)
    adopted_children: List[int] = field(default_factory=list)
    name_history: List[str] = field(default_factory=list)
    exec_policy_history: List[str] = field(default_factory=list)
    start_times: List[str] = field(default_factory=list)
    exit_status: Optional[str] = None
    timing: Optional[Timing] = None

    @property
    def all_children(self) -> List[int]:
        return self.children + self.adopted_children

    @property
    def label(self) -> str:
        return f"{self.current_name}[{self.pid}]"


class OrphanTable:
    """pid -> indirect pid announced before the process started."""

    def __init__(self):
        self._table: Dict[int, int] = {}

    def record(self, pid: int, indirect_pid: int) -> None:
        self._table[pid] = indirect_pid

    def lookup(self, pid: int) -> Optional[int]:
        return self._table.get(pid)


class ProcessTreeBuilder:
    """
    Consumes start/exit/exec-marker events in log order.

    One instance = one log stream.
    """

    def __init__(self):
        self.nodes: List[ProcessNode] = []
        self.live: Dict[int, int] = {}
        self.programs = ProgramTable()
        self.orphans = OrphanTable()
        self.first_process: Optional[int] = None
        # every start event, including ones without a pid
        self.process_name_counts: Counter = Counter()
        # starts that carried a pid
        self.instances_by_name: Counter = Counter()
        self.exits_unmatched = 0

    def node(self, index: int) -> ProcessNode:
        return self.nodes[index]

    def live_node(self, pid: int) -> Optional[ProcessNode]:
        index = self.live.get(pid)
        return self.nodes[index] if index is not None else None

    def parent_of(self, node: ProcessNode) -> Optional[ProcessNode]:
        return self.nodes[node.parent] if node.parent is not None else None

    def ancestors(self, node: ProcessNode) -> Iterator[ProcessNode]:
        seen = {node.index}
        parent = self.parent_of(node)
        while parent is not None and parent.index not in seen:
            seen.add(parent.index)
            yield parent
            parent = self.parent_of(parent)

    def roots(self) -> List[ProcessNode]:
        return [n for n in self.nodes if n.parent is None]

    # ----------------------------
    # Event handlers
    # ----------------------------

    def on_start(self, identity: ProcessIdentity, event: StartEvent, timestamp: str) -> Optional[ProcessNode]:
        self.process_name_counts[identity.name] += 1
        if identity.pid is None:
            return None
        self.instances_by_name[identity.name] += 1

        key: Optional[ProgramKey] = (event.exec_policy, event.exec_binary)
        if key == NO_PROGRAM:
            key = None
        else:
            self.programs.add_instance(key)

        node = self.live_node(identity.pid)
        if node is None:
            node = self._new_process(identity, event, key, timestamp)
        else:
            self._reexec(node, identity, event, key, timestamp)

        parent = self.parent_of(node)
        if parent is not None and key is not None:
            self.programs.record_call(parent.program_ref, key)
        return node

    def _new_process(self, identity: ProcessIdentity, event: StartEvent, key: Optional[ProgramKey],
                     timestamp: str) -> ProcessNode:
        node = ProcessNode(
            index=len(self.nodes),
            pid=identity.pid,
            ppid=event.ppid,
            current_name=identity.name,
            current_exec_policy=event.exec_policy,
            exec_binary=event.exec_binary,
            program_ref=key,
            start_times=[timestamp],
        )
        self.nodes.append(node)

        parent = self.live_node(event.ppid)
        if parent is not None:
            node.parent = parent.index
            parent.children.append(node.index)
        else:
            indirect = self.orphans.lookup(identity.pid)
            parent = self.live_node(indirect) if indirect is not None else None
            if parent is not None:
                node.parent = parent.index
                parent.adopted_children.append(node.index)
                logger.debug("Adopted %s under %s", node.label, parent.label)

        if self.first_process is None and not is_bootstrap_name(identity.name):
            self.first_process = node.index

        self.live[identity.pid] = node.index
        return node

    def _reexec(self, node: ProcessNode, identity: ProcessIdentity, event: StartEvent,
                key: Optional[ProgramKey], timestamp: str) -> None:
        node.name_history.append(node.current_name)
        node.exec_policy_history.append(node.current_exec_policy)
        node.start_times.append(timestamp)
        node.current_name = identity.name
        node.current_exec_policy = event.exec_policy
        if node.program_ref is None and key is not None:
            node.program_ref = key
            node.exec_binary = event.exec_binary

    def on_exit(self, event: ExitEvent) -> Optional[ProcessNode]:
        index = self.live.pop(event.pid, None)
        if index is None:
            self.exits_unmatched += 1
            return None
        node = self.nodes[index]
        node.exit_status = event.status
        return node

    def on_exec_marker(self, identity: ProcessIdentity, indirect_pid: int) -> None:
        if identity.pid is not None:
            self.orphans.record(identity.pid, indirect_pid)

    # ----------------------------
    # Statistics
    # ----------------------------

    def exit_statistics(self) -> Dict[str, int]:
        stats = {"success": 0, "failure": 0, "signaled": 0, "unknown": 0}
        for node in self.nodes:
            status = node.exit_status
            if status is None:
                stats["unknown"] += 1
            elif status == "0":
                stats["success"] += 1
            elif status.lstrip("-").isdigit():
                stats["failure"] += 1
            else:
                stats["signaled"] += 1
        return stats
