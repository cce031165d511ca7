"""
Diagram models for the process tree and the program call graph.

Only the data contract is produced here: labeled nodes with an optional
color and directed edges with an optional style. Turning it into dot or any
other syntax is left to the consumer.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, TypeVar

from .process_tree import ProcessNode, ProcessTreeBuilder, ProgramEntry

T = TypeVar("T")


class Load(Enum):
    TOP = "top"
    HIGH = "high"
    MEDIUM = "medium"


# (load, percent of the ranked population)
LOAD_THRESHOLDS = ((Load.TOP, 3), (Load.HIGH, 10), (Load.MEDIUM, 20))

LOAD_COLORS = {
    Load.TOP: "red",
    Load.HIGH: "orange",
    Load.MEDIUM: "yellow",
}

STYLE_SOLID = "solid"
STYLE_DASHED = "dashed"


def classify_rank(index: int, total: int) -> Optional[Load]:
    """Load class of the entity at 0-based position `index` of `total`."""
    rank = index + 1
    for load, percent in LOAD_THRESHOLDS:
        if rank * 100 <= total * percent:
            return load
    return None


def classify_load(entities: Sequence[T], cpu: Callable[[T], float]) -> Dict[int, Load]:
    """
    Rank entities by cpu time (descending) and return {id(entity): Load}.

    Entities without any cpu time take part in the ranking but are never
    classified.
    """
    ranked = sorted(entities, key=cpu, reverse=True)
    result: Dict[int, Load] = {}
    for i, entity in enumerate(ranked):
        if cpu(entity) <= 0:
            break
        load = classify_rank(i, len(ranked))
        if load is None:
            break
        result[id(entity)] = load
    return result


@dataclass
class DiagramNode:
    id: str
    label: str
    color: Optional[str] = None


@dataclass
class DiagramEdge:
    source: str
    target: str
    style: str = STYLE_SOLID


@dataclass
class Diagram:
    name: str
    nodes: List[DiagramNode] = field(default_factory=list)
    edges: List[DiagramEdge] = field(default_factory=list)

    def node(self, node_id: str) -> Optional[DiagramNode]:
        return next((n for n in self.nodes if n.id == node_id), None)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _percent(part: float, whole: float) -> str:
    return f"{100.0 * part / whole:.1f}%" if whole > 0 else "-"


def _process_label(node: ProcessNode, max_elapsed: float, total_cpu: float) -> str:
    lines = [node.label]
    if node.name_history:
        lines.append("was: " + ", ".join(node.name_history))
    if node.exec_binary:
        lines.append(node.exec_binary)
    status = node.exit_status if node.exit_status is not None else "?"
    lines.append(f"exit: {status}")
    if node.timing is not None:
        t = node.timing
        lines.append(f"elapsed {t.elapsed:.2f}s ({_percent(t.elapsed, max_elapsed)})")
        lines.append(f"cpu {t.cpu:.2f}s ({_percent(t.cpu, total_cpu)})")
    return "\n".join(lines)


def _program_id(program: ProgramEntry) -> str:
    return f"prog:{program.exec_policy}:{program.exec_binary}"


def _program_label(program: ProgramEntry, total_cpu: float) -> str:
    if not program.exec_policy and not program.exec_binary:
        return "(unknown)"
    lines = [program.exec_binary or "?", f"[{program.exec_policy or '?'}]", f"{program.instances}x"]
    if program.cpu > 0:
        lines.append(f"cpu {program.cpu:.2f}s ({_percent(program.cpu, total_cpu)})")
    return "\n".join(lines)


def build_process_diagram(tree: ProcessTreeBuilder, max_elapsed: float = 0.0, total_cpu: float = 0.0) -> Diagram:
    """
    Process tree diagram.

    With timing data, only root processes, loaded processes and their
    ancestors are drawn; hidden children of a drawn process are folded into
    one "N child processes" node. Without timing data, every process is drawn.
    """
    diagram = Diagram("processes")
    loads = classify_load(tree.nodes, lambda n: n.timing.cpu if n.timing else 0.0)
    has_timing = any(n.timing is not None for n in tree.nodes)

    if has_timing:
        visible: Set[int] = {n.index for n in tree.roots()}
        for node in tree.nodes:
            if id(node) in loads:
                visible.add(node.index)
                visible.update(a.index for a in tree.ancestors(node))
    else:
        visible = {n.index for n in tree.nodes}

    def node_id(node: ProcessNode) -> str:
        return f"p{node.index}"

    for node in tree.nodes:
        if node.index not in visible:
            continue
        load = loads.get(id(node))
        diagram.nodes.append(DiagramNode(
            node_id(node),
            _process_label(node, max_elapsed, total_cpu),
            LOAD_COLORS[load] if load else None,
        ))
        for child_index in node.children:
            if child_index in visible:
                diagram.edges.append(DiagramEdge(node_id(node), node_id(tree.node(child_index)), STYLE_SOLID))
        for child_index in node.adopted_children:
            if child_index in visible:
                diagram.edges.append(DiagramEdge(node_id(node), node_id(tree.node(child_index)), STYLE_DASHED))

        hidden = [c for c in node.all_children if c not in visible]
        if hidden:
            placeholder = f"{node_id(node)}_hidden"
            diagram.nodes.append(DiagramNode(placeholder, f"{len(hidden)} child processes"))
            adopted_only = all(c in node.adopted_children for c in hidden)
            style = STYLE_DASHED if adopted_only else STYLE_SOLID
            diagram.edges.append(DiagramEdge(node_id(node), placeholder, style))
    return diagram


def build_call_graph(tree: ProcessTreeBuilder, total_cpu: float = 0.0) -> Diagram:
    """Program call graph: one node per program, one edge per distinct call."""
    diagram = Diagram("programs")
    programs = list(tree.programs)
    loads = classify_load(programs, lambda p: p.cpu)

    for program in programs:
        if not program.instances and not program.executed:
            continue
        load = loads.get(id(program))
        diagram.nodes.append(DiagramNode(
            _program_id(program),
            _program_label(program, total_cpu),
            LOAD_COLORS[load] if load else None,
        ))
    for program in programs:
        for callee in sorted(program.executed):
            target = tree.programs.get(callee)
            if target is not None:
                diagram.edges.append(DiagramEdge(_program_id(program), _program_id(target), STYLE_SOLID))
    return diagram
