import io

import pytest

from sb2logz.diagram import (
    STYLE_DASHED,
    STYLE_SOLID,
    Load,
    build_call_graph,
    build_process_diagram,
    classify_load,
    classify_rank,
)
from sb2logz.log_analyzer import SessionLogAnalyzer
from sb2logz.process_tree import Timing
from tests.utils.loglines import acct_record, exec_marker, line, start


# ------------------ Load classification -----------------------


@pytest.mark.parametrize(
    "index, expected",
    [
        (0, Load.TOP),
        (2, Load.TOP),
        (3, Load.HIGH),
        (9, Load.HIGH),
        (10, Load.MEDIUM),
        (19, Load.MEDIUM),
        (20, None),
        (99, None),
    ],
)
def test_classify_rank_boundaries_at_100(index, expected):
    assert classify_rank(index, 100) is expected


def test_classify_rank_small_population():
    # 3% of 10 is below the first rank, 10% of 10 is exactly rank 1
    assert classify_rank(0, 10) is Load.HIGH
    assert classify_rank(1, 10) is Load.MEDIUM
    assert classify_rank(2, 10) is None


class _Entity:
    def __init__(self, cpu):
        self.cpu = cpu


def test_classify_load_ranks_by_cpu_descending():
    entities = [_Entity(float(i)) for i in range(1, 101)]  # cpu 1..100
    loads = classify_load(entities, lambda e: e.cpu)

    by_cpu = {e.cpu: loads.get(id(e)) for e in entities}
    assert by_cpu[100.0] is Load.TOP
    assert by_cpu[98.0] is Load.TOP
    assert by_cpu[97.0] is Load.HIGH
    assert by_cpu[81.0] is Load.MEDIUM
    assert by_cpu[80.0] is None
    assert len(loads) == 20


def test_classify_load_skips_idle_entities():
    entities = [_Entity(0.0) for _ in range(100)]
    assert classify_load(entities, lambda e: e.cpu) == {}


# ------------------ Process diagram -----------------------


def _tree_lines():
    return [
        line("sh[10]", start(1, binary="/bin/sh")),
        line("make[11]", start(10, binary="/usr/bin/make")),
        line("cc[12]", start(11, binary="/usr/bin/cc")),
        line("cc[13]", start(11, binary="/usr/bin/cc")),
        line("ls[14]", start(10, binary="/bin/ls")),
        line("x[15]", exec_marker(11)),
        line("ld[15]", start(999, binary="/usr/bin/ld")),
    ]


def test_process_diagram_without_timing_shows_everything():
    analyzer = SessionLogAnalyzer(_tree_lines())
    diagram = analyzer.process_diagram()

    assert len(diagram.nodes) == 6
    assert all(n.color is None for n in diagram.nodes)
    edges = {(e.source, e.target): e.style for e in diagram.edges}
    assert edges[("p0", "p1")] == STYLE_SOLID
    assert edges[("p1", "p2")] == STYLE_SOLID
    assert edges[("p1", "p5")] == STYLE_DASHED
    assert len(edges) == 5


def test_process_diagram_keeps_ancestors_and_folds_hidden_children():
    analyzer = SessionLogAnalyzer(_tree_lines())
    nodes = analyzer.tree.nodes
    # only cc[12] is busy
    nodes[2].timing = Timing(elapsed=4.0, user=3.0, sys=1.0)
    for n in nodes:
        if n.timing is None:
            n.timing = Timing(0.0, 0.0, 0.0)

    diagram = build_process_diagram(analyzer.tree, max_elapsed=4.0, total_cpu=4.0)
    ids = {n.id for n in diagram.nodes}

    # 1 of 6 entities: rank 1 is within 20% of 6 -> medium
    assert diagram.node("p2").color == "yellow"
    assert {"p0", "p1", "p2"} <= ids
    assert "p3" not in ids and "p4" not in ids and "p5" not in ids

    assert diagram.node("p1_hidden").label == "2 child processes"
    assert diagram.node("p0_hidden").label == "1 child processes"
    assert "100.0%" in diagram.node("p2").label
    edges = {(e.source, e.target): e.style for e in diagram.edges}
    assert edges[("p1", "p1_hidden")] == STYLE_SOLID


def test_folded_adopted_children_keep_dashed_edge():
    lines = [line("sh[10]", start(1, binary="/bin/sh")), line("cc[11]", start(10, binary="/usr/bin/cc"))]
    for pid in (12, 13, 14):
        lines += [line(f"x[{pid}]", exec_marker(10)), line(f"ld[{pid}]", start(999, binary="/usr/bin/ld"))]
    analyzer = SessionLogAnalyzer(lines)
    for n in analyzer.tree.nodes:
        n.timing = Timing(0.0, 0.0, 0.0)
    analyzer.tree.nodes[1].timing = Timing(elapsed=2.0, user=2.0, sys=0.0)

    diagram = build_process_diagram(analyzer.tree, max_elapsed=2.0, total_cpu=2.0)

    assert {n.id for n in diagram.nodes} == {"p0", "p1", "p0_hidden"}
    assert diagram.node("p0_hidden").label == "3 child processes"
    edges = {(e.source, e.target): e.style for e in diagram.edges}
    assert edges[("p0", "p1")] == STYLE_SOLID
    assert edges[("p0", "p0_hidden")] == STYLE_DASHED


def test_process_diagram_labels_show_exit_and_history():
    analyzer = SessionLogAnalyzer([
        line("sh[10]", start(1)),
        line("make[10]", start(1, binary="/usr/bin/make")),
    ])
    label = analyzer.process_diagram().node("p0").label
    assert "make[10]" in label
    assert "was: sh" in label
    assert "exit: ?" in label


# ------------------ Call graph -----------------------


def test_call_graph_from_accounting():
    analyzer = SessionLogAnalyzer(_tree_lines())
    data = acct_record(12, 11, utime=500, stime=100) + acct_record(14, 10, utime=1)
    analyzer.correlate_accounting(io.BytesIO(data), clock_ticks=100)

    graph = analyzer.call_graph()
    ids = {n.id for n in graph.nodes}
    assert "prog:Default:/usr/bin/cc" in ids
    edges = {(e.source, e.target) for e in graph.edges}
    assert ("prog:Default:/bin/sh", "prog:Default:/usr/bin/make") in edges
    assert ("prog:Default:/usr/bin/make", "prog:Default:/usr/bin/cc") in edges
    assert ("prog:Default:/usr/bin/make", "prog:Default:/usr/bin/ld") in edges
    assert all(e.style == STYLE_SOLID for e in graph.edges)

    cc = graph.node("prog:Default:/usr/bin/cc")
    assert "2x" in cc.label
    # 5 programs, rank 1 is within 20%
    assert cc.color == "yellow"


def test_call_graph_without_timing_has_no_colors():
    analyzer = SessionLogAnalyzer(_tree_lines())
    graph = build_call_graph(analyzer.tree)
    assert len(graph.nodes) == 5
    assert all(n.color is None for n in graph.nodes)
