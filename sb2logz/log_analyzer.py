#!/usr/bin/env python3
"""
sb2 Session Log Analyzer
============================================

- Single forward pass over the log; every line is parsed once and routed to
  the process tree builder or the path mapping aggregator.
- Process tree with re-exec history, reused pids and orphan adoption through
  'indirect pid' exec markers.
- Path indexes: mapped (by source and by destination), passed, disabled.
  Entries with more than one counterpart are reported as "multiple mappings".
- Optional process accounting correlation adds per-process and per-program
  timings, used for load classification in the diagrams.

Usage:
  analyzer = SessionLogAnalyzer(open("sb2.log"))
  analyzer.print_report()
  analyzer.save_report("report.json")
"""

import logging
import sys
from datetime import datetime
from typing import Any, BinaryIO, Dict, Iterable, List, Optional, TextIO

from ._types import (
    DisabledPassedEvent,
    ExecMarkerEvent,
    ExitEvent,
    Level,
    LogRecord,
    MappedEvent,
    PassedEvent,
    StartEvent,
)
from .accounting import AccountingCorrelator
from .config import AnalyzerConfig
from .diagram import Diagram, build_call_graph, build_process_diagram
from .log_parser import LogParser, match_event, resolve_identity
from .path_index import PathCategory, PathEntry, PathMappingAggregator
from .process_tree import ProcessTreeBuilder
from .utils import ReportSerializer

logger = logging.getLogger("SessionLogAnalyzer")

MULTIPLE_MAPPINGS = "multiple_mappings"

_CATEGORY_TITLES = {
    PathCategory.MAPPED_BY_SOURCE: ("mapped", "Mapped paths (by source)"),
    PathCategory.MAPPED_BY_DESTINATION: ("mapped", "Mapped paths (by destination)"),
    PathCategory.PASSED: ("passed", "Passed paths"),
    PathCategory.DISABLED_PASSED: ("disabled", "Passed paths, mapping disabled"),
}


class SessionLogAnalyzer:
    """
    Analyze a single sb2 session log.

    One instance = one analyzed log.
    Create a new instance for each new log you want to analyze.
    """

    BAR_WIDTH = 78

    def __init__(self, lines: Iterable[str], config: Optional[AnalyzerConfig] = None):
        self.config = config or AnalyzerConfig()
        self.parser = LogParser()
        self.tree = ProcessTreeBuilder()
        self.paths = PathMappingAggregator(self.parser.session, self.config.blacklist)
        self.accounting: Optional[AccountingCorrelator] = None
        self.events_total = 0
        self.informational = 0

        self._run_analysis(lines)

    # ----------------------------
    # Core single-pass analysis
    # ----------------------------

    def _dispatch(self, record: LogRecord) -> None:
        event = match_event(record.message)
        if event is None:
            self.informational += 1
            return
        self.events_total += 1
        identity = resolve_identity(record.process_token)

        if isinstance(event, StartEvent):
            self.tree.on_start(identity, event, record.timestamp)
        elif isinstance(event, ExitEvent):
            self.tree.on_exit(event)
        elif isinstance(event, ExecMarkerEvent):
            self.tree.on_exec_marker(identity, event.indirect_pid)
        elif isinstance(event, MappedEvent):
            self.paths.on_mapped(event, identity.name)
        elif isinstance(event, PassedEvent):
            self.paths.on_passed(event, identity.name)
        elif isinstance(event, DisabledPassedEvent):
            self.paths.on_disabled_passed(event, identity.name)

    def _run_analysis(self, lines: Iterable[str]):
        interval = self.config.progress_interval
        for raw in lines:
            record = self.parser.parse_line(raw)
            if record is not None:
                self._dispatch(record)
            if self.config.verbose and interval and self.parser.lines_total % interval == 0:
                logger.info("%d lines processed...", self.parser.lines_total)
        logger.info(
            "Analysis complete: %d lines, %d records, %d processes.",
            self.parser.lines_total, self.parser.records_total, len(self.tree.nodes),
        )

    # ----------------------------
    # Post-stream phases
    # ----------------------------

    def correlate_accounting(self, f: BinaryIO, clock_ticks: Optional[int] = None) -> AccountingCorrelator:
        """Raises UnknownAccountingFormat on a record version mismatch."""
        correlator = AccountingCorrelator(self.tree, clock_ticks or self.config.clock_ticks)
        correlator.correlate_file(f)
        self.accounting = correlator
        return correlator

    def _timing_scale(self):
        if self.accounting is None:
            return 0.0, 0.0
        return self.accounting.max_elapsed, self.accounting.total_cpu

    def process_diagram(self) -> Diagram:
        max_elapsed, total_cpu = self._timing_scale()
        return build_process_diagram(self.tree, max_elapsed, total_cpu)

    def call_graph(self) -> Diagram:
        _, total_cpu = self._timing_scale()
        return build_call_graph(self.tree, total_cpu)

    # ----------------------------
    # Reporting
    # ----------------------------

    def multiple_mappings(self) -> Dict[str, List[PathEntry]]:
        return {c.value: entries for c, entries in self.paths.ambiguous().items()}

    def number_of_notices(self) -> int:
        """Multiple mappings plus logged errors."""
        ambiguous = sum(len(v) for v in self.multiple_mappings().values())
        return ambiguous + len(self.parser.by_level.get(Level.ERROR, []))

    def _process_summary(self) -> Dict[str, Any]:
        tree = self.tree
        first = tree.node(tree.first_process).label if tree.first_process is not None else None
        return {
            "processes_total": len(tree.nodes),
            "process_names": len(tree.instances_by_name),
            "programs_total": sum(1 for p in tree.programs if p.instances),
            "first_process": first,
            "exit_status": tree.exit_statistics(),
            "unmatched_exits": tree.exits_unmatched,
            "adopted": sum(len(n.adopted_children) for n in tree.nodes),
            "instances_by_name": dict(tree.instances_by_name.most_common()),
            "starts_by_name": dict(tree.process_name_counts.most_common()),
        }

    def _process_details(self) -> List[Dict[str, Any]]:
        out = []
        for node in self.tree.nodes:
            parent = self.tree.parent_of(node)
            out.append({
                "pid": node.pid,
                "ppid": node.ppid,
                "name": node.current_name,
                "exec_policy": node.current_exec_policy,
                "exec_binary": node.exec_binary,
                "name_history": node.name_history,
                "exec_policy_history": node.exec_policy_history,
                "start_times": node.start_times,
                "parent": parent.label if parent else None,
                "adopted": parent is not None and node.index in parent.adopted_children,
                "exit_status": node.exit_status,
                "timing": None if node.timing is None else {
                    "elapsed": node.timing.elapsed, "user": node.timing.user, "sys": node.timing.sys,
                },
            })
        return out

    def get_report(self) -> Dict[str, Any]:
        p = self.parser
        report: Dict[str, Any] = {
            "metadata": {
                "timestamp": datetime.now().isoformat(),
                "session": p.session.to_dict(),
                "timeframe": {"first": p.first_timestamp, "last": p.last_timestamp},
                "lines_total": p.lines_total,
                "lines_comment": p.lines_comment,
                "lines_discarded": p.lines_discarded,
                "records_total": p.records_total,
                "events_total": self.events_total,
                "informational_total": self.informational,
                "messages_by_level": {lvl.value: len(p.by_level.get(lvl, [])) for lvl in Level},
                "paths_by_category": self.paths.counts(),
                "blacklisted_skipped": self.paths.skipped_blacklisted,
                "multiple_mappings_total": sum(len(v) for v in self.multiple_mappings().values()),
            },
            "processes": self._process_summary(),
            "process_details": self._process_details(),
            "programs": [
                {
                    "exec_policy": prog.exec_policy,
                    "exec_binary": prog.exec_binary,
                    "instances": prog.instances,
                    "executed": sorted(list(k) for k in prog.executed),
                    "elapsed": prog.elapsed,
                    "user": prog.user,
                    "sys": prog.sys,
                }
                for prog in self.tree.programs
            ],
            "messages": {
                lvl.value: [r.to_dict() for r in p.by_level.get(lvl, [])] for lvl in Level
            },
            "paths": {
                c.value: [e.to_dict() for _, e in sorted(index.items())]
                for c, index in self.paths.indexes.items()
            },
            MULTIPLE_MAPPINGS: {k: [e.to_dict() for e in v] for k, v in self.multiple_mappings().items()},
        }
        if self.accounting is not None:
            a = self.accounting
            report["accounting"] = {
                "records_total": a.records_total,
                "matched": a.matched,
                "unmatched": a.unmatched,
                "clock_ticks": a.clock_ticks,
                "max_elapsed": a.max_elapsed,
                "total_user": a.total_user,
                "total_sys": a.total_sys,
            }
        return report

    def save_report(self, filename: str):
        try:
            ReportSerializer.dump(self.get_report(), filename)
            logger.info("Report saved to %s", filename)
        except Exception as e:
            logger.error("Failed to save report: %r", e, exc_info=logger.isEnabledFor(logging.DEBUG))

    def _print_entry(self, entry: PathEntry, out: TextIO, arrow: str) -> None:
        refs = ""
        if entry.references and not self.config.full_detail:
            refs = f" {arrow} " + ", ".join(sorted(entry.references))
        print(f"  {entry.count:6d}  {entry.path}{refs}", file=out)
        if self.config.full_detail:
            for ref in sorted(entry.references):
                print(f"          {arrow} {ref}", file=out)
            print(f"          functions: {', '.join(sorted(entry.functions))}", file=out)
            print(f"          processes: {', '.join(sorted(entry.processes))}", file=out)

    def print_report(self, out: Optional[TextIO] = None):
        out = out or sys.stdout
        report = self.get_report()
        md = report["metadata"]
        procs = report["processes"]
        bar = "=" * self.BAR_WIDTH

        print("\n" + bar, file=out)
        print("SB2 SESSION LOG REPORT", file=out)
        print(bar, file=out)
        session = md["session"]
        print(f"Target root         : {session['target_root'] or '-'}", file=out)
        print(f"Tools root          : {session['tools_root'] or '-'}", file=out)
        print(f"Mapping mode        : {session['mapping_mode'] or '-'}", file=out)
        print(f"Timeframe           : {md['timeframe']['first'] or '?'} .. {md['timeframe']['last'] or '?'}",
              file=out)
        print(f"Lines (total)       : {md['lines_total']}", file=out)
        print(f"Records             : {md['records_total']}", file=out)
        print(f"Discarded lines     : {md['lines_discarded']}", file=out)
        for lvl, count in md["messages_by_level"].items():
            print(f"{(lvl.capitalize() + 's'):<20}: {count}", file=out)

        print("\nProcesses:", file=out)
        print(f"  - processes: {procs['processes_total']}", file=out)
        print(f"  - distinct names: {procs['process_names']}", file=out)
        print(f"  - programs: {procs['programs_total']}", file=out)
        print(f"  - first process: {procs['first_process'] or '-'}", file=out)
        print(f"  - adopted (recovered parent): {procs['adopted']}", file=out)
        for k, v in procs["exit_status"].items():
            print(f"  - exit {k}: {v}", file=out)
        if self.accounting is not None:
            acct = report["accounting"]
            print(f"  - accounting records matched: {acct['matched']}/{acct['records_total']}", file=out)

        if self.config.shows("errors"):
            for lvl in (Level.ERROR, Level.WARNING):
                records = self.parser.by_level.get(lvl, [])
                if records:
                    print(f"\n{lvl.value.capitalize()}s:", file=out)
                    for rec in records:
                        print(f"  • {rec}", file=out)

        print("\nPaths by category   :", file=out)
        for k, v in md["paths_by_category"].items():
            print(f"  - {k}: {v}", file=out)
        print(f"  - blacklisted (skipped): {md['blacklisted_skipped']}", file=out)

        for category, (selector, title) in _CATEGORY_TITLES.items():
            if not self.config.shows(selector):
                continue
            index = self.paths.indexes[category]
            if not index:
                continue
            arrow = "<-" if category == PathCategory.MAPPED_BY_DESTINATION else "->"
            print(f"\n{title}:", file=out)
            for _, entry in sorted(index.items()):
                self._print_entry(entry, out, arrow)

        ambiguous = self.multiple_mappings()
        if any(ambiguous.values()):
            print("\nNOTICE: multiple mappings", file=out)
            for category, entries in ambiguous.items():
                for entry in entries:
                    print(f"  • [{category}] {entry.path}: {', '.join(sorted(entry.references))}", file=out)
        print(bar, file=out)
