import logging
import os
from typing import Any, Callable, Dict, Optional, TextIO, Tuple

from .accounting import UnknownAccountingFormat
from .config import AnalyzerConfig
from .diagram import Diagram
from .log_analyzer import SessionLogAnalyzer
from .utils import ReportSerializer

logger = logging.getLogger("sb2logz")


def analyze(
        log_file: str,
        config: Optional[AnalyzerConfig] = None,
        print_res: bool = True,
        out: Optional[TextIO] = None,
) -> Tuple[bool, Dict[str, Any]]:
    """
    Analyze one sb2 log file end to end.

    Returns (clean, report); clean is False when multiple mappings or errors
    were found. A log that cannot be read yields (False, {}).
    """
    config = config or AnalyzerConfig()
    try:
        with open(log_file, "r", encoding="utf-8", errors="replace") as f:
            logger.info("Reading log file: %s...", log_file)
            analyzer = SessionLogAnalyzer(f, config)
    except OSError as e:
        logger.error("Failed to read log file %s: %r", log_file, e, exc_info=logger.isEnabledFor(logging.DEBUG))
        return False, {}

    if config.accounting_file:
        _correlate_accounting(analyzer, config.accounting_file)

    _write_outputs(analyzer, config)

    if print_res:
        analyzer.print_report(out)

    return analyzer.number_of_notices() == 0, analyzer.get_report()


def _correlate_accounting(analyzer: SessionLogAnalyzer, accounting_file: str) -> None:
    if not os.path.exists(accounting_file):
        logger.error("Accounting file %s not found, timing details skipped", accounting_file)
        return
    try:
        with open(accounting_file, "rb") as f:
            analyzer.correlate_accounting(f)
    except UnknownAccountingFormat as e:
        logger.error("Accounting phase aborted: %s", e)
    except OSError as e:
        logger.error("Failed to read accounting file %s: %r", accounting_file, e,
                     exc_info=logger.isEnabledFor(logging.DEBUG))


def _save_diagram(build: Callable[[], Diagram], path: str, what: str) -> None:
    try:
        ReportSerializer.dump(build(), path)
        logger.info("%s saved to %s", what, path)
    except Exception as e:
        logger.error("Failed to save %s to %s: %r", what.lower(), path, e,
                     exc_info=logger.isEnabledFor(logging.DEBUG))


def _write_outputs(analyzer: SessionLogAnalyzer, config: AnalyzerConfig) -> None:
    if config.process_diagram:
        _save_diagram(analyzer.process_diagram, config.process_diagram, "Process diagram")
    if config.call_graph:
        _save_diagram(analyzer.call_graph, config.call_graph, "Call graph")
    if config.report_file:
        analyzer.save_report(config.report_file)
