from __future__ import annotations

import argparse
import logging
import os
from typing import Sequence, Optional

from .config import CATEGORIES, load_config, split_list
from .scanner import analyze


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="sb2logz",
        description="Process tree and path mapping analyzer for sb2 session logs",
    )

    parser.add_argument("log_file", help="sb2 log file to analyze.")

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML configuration file ('sb2logz' section)."
    )

    parser.add_argument(
        "--no-blacklist",
        action="store_true",
        help="Do not skip stat-family functions."
    )

    parser.add_argument(
        "--blacklist",
        type=str,
        default=None,
        help="Additional function names to skip (comma-separated)."
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Debug logging and progress messages."
    )

    parser.add_argument(
        "--full",
        action="store_true",
        help="List references, functions and processes under every path."
    )

    parser.add_argument(
        "--show",
        type=str,
        default=None,
        help=f"Categories to print (comma-separated from: {', '.join(CATEGORIES)})."
    )

    parser.add_argument(
        "--acct",
        type=str,
        default=None,
        help="Process accounting file (acct v3 records)."
    )

    parser.add_argument(
        "--clock-ticks",
        type=int,
        default=None,
        help="Clock ticks per second for accounting records (default: SC_CLK_TCK)."
    )

    parser.add_argument(
        "--process-diagram",
        type=str,
        default=None,
        help="Write process tree diagram model (JSON) to this path."
    )

    parser.add_argument(
        "--call-graph",
        type=str,
        default=None,
        help="Write program call graph model (JSON) to this path."
    )

    parser.add_argument(
        "--report-file",
        type=str,
        default=None,
        help="Write JSON report to this path."
    )

    parser.add_argument(
        "--no-print",
        action="store_true",
        help="Do not print summary report to stdout."
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger = logging.getLogger("sb2logz")

    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        logger.error("%s", e)
        return 2

    if args.no_blacklist:
        config.blacklist_disabled = True
    if args.blacklist:
        config.blacklist_extend = config.blacklist_extend + split_list(args.blacklist)
    if args.verbose:
        config.verbose = True
    if args.full:
        config.full_detail = True
    if args.show:
        config.categories = split_list(args.show)
    for key in ("clock_ticks", "process_diagram", "call_graph", "report_file"):
        value = getattr(args, key)
        if value is not None:
            setattr(config, key, value)
    if args.acct:
        config.accounting_file = args.acct

    if not os.path.isfile(args.log_file):
        logger.error("Log file %s not found", args.log_file)
        return 2

    clean, report = analyze(args.log_file, config, print_res=not args.no_print)

    if not report:
        return 2  # analysis failed
    if clean:
        logger.info("No multiple mappings or errors found.")
        return 0
    logger.warning("Multiple mappings or errors found. Refer to the report for more details")
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
