import argparse
import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from .config import LoadMode
from .errors import ConfigError
from .parser import parse_config
from .pipeline import run_pipelines
from .report import RunReport
from .schemas import get_schema, list_kinds
from .utils.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="evm-warehouse",
        description="Load raw EVM blocks, transactions and receipts into a warehouse",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    load = commands.add_parser("load", help="run load pipelines from a config file")
    load.add_argument("--config", required=True, help="path to the YAML config")
    load.add_argument(
        "--pipeline",
        action="append",
        dest="pipelines",
        help="pipeline to run, may be repeated (default: all)",
    )
    load.add_argument(
        "--mode",
        choices=[m.value for m in LoadMode],
        help="override the load mode of every selected pipeline",
    )
    load.add_argument("--report-dir", help="write one JSON report per pipeline here")
    load.add_argument("--env-file", help="dotenv file to load before parsing the config")
    load.add_argument("--log-dir", help="also log to a timestamped file in this directory")
    load.add_argument(
        "--log-level",
        default="INFO",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )

    schema = commands.add_parser("schema", help="print registered entity schemas as JSON")
    schema.add_argument("--entity", choices=list_kinds())

    return parser


def write_reports(reports: Dict[str, RunReport], report_dir: str) -> List[Path]:
    out_dir = Path(report_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    paths = []
    for name, report in reports.items():
        path = out_dir / f"{name}_{timestamp}_{report.run_id[:8]}.json"
        path.write_text(json.dumps(report.to_dict(), indent=2))
        paths.append(path)

    return paths


def _load(args: argparse.Namespace) -> int:
    try:
        config = parse_config(args.config, env_file=args.env_file)
        mode = LoadMode(args.mode) if args.mode else None
        reports = asyncio.run(run_pipelines(config, names=args.pipelines, mode=mode))
    except ConfigError as e:
        logger.error(f"invalid configuration: {e}")
        return 1

    print(json.dumps({name: r.to_dict() for name, r in reports.items()}, indent=2))

    if args.report_dir:
        for path in write_reports(reports, args.report_dir):
            logger.info(f"wrote report to {path}")

    return 0 if all(r.succeeded for r in reports.values()) else 1


def _schema(args: argparse.Namespace) -> int:
    kinds = [args.entity] if args.entity else list_kinds()
    print(json.dumps({kind: get_schema(kind).to_dict() for kind in kinds}, indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "load":
        setup_logging(args.log_level, args.log_dir)
        return _load(args)

    return _schema(args)


__all__ = ["main", "build_parser", "write_reports"]
