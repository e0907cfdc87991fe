#!/usr/bin/env python3
"""Command-line interface for building attendance reports from meeting exports."""
from __future__ import annotations

import argparse
import json
import traceback
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict

from . import logic
from .export import save_report
from .logger import setup_logging
from .models import ReportFormat, StudentRecord
from .settings import settings


def _student_payload(record: StudentRecord, total_points: float) -> Dict[str, Any]:
    payload = asdict(record)
    payload["score"] = round(record.score, 2)
    payload["score_display"] = f"{record.score:.1f}/{total_points:.1f}"
    payload["attendance_rate"] = round(record.attendance_rate, 4)
    return payload


def handle_process(args: argparse.Namespace) -> Dict[str, Any]:
    config = settings.to_config(
        class_start=args.class_start,
        class_end=args.class_end,
        late_minutes=args.late_minutes,
        absent_minutes=args.absent_minutes,
        total_points=args.total_points,
        late_penalty=args.late_penalty,
        absent_penalty=args.absent_penalty,
    )
    fmt = logic.parse_format(args.format)
    report, meta = logic.analyze_path(args.input, config)
    written = None
    if args.output:
        written = str(save_report(report, fmt, args.output))
    meta["format"] = fmt.value
    return {
        "ok": True,
        "meta": meta,
        "output": written,
        "students": [_student_payload(s, report.total_points) for s in report.students],
    }


def handle_participants(args: argparse.Namespace) -> Dict[str, Any]:
    path = Path(args.input)
    if not path.is_file():
        raise ValueError(f"Not a file: {path}")
    items = logic.extract_participants_from_bytes(path.read_bytes(), path.name)
    return {"ok": True, "items": items}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Meeting attendance report builder")
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level (default: %(default)s)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_process = subparsers.add_parser("process", help="Aggregate a directory (or file) of attendance exports")
    p_process.add_argument("--input", required=True, help="Attendance export file or directory")
    p_process.add_argument("--class-start", help=f"Class start HH:MM (default {settings.class_start})")
    p_process.add_argument("--class-end", help=f"Class end HH:MM (default {settings.class_end})")
    p_process.add_argument("--late-minutes", help=f"Minutes after start before Late (default {settings.late_minutes})")
    p_process.add_argument("--absent-minutes", help=f"Minutes after start before Absent (default {settings.absent_minutes})")
    p_process.add_argument("--total-points", help=f"Points available (default {settings.total_points})")
    p_process.add_argument("--late-penalty", help=f"Points lost per Late (default {settings.late_penalty})")
    p_process.add_argument("--absent-penalty", help=f"Points lost per Absent (default {settings.absent_penalty})")
    p_process.add_argument(
        "--format", default=settings.default_format, choices=[f.value for f in ReportFormat], help="Report format"
    )
    p_process.add_argument("--output", help="Where to write the report (omit to print JSON only)")

    p_participants = subparsers.add_parser("participants", help="List deduplicated participants of one export")
    p_participants.add_argument("--input", required=True, help="Attendance export file")

    args = parser.parse_args(argv)
    setup_logging(args.log_level, settings.log_file)

    try:
        if args.command == "process":
            payload = handle_process(args)
        elif args.command == "participants":
            payload = handle_participants(args)
        else:
            raise ValueError(f"Unsupported command: {args.command}")
        print(json.dumps(payload))
        return 0
    except Exception as exc:  # pragma: no cover - best effort error reporting
        err_payload = {
            "ok": False,
            "error": str(exc),
            "traceback": traceback.format_exc(),
        }
        print(json.dumps(err_payload))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
