# src/main.py - v2
"""CLI entry point: drive Runs phase by phase and decide approval gates.

Usage:
    suitegate submit <story.txt>
    suitegate step <run_id>
    suitegate submit-output <run_id> <phase> <output.json>
    suitegate approve <gate_id> [--feedback TEXT] [--decider NAME]
    suitegate reject <gate_id> --feedback TEXT [--decider NAME]
    suitegate gate <gate_id>
    suitegate runs [--limit N]
    suitegate show <run_id>
    suitegate sweep
    suitegate abandon <run_id> --reason TEXT

Results are printed to stdout as JSON; logs go to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from suitegate.core.errors import SuiteGateError
from suitegate.core.models import Phase
from suitegate.version import __version__

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        return asyncio.run(_dispatch(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except SuiteGateError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return 2
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="suitegate",
        description=f"suitegate v{__version__} - gated regression suite builder",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    p_submit = subparsers.add_parser("submit", help="Create a Run for a user story")
    p_submit.add_argument("story", type=Path, help="Path to the story text ('-' for stdin)")
    p_submit.set_defaults(func=_cmd_submit)

    p_step = subparsers.add_parser("step", help="Execute the phase a Run expects next")
    p_step.add_argument("run_id")
    p_step.set_defaults(func=_cmd_step)

    p_output = subparsers.add_parser(
        "submit-output", help="Record externally produced output for an agent phase",
    )
    p_output.add_argument("run_id")
    p_output.add_argument("phase", choices=[p.value for p in Phase])
    p_output.add_argument("output", type=Path, help="JSON file with the phase output")
    p_output.set_defaults(func=_cmd_submit_output)

    p_approve = subparsers.add_parser("approve", help="Approve a pending gate")
    p_approve.add_argument("gate_id")
    p_approve.add_argument("--feedback", default=None)
    p_approve.add_argument("--decider", default=None)
    p_approve.set_defaults(func=_cmd_decide, approved=True)

    p_reject = subparsers.add_parser("reject", help="Reject a pending gate")
    p_reject.add_argument("gate_id")
    p_reject.add_argument("--feedback", required=True)
    p_reject.add_argument("--decider", default=None)
    p_reject.set_defaults(func=_cmd_decide, approved=False)

    p_gate = subparsers.add_parser("gate", help="Show a gate's status")
    p_gate.add_argument("gate_id")
    p_gate.set_defaults(func=_cmd_gate)

    p_runs = subparsers.add_parser("runs", help="List recent Runs")
    p_runs.add_argument("--limit", type=int, default=20)
    p_runs.set_defaults(func=_cmd_runs)

    p_show = subparsers.add_parser("show", help="Show a Run's full history")
    p_show.add_argument("run_id")
    p_show.set_defaults(func=_cmd_show)

    p_sweep = subparsers.add_parser("sweep", help="Reject approval gates past their deadline")
    p_sweep.set_defaults(func=_cmd_sweep)

    p_abandon = subparsers.add_parser("abandon", help="Abandon a Run")
    p_abandon.add_argument("run_id")
    p_abandon.add_argument("--reason", required=True)
    p_abandon.add_argument("--decider", default=None)
    p_abandon.set_defaults(func=_cmd_abandon)

    return parser


async def _dispatch(args: argparse.Namespace) -> int:
    from suitegate.api.facade import SuiteGate
    from suitegate.config.settings import load_settings
    from suitegate.logging.logger import setup_logging

    settings = load_settings()
    setup_logging(
        level="DEBUG" if args.verbose else settings.log_level,
        log_format=settings.log_format,
        log_file=settings.log_file,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )
    gate = SuiteGate(settings=settings)
    try:
        return await args.func(gate, args)
    finally:
        gate.close()


def _emit(value: Any) -> None:
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    elif isinstance(value, list):
        value = [v.model_dump(mode="json") if isinstance(v, BaseModel) else v for v in value]
    print(json.dumps(value, indent=2, default=str))


async def _cmd_submit(gate: Any, args: argparse.Namespace) -> int:
    text = sys.stdin.read() if str(args.story) == "-" else args.story.read_text(encoding="utf-8")
    run = await gate.submit_story(text)
    _emit({"run_id": run.run_id, "expected_phase": run.expected_phase.value})
    return 0


async def _cmd_step(gate: Any, args: argparse.Namespace) -> int:
    result = await gate.run_next_phase(args.run_id)
    _emit(
        {
            "run_id": result.run_id,
            "phase": result.phase.value,
            "execution_id": result.execution_id,
            "gate_id": result.gate.gate_id if result.gate else None,
            "error": result.error,
            "discarded": result.discarded,
        }
    )
    return 0 if result.success else 3


async def _cmd_submit_output(gate: Any, args: argparse.Namespace) -> int:
    output = json.loads(args.output.read_text(encoding="utf-8"))
    approval_gate = await gate.submit_phase_output(args.run_id, Phase(args.phase), output)
    _emit(approval_gate)
    return 0


async def _cmd_decide(gate: Any, args: argparse.Namespace) -> int:
    view = await gate.submit_approval(
        args.gate_id, approved=args.approved, feedback=args.feedback, decider=args.decider,
    )
    _emit(view)
    return 0


async def _cmd_gate(gate: Any, args: argparse.Namespace) -> int:
    _emit(await gate.get_gate_status(args.gate_id))
    return 0


async def _cmd_runs(gate: Any, args: argparse.Namespace) -> int:
    _emit(await gate.list_runs(limit=args.limit))
    return 0


async def _cmd_show(gate: Any, args: argparse.Namespace) -> int:
    _emit(await gate.get_run_history(args.run_id))
    return 0


async def _cmd_sweep(gate: Any, args: argparse.Namespace) -> int:
    expired = await gate.sweep_expired_gates()
    _emit(expired)
    return 0


async def _cmd_abandon(gate: Any, args: argparse.Namespace) -> int:
    run = await gate.abandon_run(args.run_id, args.reason, decider=args.decider)
    _emit({"run_id": run.run_id, "status": run.status.value})
    return 0


if __name__ == "__main__":
    sys.exit(main())
