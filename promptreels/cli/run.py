#!/usr/bin/env python3
"""Command line entry point for prompt optimization and the job queues."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from promptreels.config import NAMESPACES, AppConfig
from promptreels.database.display import print_history, print_population, print_queues
from promptreels.errors import PromptReelsError
from promptreels.service import FPOService
from promptreels.utils.coercion import coerce_value, field_types
from promptreels.utils.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _positive_int(value: str) -> int:
    parsed = int(value)
    if parsed <= 0:
        raise argparse.ArgumentTypeError("must be > 0")
    return parsed


def _build_parser() -> argparse.ArgumentParser:
    epilog = (
        "Override grammar:\n"
        "  --set <namespace>.<field>=<value>\n"
        "  namespaces: fpo, provider, queue, storage\n"
        "  list values must be valid JSON\n"
        "  bool values: true,false,1,0,yes,no (case-insensitive)\n\n"
        "Examples:\n"
        "  promptreels run-fpo --iterations 4 --evolution-every 2\n"
        "  promptreels --set provider.primary=gemini work\n"
        "  promptreels --set fpo.max_population=12 "
        "--set fpo.domains='[\"news\",\"sports\"]' fpo-status"
    )
    parser = argparse.ArgumentParser(
        prog="promptreels",
        description="Federated prompt optimization with persistent job queues.",
        epilog=epilog,
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML config file (namespaces as top-level keys).",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="NS.FIELD=VALUE",
        help="Repeatable namespaced override, e.g. --set queue.max_attempts=5",
    )
    parser.add_argument("--verbose", action="store_true", help="Debug logging.")
    parser.add_argument("--log-file", type=Path, default=None, help="Also log to this file.")

    sub = parser.add_subparsers(dest="command", required=True)

    run_fpo = sub.add_parser("run-fpo", help="Queue an FPO job.")
    run_fpo.add_argument("--iterations", type=_positive_int, default=None)
    run_fpo.add_argument("--evolution-every", type=_positive_int, default=None)
    run_fpo.add_argument(
        "--no-evolution",
        dest="enable_evolution",
        action="store_false",
        default=None,
        help="Only evaluate, never evolve.",
    )
    run_fpo.add_argument("--job-id", default=None)

    work = sub.add_parser("work", help="Process queued jobs.")
    work.add_argument(
        "--max-cycles",
        type=_positive_int,
        default=None,
        help="Stop after this many polls (default: run until interrupted).",
    )
    work.add_argument(
        "--force-recover",
        action="store_true",
        help="Reclaim every processing slot at start, even with a fresh heartbeat.\n"
        "Only safe when no other worker is running.",
    )

    for name, help_text in (
        ("fpo-status", "Show the prompt population."),
        ("queue-status", "Show queue state per category."),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--json", action="store_true", help="Print raw JSON.")

    history = sub.add_parser("history", help="Top templates by weight.")
    history.add_argument("--top", type=_positive_int, default=10)
    history.add_argument("--json", action="store_true", help="Print raw JSON.")

    sub.add_parser("reset-population", help="Replace the population with the seeds.")

    clear = sub.add_parser("clear-queue", help="Drop every item of a queue category.")
    clear.add_argument("category")
    return parser


def _parse_overrides(tokens: list[str]) -> Dict[str, Dict[str, Any]]:
    """Turn ``NS.FIELD=VALUE`` tokens into typed ``{namespace: {field: value}}``."""
    parsed: Dict[str, Dict[str, Any]] = {}
    for token in tokens:
        key, sep, raw_value = token.partition("=")
        namespace, dot, field_name = key.partition(".")
        if not sep or not dot or not field_name:
            raise ValueError(f"Invalid override '{token}'. Expected NS.FIELD=VALUE.")
        config_cls = NAMESPACES.get(namespace)
        if config_cls is None:
            raise ValueError(
                f"Invalid namespace '{namespace}' in '{token}'. "
                f"Use one of: {', '.join(sorted(NAMESPACES))}."
            )
        types = field_types(config_cls)
        if field_name not in types:
            raise ValueError(
                f"Unknown field '{key}'. Valid {namespace} fields: {', '.join(sorted(types))}"
            )
        parsed.setdefault(namespace, {})[field_name] = coerce_value(
            raw_value, types[field_name], key
        )
    return parsed


def _load_config(args: argparse.Namespace) -> AppConfig:
    config = AppConfig.from_yaml(args.config) if args.config else AppConfig.from_env()
    return config.with_overrides(_parse_overrides(args.overrides)).validate()


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _dispatch(args: argparse.Namespace, service: FPOService) -> int:
    if args.command == "run-fpo":
        result = service.run_fpo(
            iterations=args.iterations,
            evolution_every=args.evolution_every,
            enable_evolution=args.enable_evolution,
            job_id=args.job_id,
        )
        _print_json(result)
    elif args.command == "work":
        worker = service.build_worker()
        try:
            worker.run_forever(max_cycles=args.max_cycles, force_recover=args.force_recover)
        except KeyboardInterrupt:
            logger.info("Interrupted, waiting for running jobs to finish")
            worker.stop()
            worker.shutdown()
    elif args.command == "fpo-status":
        status = service.fpo_status()
        if args.json:
            _print_json(status)
        else:
            print_population(status)
    elif args.command == "queue-status":
        status = service.queue_status()
        if args.json:
            _print_json(status)
        else:
            print_queues(status)
    elif args.command == "history":
        history = service.fpo_history(args.top)
        if args.json:
            _print_json(history)
        else:
            print_history(history)
    elif args.command == "reset-population":
        population = service.reset_population()
        print(f"Population reset: {len(population)} seed templates, best={population.best_id}")
    elif args.command == "clear-queue":
        service.clear_queue(args.category)
        print(f"Cleared {args.category} queue")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO, args.log_file)

    try:
        service = FPOService(_load_config(args))
    except (PromptReelsError, ValueError, OSError) as exc:
        parser.error(str(exc))

    try:
        return _dispatch(args, service)
    except PromptReelsError as exc:
        logger.error(f"{type(exc).__name__}: {exc}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
