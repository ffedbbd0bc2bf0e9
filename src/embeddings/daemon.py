"""
Embedding Recompute Daemon
==========================

Entry point for embedding administration. By default it runs a single
recomputation and prints its statistics. With ``--daemon`` it keeps polling
and recomputes whenever examples without an embedding exist. ``--status``
reports per-category progress and ``--import`` loads label definitions from
a JSON file.
"""

from __future__ import annotations

import argparse
import json
from typing import Sequence

import structlog

from classifier.service import ClassifierService
from common.config import Settings, setup_libraries
from common.daemon_loop import run_polling_loop
from common.logging_config import configure_logging


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="recompute",
        description="Compute embeddings for examples that do not have one yet.",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--daemon", action="store_true", help="Keep polling for pending examples."
    )
    mode.add_argument(
        "--status", action="store_true", help="Print computed/uncomputed counts and exit."
    )
    mode.add_argument(
        "--import",
        dest="import_file",
        metavar="FILE",
        help="Import categories and examples from a labels JSON file.",
    )
    parser.add_argument(
        "--max-examples", type=int, default=None, help="Stop after this many examples."
    )
    parser.add_argument(
        "--max-duration", type=float, default=None, help="Stop after this many seconds."
    )
    return parser.parse_args(argv)


def _print_json(data: dict) -> None:
    print(json.dumps(data, indent=2))


def _load_labels(path: str) -> list[dict]:
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("labels", [])
    if not isinstance(data, list):
        raise ValueError("Labels file must contain a list of labels.")
    return data


def main(argv: Sequence[str] | None = None) -> None:
    """Run the recompute command selected on the command line."""
    log = structlog.get_logger(__name__)
    args = _parse_args(argv)

    try:
        settings = Settings()
        configure_logging(settings)
        setup_libraries(settings)
    except ValueError as e:
        log.error("Configuration error", error=e)
        return

    service = ClassifierService.from_settings(settings)

    if args.status:
        report = service.status().to_dict()
        service.cache.init()
        report["cache"] = service.cache.stats()
        _print_json(report)
        return

    if args.import_file:
        try:
            labels = _load_labels(args.import_file)
        except (OSError, ValueError) as e:
            log.error("Cannot read labels file", path=args.import_file, error=str(e))
            return
        _print_json(service.import_labels(labels))
        return

    if service.recomputer is None:
        log.error("Configuration error", error="An embedding source is required to recompute.")
        return

    if not args.daemon:
        stats = service.recompute(
            max_examples=args.max_examples, max_duration_seconds=args.max_duration
        )
        _print_json(stats.to_dict())
        return

    log.info(
        "Starting recompute daemon",
        poll_interval=settings.POLL_INTERVAL,
        batch_size=settings.RECOMPUTE_BATCH_SIZE,
        llm_provider=settings.LLM_PROVIDER,
        embedding_model=settings.EMBEDDING_MODEL,
    )

    def run_once() -> bool:
        if service.status().uncomputed_examples == 0:
            return False
        service.recompute(
            max_examples=args.max_examples, max_duration_seconds=args.max_duration
        )
        return True

    run_polling_loop(
        daemon_name="recompute",
        run_once=run_once,
        poll_interval_seconds=settings.POLL_INTERVAL,
    )


if __name__ == "__main__":
    main()
