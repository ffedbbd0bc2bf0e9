"""
Text Classification CLI
=======================

Classifies one or more texts against the configured categories and prints
one JSON object per result. Texts are taken from the command line or, when
none are given, from standard input (one per line).
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Sequence

import structlog

from common.config import Settings, setup_libraries
from common.logging_config import configure_logging
from .service import ClassifierService


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="classify",
        description="Classify text using example embeddings and an LLM fallback.",
    )
    parser.add_argument("texts", nargs="*", help="Texts to classify (default: read stdin).")
    parser.add_argument(
        "--no-fallback",
        action="store_true",
        help="Never call the fallback model; answer from local matches only.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    """Classify the given texts and print the results as JSON lines."""
    log = structlog.get_logger(__name__)
    args = _parse_args(argv)

    try:
        settings = Settings()
        configure_logging(settings)
        setup_libraries(settings)
    except ValueError as e:
        log.error("Configuration error", error=e)
        return

    texts = list(args.texts) or sys.stdin.read().splitlines()
    use_fallback = not args.no_fallback

    service = ClassifierService.from_settings(settings)
    try:
        if len(texts) == 1:
            results = [service.classify(texts[0], use_fallback=use_fallback)]
        else:
            results = service.classify_many(texts, use_fallback=use_fallback)
    except ValueError as e:
        # ConfigurationError is a ValueError too.
        log.error("Cannot classify", error=str(e))
        return

    for result in results:
        print(json.dumps(result.to_dict()))


if __name__ == "__main__":
    main()
