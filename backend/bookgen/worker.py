"""Run the generation pipeline for one batch from the command line.

Usage:
    python -m bookgen.worker start BATCH_ID
    python -m bookgen.worker regenerate BATCH_ID --stages cover tags [--book BOOK_ID ...] [--include-completed]

Starts both queues in this process, queues the requested work and waits until
every stage hand-off has drained before exiting.

Requires DATABASE_URL, GEMINI_API_KEY, GEMINI_TEXT_MODEL, IDEOGRAM_API_KEY and
Google OAuth credentials to be configured.
"""

import argparse
import logging
import sys
import uuid
from pathlib import Path

from dotenv import load_dotenv

from bookgen.db import create_tables, get_session_factory
from bookgen.models.book import STAGES
from bookgen.services.errors import GenerationError
from bookgen.services.intake import BatchIntakeService
from bookgen.services.pipeline import get_pipeline
from bookgen.services.regeneration import RegenerationService

logger = logging.getLogger("bookgen.worker")

# Load .env from project root (parent of backend/).
_ENV_PATH = Path(__file__).resolve().parent.parent.parent / ".env"


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run book generation for a batch.")
    sub = parser.add_subparsers(dest="command", required=True)

    start = sub.add_parser("start", help="Queue title generation for a pending batch.")
    start.add_argument("batch_id", type=uuid.UUID)

    regen = sub.add_parser("regenerate", help="Re-run stages on the regeneration queue.")
    regen.add_argument("batch_id", type=uuid.UUID)
    regen.add_argument("--stages", nargs="+", choices=STAGES, required=True)
    regen.add_argument("--book", dest="book_ids", action="append", type=uuid.UUID, default=None)
    regen.add_argument("--include-completed", action="store_true")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    load_dotenv(_ENV_PATH)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S")
    args = _parse_args(argv)

    create_tables()
    pipeline = get_pipeline()
    pipeline.start()
    db = get_session_factory()()
    try:
        if args.command == "start":
            BatchIntakeService(pipeline.enqueue).start_batch(args.batch_id, db)
        else:
            RegenerationService(pipeline.enqueue).regenerate(
                args.batch_id,
                args.stages,
                db,
                book_ids=args.book_ids,
                include_completed=args.include_completed,
            )
        db.close()
        pipeline.join()
    except GenerationError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    finally:
        db.close()
        pipeline.stop()

    logger.info("all queued work for batch %s has finished", args.batch_id)
    return 0


if __name__ == "__main__":
    sys.exit(main())
