"""Command-line interface for running pipeline stages.

Example:
    Run every stage against the configured catalog:
        $ catalogsync all

    Resume the variant stage after a crash:
        $ catalogsync variants --resume-after 48210

    Resolve with a fixed seed and JSON logs:
        $ catalogsync resolve --seed 7 --json-logs
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from catalogsync.config import PipelineSettings
from catalogsync.exceptions import ConnectionFailureError
from catalogsync.logging_config import setup_logging
from catalogsync.pipeline.orchestrator import STAGES, PipelineOrchestrator
from catalogsync.storage import CatalogStore

# Configure module logger
logger = logging.getLogger(__name__)

ALL_STAGES = "all"


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Namespace object containing parsed arguments.
    """
    parser = argparse.ArgumentParser(
        prog="catalogsync",
        description="Reconcile the catalog with external product and review datasets.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Dataset paths and the store connection string come from the environment
(CATALOG_DB_URL, META_FILE, REVIEW_FILE, ...; a .env file is read if present).

Examples:
  # Run all stages in order
  catalogsync all

  # Only match catalog items to external keys
  catalogsync resolve

  # Resume a stage after the last committed cursor
  catalogsync variants --resume-after 48210
        """,
    )

    parser.add_argument(
        "stage",
        choices=list(STAGES) + [ALL_STAGES],
        help="Stage to run, or 'all' for every stage in order",
    )

    parser.add_argument(
        "--resume-after",
        type=int,
        default=None,
        metavar="SEQ",
        help="Only process items whose cursor is greater than SEQ",
    )

    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Items per batch (default: BATCH_SIZE or 1000)",
    )

    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for reproducible runs (default: RANDOM_SEED or unseeded)",
    )

    parser.add_argument(
        "--env-file",
        type=str,
        default=None,
        help="Path to a dotenv file with pipeline settings",
    )

    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs as JSON lines",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point.

    Returns:
        Exit code: 0 on success, 1 on error, 130 when interrupted.
    """
    store = None
    try:
        args = parse_arguments(argv)

        settings = PipelineSettings.from_env(args.env_file).with_overrides(
            batch_size=args.batch_size,
            random_seed=args.seed,
        )
        settings.validate()

        setup_logging(
            log_level="DEBUG" if args.verbose else settings.log_level,
            json_format=args.json_logs,
        )

        logger.info("=" * 70)
        logger.info("Pipeline Configuration")
        logger.info("=" * 70)
        logger.info(f"Stage:          {args.stage}")
        logger.info(f"Store:          {settings.db_url}")
        logger.info(f"Metadata file:  {settings.meta_file}")
        logger.info(f"Review file:    {settings.review_file}")
        logger.info(f"Batch size:     {settings.batch_size}")
        logger.info(f"Identity quota: {settings.identity_quota}")
        logger.info(f"Resume after:   {args.resume_after}")
        logger.info("=" * 70)

        store = CatalogStore.open(settings.db_url)
        orchestrator = PipelineOrchestrator(store, settings)

        if args.stage == ALL_STAGES:
            reports = orchestrator.run_all(after=args.resume_after)
        else:
            reports = [orchestrator.run_stage(args.stage, after=args.resume_after)]

        logger.info("=" * 70)
        logger.info("Run Summary")
        logger.info("=" * 70)
        for report in reports:
            logger.info(json.dumps(report.as_dict(), default=str))
        logger.info("=" * 70)
        return 0

    except ConnectionFailureError as e:
        logger.error(f"Connection error: {e.message}", extra={"details": e.details})
        return 1
    except FileNotFoundError as e:
        logger.error(f"File error: {e}")
        return 1
    except ValueError as e:
        logger.error(f"Validation error: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("Run interrupted by user; committed batches are kept")
        return 130
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return 1
    finally:
        if store is not None:
            store.close()


if __name__ == "__main__":
    sys.exit(main())
