#!/usr/bin/env python3
"""Dev entrypoint for running the sweep workers.

Usage:
    # Single run (expiry, pending, retry, campaign schedule, cleanup)
    python scripts/run_workers.py --once

    # Continuous loop (Ctrl+C to stop)
    python scripts/run_workers.py --loop

    # Loop with custom interval
    python scripts/run_workers.py --loop --interval 10

    # Limit iterations (for testing)
    python scripts/run_workers.py --loop --max-iterations 5

Environment variables:
    WORKER_BATCH_SIZE: Items per batch (default: 50)
    WORKER_POLL_INTERVAL_SECONDS: Seconds between cycles (default: 60)
    RETRY_COOLDOWN_SECONDS: Wait after a failure before retrying (default: 300)
    RETENTION_DAYS: Age after which finished records are deleted (default: 90)
"""

import argparse
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from notification_engine.workers.runner import (
    run_worker_once,
    run_worker_loop,
    configure_worker_logging,
)


def main() -> int:
    """Main entrypoint for worker runner."""
    parser = argparse.ArgumentParser(
        description="Run notification engine sweep workers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    # Mode selection
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument(
        "--once",
        action="store_true",
        help="Run every sweep once and exit",
    )
    mode.add_argument(
        "--loop",
        action="store_true",
        help="Run sweeps continuously in a loop",
    )

    # Configuration
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Seconds between cycles (loop mode only)",
    )
    parser.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        help="Maximum iterations before stopping (loop mode only)",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Items to process per batch",
    )

    # Logging
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Reduce logging to warnings only",
    )

    args = parser.parse_args()

    # Configure logging
    if args.verbose:
        configure_worker_logging(logging.DEBUG)
    elif args.quiet:
        configure_worker_logging(logging.WARNING)
    else:
        configure_worker_logging(logging.INFO)

    logger = logging.getLogger(__name__)

    try:
        if args.once:
            logger.info("Running sweeps once...")
            result = run_worker_once(batch_size=args.batch_size)

            # Print summary
            print("\n--- Sweep Run Summary ---")
            print(f"Workers run: {result.workers_run}")
            print(f"Total processed: {result.total_processed}")
            print(f"Total failed: {result.total_failed}")

            if result.errors:
                print(f"Errors: {len(result.errors)}")
                for err in result.errors:
                    print(f"  - {err}")

            for name, worker_result in result.worker_results.items():
                print(f"\n{name}:")
                print(f"  Processed: {worker_result.processed_count}")
                print(f"  Failed: {worker_result.failed_count}")
                print(f"  Skipped: {worker_result.skipped_count}")
                for key, value in worker_result.metadata.items():
                    print(f"  {key}: {value}")

            return 0 if not result.errors else 1

        elif args.loop:
            logger.info("Starting sweep loop (Ctrl+C to stop)...")
            run_worker_loop(
                interval_seconds=args.interval,
                max_iterations=args.max_iterations,
                batch_size=args.batch_size,
            )
            return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except Exception as e:
        logger.error(f"Worker failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
