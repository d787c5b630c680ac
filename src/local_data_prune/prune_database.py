"""
prune_database.py - Shrink a production-sized object store to a working copy.

Keeps everything reachable from the configured root strategies and deletes
the rest, with every record that depends on a deleted object.

**Phases:**

1. *Validate* - build every root strategy from the config. A strategy that
   cannot run is fatal here, before anything in the store changes.
2. *Mark* (stage 01) - primary pass of every strategy, then the backfill
   passes; results accumulate in the ``retained_objects`` table.
3. *Sweep* (stage 02) - anti-join ``objects`` against the retain-set and
   cascade-delete the candidates in bounded batches, then recompute term
   counts.
4. *Anonymize* (stage 03) - field-level PII rewrite of what survived.

**Restart:** the job runs once per maintenance window against an otherwise
idle copy. Nothing spans a transaction across a batch, so an interrupted run
is re-run from scratch: marking is idempotent and the sweep's anti-join
always reflects the current store.

**Invariant:** an id present in the retain-set when the sweep starts is never
deleted by the sweep.

Exit codes:
    0: Success (a safety-valve stop is logged as a warning, not a failure)
    1: Fatal error (invalid configuration, missing store, failed statement)
"""
import argparse
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Sequence

import yaml
from pydantic import ValidationError

from local_data_prune.config_interface import Config, ConfigurationError, get_config_version, load_config
from local_data_prune.database_interface import DBError, DBSchemaError
from local_data_prune.logger import get_logger, setup_logging
from local_data_prune.stage_01_mark.database_stage_01_mark import Stage01MarkDatabaseInterface
from local_data_prune.stage_01_mark.stage_01_mark import MarkStats, RetentionMarker
from local_data_prune.stage_02_sweep.database_stage_02_sweep import Stage02SweepDatabaseInterface
from local_data_prune.stage_02_sweep.stage_02_sweep import SweepEngine, SweepStats
from local_data_prune.stage_03_anonymize.database_stage_03_anonymize import Stage03AnonymizeDatabaseInterface
from local_data_prune.stage_03_anonymize.stage_03_anonymize import AnonymizeStats, anonymize
from local_data_prune.strategies.registry import build_strategies

logger = get_logger(__name__)


@dataclass
class PruneStats:
    """Metrics collected during the pruning job."""

    mark: MarkStats | None = None
    sweep: SweepStats | None = None
    anonymize: AnonymizeStats | None = None
    terms_recounted: int = 0
    elapsed_seconds: float = 0.0

    @property
    def complete(self) -> bool:
        """True when the sweep ran to an empty anti-join."""
        return self.sweep is not None and not self.sweep.aborted


def run_prune(
    config: Config,
    mark_only: bool = False,
    now: datetime | None = None,
) -> PruneStats:
    """
    Execute the full mark-sweep-anonymize workflow.

    :param config: Validated configuration.
    :param mark_only: Stop after marking (the store's objects are untouched).
    :param now: Reference time for recency windows (defaults to now, UTC).
    :return: Statistics about the operation.
    :raises ConfigurationError: If a strategy cannot be built.
    :raises FileNotFoundError: If the store does not exist.
    """
    start = time.monotonic()
    strategies = build_strategies(config.strategies)

    db_path = config.database.path
    if not db_path.is_file():
        raise FileNotFoundError(f"Object store not found: {db_path}")

    logger.info("Pruning %s with config version %s", db_path, get_config_version(config))
    logger.info(
        "Strategies (in order): %s",
        ", ".join(s.name for s in strategies),
    )
    stats = PruneStats()
    log_queries = config.database.log_queries

    with Stage01MarkDatabaseInterface(db_path, log_queries=log_queries) as db:
        existing = db.prepare_retained_table(fresh=config.mark.fresh_run)
        if existing:
            logger.info("Continuing with %d IDs already retained", existing)
        stats.mark = RetentionMarker(db, config.mark, now=now).mark(strategies)

    if mark_only:
        logger.info("Mark-only run: %d IDs retained, nothing deleted", stats.mark.retained_total)
        stats.elapsed_seconds = time.monotonic() - start
        return stats

    with Stage02SweepDatabaseInterface(db_path, log_queries=log_queries) as db:
        engine = SweepEngine(db, config.sweep, reset_hooks=[db.reset_query_log])
        stats.sweep = engine.sweep()
        stats.terms_recounted = db.recount_terms()
        logger.info("Recounted %d term taxonomies", stats.terms_recounted)

    if config.anonymize.enabled:
        with Stage03AnonymizeDatabaseInterface(db_path, log_queries=log_queries) as db:
            stats.anonymize = anonymize(db, config.anonymize)

    stats.elapsed_seconds = time.monotonic() - start
    if stats.sweep.aborted:
        logger.warning(
            "Pruning stopped early after %.1fs; about %d IDs still to delete. Re-run to continue.",
            stats.elapsed_seconds,
            stats.sweep.remaining_estimate,
        )
    else:
        logger.info(
            "Pruning completed in %.1fs: %d retained, %d objects and %d revisions deleted",
            stats.elapsed_seconds,
            stats.mark.retained_total,
            stats.sweep.objects_deleted,
            stats.sweep.revisions_deleted,
        )
    return stats


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments and return an argparse.Namespace."""
    parser = argparse.ArgumentParser(
        description="Prune an object store down to the objects worth keeping locally.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("config/prune.yaml"),
        help="Path to prune.yaml",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Override database.path from the config",
    )
    parser.add_argument(
        "--mark-only",
        action="store_true",
        help="Build the retain-set and stop before deleting anything",
    )
    parser.add_argument(
        "--skip-anonymize",
        action="store_true",
        help="Do not run the PII rewrite after the sweep",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write the log to this file",
    )
    parser.add_argument("--verbose", action="store_true")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """
    Set entry point.

    :return: 0 on success, 1 on fatal error.
    """
    args = parse_args(argv)
    setup_logging(verbose=args.verbose, log_file=args.log_file)

    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        logger.error("%s", e)
        return 1
    except ValidationError as e:
        logger.error("Invalid configuration: %s", e)
        return 1
    except yaml.YAMLError as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    if args.db is not None:
        config.database.path = args.db.resolve()
    if args.skip_anonymize:
        config.anonymize.enabled = False

    try:
        stats = run_prune(config, mark_only=args.mark_only)
    except ConfigurationError as e:
        logger.error("Invalid configuration: %s", e)
        return 1
    except FileNotFoundError as e:
        logger.error("%s", e)
        return 1
    except DBSchemaError as e:
        logger.error("Schema validation failed: %s", e)
        return 1
    except DBError:
        logger.exception("Database error during pruning; re-run to continue")
        return 1
    except Exception:
        logger.exception("Unexpected error during pruning; re-run to continue")
        return 1

    if stats.sweep is not None:
        logger.debug("Sweep counters: %s", stats.sweep)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
