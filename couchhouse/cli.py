"""
Command line entry point.

    couchhouse --feed orders          # follow the feed indefinitely
    couchhouse --feed orders --once   # stop once the feed has caught up

The feed defaults to CLOUDANT_DATABASE. Exit status is 0 on normal completion,
1 on configuration errors and 2 when replication fails.
"""

import argparse
import json
import sys
from typing import List, Optional

from prometheus_client import start_http_server
from pymongo.errors import PyMongoError

from .config.settings import Settings, get_settings
from .connectors.cdc.checkpoint_store import CheckpointStore, FileCheckpointStore, SqlCheckpointStore
from .connectors.cdc.cloudant_changes import CloudantChangesSource
from .connectors.cdc.errors import ConfigurationError, CouchhouseError
from .connectors.cdc.mongo_changestream import MongoChangeStreamSource
from .connectors.clickhouse_writer import ClickHouseSink
from .jobs.replication import ReplicationPipeline
from .utils.logging import configure_logging, get_logger

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_FAILED = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="couchhouse",
        description="Replicate a Cloudant/CouchDB or MongoDB change feed into ClickHouse"
    )
    parser.add_argument(
        "--feed",
        help="Database (or MongoDB collection) to replicate; defaults to CLOUDANT_DATABASE"
    )
    parser.add_argument(
        "--source",
        choices=["cloudant", "mongo"],
        help="Change feed source (default: REPLICATION_SOURCE or cloudant)"
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        help="Events per sink write (default: REPLICATION_BATCH_SIZE or 100)"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Stop once the feed has caught up instead of following it"
    )
    parser.add_argument(
        "--show-checkpoint",
        action="store_true",
        help="Print the stored checkpoint for the feed and exit"
    )
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Delete the stored checkpoint before starting"
    )
    return parser


def build_checkpoint_store(settings: Settings) -> CheckpointStore:
    if settings.checkpoint.backend == "sql":
        if not settings.checkpoint.database_url:
            raise ConfigurationError("CHECKPOINT_DATABASE_URL is required for the sql backend")
        return SqlCheckpointStore(settings.checkpoint.database_url)
    return FileCheckpointStore(settings.checkpoint.directory)


def build_source(settings: Settings, source: str, follow: bool):
    """Build the change source, reporting bad client settings as ConfigurationError."""
    try:
        if source == "mongo":
            return MongoChangeStreamSource.from_settings(settings.mongo)
        return CloudantChangesSource.from_settings(settings.cloudant, follow=follow)
    except (ValueError, PyMongoError) as e:
        raise ConfigurationError(f"Invalid {source} source configuration: {e}") from e


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level)

    feed = args.feed or settings.cloudant.database
    if not feed:
        print("Missing env variable CLOUDANT_DATABASE (or --feed)", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    batch_size = args.batch_size if args.batch_size is not None else settings.replication.batch_size
    if batch_size <= 0:
        print("--batch-size must be positive", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        store = build_checkpoint_store(settings)
    except ConfigurationError as e:
        print(str(e), file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except CouchhouseError as e:
        print(f"Checkpoint store unavailable: {e}", file=sys.stderr)
        return EXIT_FAILED

    sink = None
    try:
        if args.show_checkpoint:
            checkpoint = store.checkpoint(feed)
            print(json.dumps({"feed": checkpoint.feed, "lastSeq": checkpoint.last_seq}))
            return EXIT_OK

        if args.reset and store.delete(feed):
            logger.info(f"Checkpoint reset for feed {feed}", extra={"feed": feed})

        if settings.metrics_port:
            start_http_server(settings.metrics_port)

        sink = ClickHouseSink.from_settings(settings.clickhouse)
        source = build_source(
            settings,
            args.source or settings.replication.source,
            follow=settings.replication.follow and not args.once
        )
        pipeline = ReplicationPipeline(
            feed=feed,
            source=source,
            sink=sink,
            checkpoint_store=store,
            table=sink.table_for(feed),
            batch_size=batch_size,
            queue_size=settings.replication.queue_size,
            write_mode=settings.clickhouse.write_mode
        )
        pipeline.run(handle_signals=True)
    except ConfigurationError as e:
        print(str(e), file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except CouchhouseError as e:
        print(f"Replication failed: {e}", file=sys.stderr)
        return EXIT_FAILED
    finally:
        if sink is not None:
            sink.close()
        store.close()

    print("Stopped")
    return EXIT_OK
