"""
Writes batches to the sink and advances the checkpoint after each success.
"""

from typing import Any, Callable, Dict, List, Optional, Protocol, TextIO
import logging
import sys
import time

from prometheus_client import Counter, Histogram

from ..clickhouse_writer import WriteMode
from .checkpoint_store import CheckpointStore
from .errors import CheckpointError, SinkWriteError
from .models import Batch

logger = logging.getLogger(__name__)

# Length of the sequence token prefix shown in progress lines
SEQ_PREFIX_LENGTH = 20

batches_written_total = Counter(
    'couchhouse_batches_written_total',
    'Total batches written to the sink',
    ['feed']
)

documents_written_total = Counter(
    'couchhouse_documents_written_total',
    'Total documents written to the sink',
    ['feed']
)

sink_errors_total = Counter(
    'couchhouse_sink_errors_total',
    'Total failed batch writes',
    ['feed', 'error_type']
)

batch_write_seconds = Histogram(
    'couchhouse_batch_write_seconds',
    'Time to write a batch and save its checkpoint',
    ['feed']
)


class Sink(Protocol):
    """Bulk insert target."""

    def bulk_insert(self, table: str, documents: List[Dict[str, Any]],
                    write_mode: WriteMode = WriteMode.ASYNC) -> Any:
        ...


def progress_line(batch_size: int, seq: str) -> str:
    return f"process batch size {batch_size} - {seq[:SEQ_PREFIX_LENGTH]}..."


class SinkWriter:
    """
    Writes one batch at a time, then records its last sequence token.

    For each batch:
    1. Bulk insert the batch's documents, in order, as one request
    2. If the insert succeeds: save the last event's token as the checkpoint
    3. Report progress

    A failed insert never touches the checkpoint. A checkpoint that cannot be
    saved after a successful insert is fatal too; on restart that batch is
    re-sent (at-least-once).

    Thread Safety: NOT thread-safe. Exactly one writer per feed.

    Example:
        >>> writer = SinkWriter("orders", sink, store, table="couchhouse.orders")
        >>> writer.write(batch)
        '250-g1AAAA...'
    """

    def __init__(
        self,
        feed: str,
        sink: Sink,
        checkpoint_store: CheckpointStore,
        table: str,
        write_mode: WriteMode = WriteMode.ASYNC,
        progress: Optional[Callable[[str], None]] = None
    ):
        """
        Args:
            feed: Feed identity the checkpoint is stored under
            sink: Bulk insert target
            checkpoint_store: Store for sequence tokens
            table: Target table name
            write_mode: Sink acknowledgement mode
            progress: Receives one progress line per batch (default: stdout)
        """
        self.feed = feed
        self.sink = sink
        self.checkpoint_store = checkpoint_store
        self.table = table
        self.write_mode = WriteMode(write_mode)
        self.progress = progress or _print_to(sys.stdout)
        self.last_seq: Optional[str] = None
        self.batches_written: int = 0
        self.documents_written: int = 0

    def write(self, batch: Batch) -> Optional[str]:
        """
        Write a batch and advance the checkpoint.

        Args:
            batch: Ordered change events

        Returns:
            The new checkpoint token, or None for an empty batch

        Raises:
            SinkWriteError: If the sink insert fails
            CheckpointError: If the checkpoint cannot be saved
        """
        if not batch:
            logger.debug("Ignoring empty batch", extra={"feed": self.feed})
            return None

        start = time.perf_counter()
        documents = [event.document for event in batch]

        try:
            self.sink.bulk_insert(self.table, documents, self.write_mode)
        except Exception as e:
            sink_errors_total.labels(feed=self.feed, error_type=type(e).__name__).inc()
            logger.error(
                f"Error writing batch: {e}",
                extra={
                    "feed": self.feed,
                    "table_name": self.table,
                    "batch_size": len(batch),
                    "error": str(e)
                }
            )
            raise SinkWriteError(f"Failed to write batch of {len(batch)} to {self.table}: {e}") from e

        seq = batch[-1].seq
        try:
            self.checkpoint_store.save(self.feed, seq)
        except CheckpointError:
            raise
        except Exception as e:
            raise CheckpointError(f"Failed to save checkpoint: {e}") from e
        self.last_seq = seq

        duration = time.perf_counter() - start
        self.batches_written += 1
        self.documents_written += len(batch)
        batches_written_total.labels(feed=self.feed).inc()
        documents_written_total.labels(feed=self.feed).inc(len(batch))
        batch_write_seconds.labels(feed=self.feed).observe(duration)

        logger.info(
            f"Wrote batch of {len(batch)} documents",
            extra={
                "feed": self.feed,
                "table_name": self.table,
                "batch_size": len(batch),
                "seq": self.last_seq[:SEQ_PREFIX_LENGTH],
                "duration_seconds": duration,
                "total_written": self.documents_written
            }
        )
        self.progress(progress_line(len(batch), self.last_seq))
        return self.last_seq


def _print_to(stream: TextIO) -> Callable[[str], None]:
    def emit(line: str) -> None:
        stream.write(line + "\n")
        stream.flush()
    return emit
