"""
Replication pipeline: change feed -> batcher -> sink writer -> checkpoint.

The batcher runs on a producer thread and hands completed batches to the
calling thread through a bounded queue. When the sink is slow the queue fills,
the producer blocks, and it stops pulling from the source.
"""

import contextvars
import queue
import signal
import threading
from datetime import datetime, timezone
from typing import Callable, Iterable, Iterator, Optional
import logging

from ..connectors.cdc.batcher import Batcher, DEFAULT_BATCH_SIZE
from ..connectors.cdc.checkpoint_store import CheckpointStore
from ..connectors.cdc.errors import ConfigurationError, CouchhouseError, SourceError
from ..connectors.cdc.models import ChangeEvent, ChangeSource
from ..connectors.cdc.sink_writer import Sink, SinkWriter
from ..connectors.clickhouse_writer import WriteMode
from ..utils.logging import CorrelationContext
from .models import JobStatus, ReplicationResult

logger = logging.getLogger(__name__)

# Marks the end of the batch stream on the queue
_END = object()

# How often a blocked producer re-checks for an aborted run
_PUT_POLL_SECONDS = 0.1


class ReplicationPipeline:
    """
    Replicate one change feed into the sink, batch by batch.

    Steps:
    1. Load the checkpoint for the feed (once)
    2. Open the source after that token
    3. Batch events on a producer thread, queueing at most ``queue_size``
       completed batches
    4. Write each batch and save its checkpoint before taking the next one

    A pipeline instance runs once.

    Example:
        >>> pipeline = ReplicationPipeline(
        ...     feed="orders",
        ...     source=CloudantChangesSource(client),
        ...     sink=ClickHouseSink(),
        ...     checkpoint_store=FileCheckpointStore("."),
        ...     table="couchhouse.orders"
        ... )
        >>> result = pipeline.run()
    """

    def __init__(
        self,
        feed: Optional[str],
        source: ChangeSource,
        sink: Sink,
        checkpoint_store: CheckpointStore,
        table: Optional[str] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        queue_size: int = 1,
        write_mode: WriteMode = WriteMode.ASYNC,
        progress: Optional[Callable[[str], None]] = None,
        join_timeout: float = 30.0
    ):
        """
        Args:
            feed: Feed identity (source database or collection name)
            source: Change feed source
            sink: Bulk insert target
            checkpoint_store: Store for sequence tokens
            table: Target table (default: the feed name)
            batch_size: Events per sink write
            queue_size: Completed batches allowed to wait for the writer
            write_mode: Sink acknowledgement mode
            progress: Receives one progress line per batch (default: stdout)
            join_timeout: Seconds to wait for the producer after the writer is done
        """
        if queue_size <= 0:
            raise ValueError("queue_size must be positive")

        self.feed = feed
        self.source = source
        self.sink = sink
        self.checkpoint_store = checkpoint_store
        self.table = table or feed
        self.batcher = Batcher(batch_size)
        self.queue_size = queue_size
        self.write_mode = WriteMode(write_mode)
        self.progress = progress
        self.join_timeout = join_timeout

        self.since: Optional[str] = None
        self.writer: Optional[SinkWriter] = None
        self.result: Optional[ReplicationResult] = None

        self._stop_requested = threading.Event()
        self._aborted = threading.Event()
        self._producer_error: Optional[BaseException] = None
        self._original_sigterm = None
        self._original_sigint = None

    def run(self, handle_signals: bool = False) -> ReplicationResult:
        """
        Run until the feed ends, ``stop()`` is called, or a stage fails.

        Args:
            handle_signals: Call ``stop()`` on SIGTERM/SIGINT (main thread only)

        Returns:
            ReplicationResult with status SUCCESS or CANCELLED

        Raises:
            ConfigurationError: If no feed identity is set
            SinkWriteError, CheckpointError, SourceError: If a stage fails
        """
        if not self.feed:
            raise ConfigurationError("A feed identity (source database name) is required")

        with CorrelationContext():
            if handle_signals:
                self._setup_signal_handlers()
            try:
                return self._run()
            finally:
                if handle_signals:
                    self._restore_signal_handlers()

    def stop(self) -> None:
        """
        Stop pulling from the source.

        Already-received events are flushed as a final batch and written,
        in-flight and queued batches finish with their checkpoints, then
        ``run()`` returns.
        """
        if self._stop_requested.is_set():
            return
        logger.info(f"Stopping replication for feed {self.feed}", extra={"feed": self.feed})
        self._stop_requested.set()
        self.source.close()

    def _run(self) -> ReplicationResult:
        self.since = self.checkpoint_store.load(self.feed)
        logger.info(
            f"Starting changes feed from {self.since[:20]}",
            extra={"feed": self.feed, "since": self.since}
        )
        self.result = ReplicationResult(feed=self.feed, status=JobStatus.RUNNING, since=self.since)
        self.writer = SinkWriter(
            feed=self.feed,
            sink=self.sink,
            checkpoint_store=self.checkpoint_store,
            table=self.table,
            write_mode=self.write_mode,
            progress=self.progress
        )

        try:
            events = self.source.open(self.feed, self.since, include_docs=True)
        except Exception as e:
            self._finish(JobStatus.FAILED, error=e)
            logger.error(
                f"Failed to open change feed: {e}",
                extra={"feed": self.feed, "since": self.since[:20]}
            )
            if isinstance(e, CouchhouseError):
                raise
            raise SourceError(f"Change feed for {self.feed} failed: {e}") from e

        batches: queue.Queue = queue.Queue(maxsize=self.queue_size)
        context = contextvars.copy_context()
        producer = threading.Thread(
            target=context.run,
            args=(self._produce, events, batches),
            name=f"couchhouse-batcher-{self.feed}",
            daemon=True
        )
        producer.start()

        try:
            self._consume(batches)
        except Exception as e:
            self._aborted.set()
            self.source.close()
            self._finish(JobStatus.FAILED, error=e)
            logger.error(
                f"Replication failed: {e}",
                exc_info=True,
                extra={"feed": self.feed, "last_seq": self.writer.last_seq}
            )
            raise
        finally:
            producer.join(timeout=self.join_timeout)
            if producer.is_alive():
                logger.warning(
                    "Batcher thread did not exit",
                    extra={"feed": self.feed, "timeout_seconds": self.join_timeout}
                )

        if self._producer_error is not None:
            error = self._producer_error
            self._finish(JobStatus.FAILED, error=error)
            logger.error(
                f"Change feed failed: {error}",
                extra={"feed": self.feed, "last_seq": self.writer.last_seq}
            )
            if isinstance(error, CouchhouseError):
                raise error
            raise SourceError(f"Change feed for {self.feed} failed: {error}") from error

        status = JobStatus.CANCELLED if self._stop_requested.is_set() else JobStatus.SUCCESS
        self._finish(status)
        logger.info(
            f"Replication {status.value} for feed {self.feed}",
            extra={
                "feed": self.feed,
                "batches_written": self.writer.batches_written,
                "documents_written": self.writer.documents_written,
                "last_seq": self.writer.last_seq
            }
        )
        return self.result

    def _consume(self, batches: queue.Queue) -> None:
        while True:
            batch = batches.get()
            if batch is _END:
                return
            self.writer.write(batch)

    def _produce(self, events: Iterable[ChangeEvent], batches: queue.Queue) -> None:
        try:
            for batch in self.batcher.batches(self._until_stopped(events)):
                if not self._offer(batches, batch):
                    return
        except Exception as e:
            self._producer_error = e
        finally:
            self._offer(batches, _END)

    def _until_stopped(self, events: Iterable[ChangeEvent]) -> Iterator[ChangeEvent]:
        """Yield events until the feed ends or the run is stopped or aborted."""
        iterator = iter(events)
        while not (self._stop_requested.is_set() or self._aborted.is_set()):
            try:
                event = next(iterator)
            except StopIteration:
                return
            yield event

    def _offer(self, batches: queue.Queue, item) -> bool:
        """Blocking put that gives up once the writer has failed."""
        while not self._aborted.is_set():
            try:
                batches.put(item, timeout=_PUT_POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    def _finish(self, status: JobStatus, error: Optional[BaseException] = None) -> None:
        self.result = self.result.model_copy(update={
            "status": status,
            "last_seq": self.writer.last_seq,
            "batches_written": self.writer.batches_written,
            "documents_written": self.writer.documents_written,
            "completed_at": datetime.now(timezone.utc),
            "error": str(error) if error is not None else None,
        })

    def _setup_signal_handlers(self) -> None:
        def signal_handler(signum, frame):
            logger.info(f"Received shutdown signal {signum}", extra={"feed": self.feed})
            # A second signal goes to the previous handlers and interrupts
            self._restore_signal_handlers()
            self.stop()

        self._original_sigterm = signal.signal(signal.SIGTERM, signal_handler)
        self._original_sigint = signal.signal(signal.SIGINT, signal_handler)

    def _restore_signal_handlers(self) -> None:
        if self._original_sigterm is not None:
            signal.signal(signal.SIGTERM, self._original_sigterm)
        if self._original_sigint is not None:
            signal.signal(signal.SIGINT, self._original_sigint)
