"""
MongoDB changestream source.

The resume token's ``_data`` string is used as the sequence token, so a
checkpoint written for a MongoDB feed is a plain string like any other.
"""

from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.errors import PyMongoError
from typing import Any, Dict, Iterator, List, Optional
from datetime import datetime
import base64
import logging

from bson import Decimal128, ObjectId

from .errors import SourceError
from .models import BEGINNING_SEQ, ChangeEvent

logger = logging.getLogger(__name__)

# Operations that carry a document body
DOCUMENT_OPERATIONS = ("insert", "update", "replace")


class MongoChangeStreamSource:
    """
    Watch a MongoDB database's collection and emit its changes.

    The feed identity is the collection name. A change stream cannot replay
    history, so starting from the beginning sentinel means "from now".
    Requires a replica set or sharded cluster.

    Example:
        >>> source = MongoChangeStreamSource(MongoClient(uri)["shop"])
        >>> for event in source.open("orders", since="0"):
        ...     print(event.seq, event.id)
    """

    def __init__(self, database, pipeline_filter: Optional[List[Dict]] = None,
                 max_await_time_ms: int = 1000):
        """
        Args:
            database: PyMongo database holding the watched collections
            pipeline_filter: Optional changestream aggregation pipeline
            max_await_time_ms: Server wait per getMore
        """
        self.database = database
        self.pipeline_filter = pipeline_filter or []
        self.max_await_time_ms = max_await_time_ms
        self._stream = None

    @classmethod
    def from_settings(cls, settings) -> "MongoChangeStreamSource":
        """Build a source from MongoSettings."""
        return cls(MongoClient(settings.uri)[settings.database])

    def open(self, feed: str, since: str, include_docs: bool = True) -> Iterator[ChangeEvent]:
        """
        Open a changestream on collection ``feed`` after token ``since``.

        Raises:
            SourceError: If the changestream fails
        """
        collection: Collection = self.database[feed]
        stream_options: Dict[str, Any] = {"max_await_time_ms": self.max_await_time_ms}
        if include_docs:
            stream_options["full_document"] = "updateLookup"
        if since and since != BEGINNING_SEQ:
            stream_options["resume_after"] = {"_data": since}

        logger.info(
            f"Opening changestream for collection {feed}",
            extra={"feed": feed, "since": since[:20], "has_resume_token": "resume_after" in stream_options}
        )
        try:
            self._stream = collection.watch(pipeline=self.pipeline_filter, **stream_options)
        except PyMongoError as e:
            raise SourceError(f"Failed to open changestream for {feed}: {e}") from e
        return self._iterate(self._stream, feed)

    def _iterate(self, stream, feed: str) -> Iterator[ChangeEvent]:
        try:
            with stream:
                for change in stream:
                    yield to_change_event(change)
        except PyMongoError as e:
            if self._stream is None:
                # Closed by close(); treat as end of feed
                return
            logger.error(
                f"Changestream failed: {e}",
                extra={"feed": feed, "error": str(e)}
            )
            raise SourceError(f"Changestream for {feed} failed: {e}") from e

    def close(self) -> None:
        if self._stream is not None:
            stream, self._stream = self._stream, None
            stream.close()


def to_change_event(change: Dict[str, Any]) -> ChangeEvent:
    """Convert a changestream document into a ChangeEvent."""
    operation = change.get("operationType")
    key = json_safe(change.get("documentKey", {}).get("_id"))
    doc_id = str(key) if key is not None else None

    document = change.get("fullDocument") if operation in DOCUMENT_OPERATIONS else None
    if document:
        document = json_safe(document)
    else:
        document = {"_id": key}
        if operation == "delete":
            document["_deleted"] = True

    return ChangeEvent(
        seq=change["_id"]["_data"],
        document=document,
        id=doc_id,
        deleted=operation == "delete"
    )


def json_safe(value: Any) -> Any:
    """
    Recursively convert BSON values into JSON-serializable ones.

    - ObjectId, Decimal128 -> str
    - datetime -> ISO string
    - bytes -> base64 string
    """
    if isinstance(value, (ObjectId, Decimal128)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bytes):
        return base64.b64encode(value).decode("ascii")
    if isinstance(value, dict):
        return {k: json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [json_safe(v) for v in value]
    return value
