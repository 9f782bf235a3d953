"""
ClickHouse sink

Bulk inserts JSON documents with JSONEachRow, leaving column mapping and
timestamp parsing to the server.
"""

from enum import Enum
from typing import Any, Dict, List
import json

import clickhouse_connect

from ..utils.logging import get_logger

logger = get_logger(__name__)


class WriteMode(str, Enum):
    """How long an insert waits before ClickHouse acknowledges it."""
    # Accept for processing without waiting for the data to be flushed
    ASYNC = "async"
    # Wait until the data is written to storage
    SYNC = "sync"


def insert_settings(write_mode: WriteMode) -> Dict[str, Any]:
    """Server settings for one bulk insert in the given write mode."""
    settings: Dict[str, Any] = {
        # Accept serialized datetimes such as '2023-12-06T10:54:48.000Z'
        "date_time_input_format": "best_effort",
    }
    if WriteMode(write_mode) is WriteMode.ASYNC:
        # Let ClickHouse group small inserts into bigger parts
        settings["async_insert"] = 1
        settings["wait_for_async_insert"] = 0
    else:
        settings["async_insert"] = 0
    return settings


class ClickHouseSink:
    """Bulk insert target backed by clickhouse-connect."""

    def __init__(self, host: str = "localhost", port: int = 8123,
                 username: str = "default", password: str = "",
                 database: str = "couchhouse", secure: bool = False,
                 send_receive_timeout: int = 300):
        """Initialize ClickHouse sink.

        Args:
            host: ClickHouse host
            port: ClickHouse HTTP port
            username: Username
            password: Password
            database: Database holding one table per feed
            secure: Use HTTPS
            send_receive_timeout: Seconds before a write is treated as failed
        """
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.database = database
        self.secure = secure
        self.send_receive_timeout = send_receive_timeout
        self._client = None

    @classmethod
    def from_settings(cls, settings) -> "ClickHouseSink":
        """Build a sink from ClickHouseSettings."""
        return cls(
            host=settings.host,
            port=settings.port,
            username=settings.username,
            password=settings.password,
            database=settings.database,
            secure=settings.secure,
            send_receive_timeout=settings.send_receive_timeout,
        )

    def _get_client(self):
        """Get or create ClickHouse client."""
        if self._client is None:
            self._client = clickhouse_connect.get_client(
                host=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                secure=self.secure,
                send_receive_timeout=self.send_receive_timeout
            )
        return self._client

    def table_for(self, feed: str) -> str:
        """Target table for a feed."""
        return f"{self.database}.{feed}"

    def bulk_insert(self, table: str, documents: List[Dict[str, Any]],
                    write_mode: WriteMode = WriteMode.ASYNC) -> int:
        """Insert documents as one JSONEachRow request.

        Args:
            table: Fully qualified target table
            documents: Documents in insert order
            write_mode: Acknowledgement mode

        Returns:
            Number of documents sent

        Raises:
            Any client or server error, including timeouts
        """
        if not documents:
            return 0

        block = "\n".join(json.dumps(doc, default=str) for doc in documents).encode("utf-8")
        self._get_client().raw_insert(
            table,
            insert_block=block,
            settings=insert_settings(write_mode),
            fmt="JSONEachRow"
        )

        logger.debug(
            f"Inserted {len(documents)} documents into {table}",
            extra={
                'event_type': 'clickhouse_batch_inserted',
                'table_name': table,
                'batch_size': len(documents),
                'write_mode': WriteMode(write_mode).value
            }
        )
        return len(documents)

    def close(self) -> None:
        """Close the underlying client."""
        if self._client is not None:
            self._client.close()
            self._client = None
