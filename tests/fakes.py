"""In-memory fakes for the change source and the sink."""

import threading
from typing import Any, Dict, Iterable, Iterator, List

from couchhouse.connectors.cdc.models import BEGINNING_SEQ, ChangeEvent
from couchhouse.connectors.clickhouse_writer import WriteMode


def seq_for(n: int) -> str:
    """Zero-padded tokens compare in feed order."""
    return f"{n:06d}-g1AAAAB3eJzLYWBgYMpgTmEQTUlKzi9KdUhJMtTLTczJT"


def make_events(count: int, start: int = 1) -> List[ChangeEvent]:
    return [
        ChangeEvent(
            seq=seq_for(n),
            document={"_id": f"doc-{n}", "_rev": f"1-{n:x}", "n": n},
            id=f"doc-{n}"
        )
        for n in range(start, start + count)
    ]


class FakeSource:
    """In-memory change feed that resumes strictly after ``since``."""

    def __init__(self, events: Iterable[ChangeEvent] = ()):
        self.events = list(events)
        self.opened: List[tuple] = []
        self.closed = False

    def open(self, feed: str, since: str, include_docs: bool = True) -> Iterator[ChangeEvent]:
        self.opened.append((feed, since, include_docs))
        return (e for e in self.events if since == BEGINNING_SEQ or e.seq > since)

    def close(self) -> None:
        self.closed = True


class RecordingSink:
    """Sink that records every bulk insert and can fail on chosen calls."""

    def __init__(self, fail_on: Iterable[int] = ()):
        self.fail_on = set(fail_on)
        self.calls: List[Dict[str, Any]] = []
        self.lock = threading.Lock()
        self.on_insert = None

    def bulk_insert(self, table: str, documents: List[Dict[str, Any]],
                    write_mode: WriteMode = WriteMode.ASYNC) -> int:
        with self.lock:
            call_number = len(self.calls) + 1
            if call_number in self.fail_on:
                self.fail_on.discard(call_number)
                raise ConnectionError("ClickHouse unavailable")
            self.calls.append({
                "table": table,
                "documents": list(documents),
                "write_mode": write_mode
            })
        if self.on_insert is not None:
            self.on_insert(len(self.calls))
        return len(documents)

    @property
    def batch_sizes(self) -> List[int]:
        return [len(c["documents"]) for c in self.calls]

    @property
    def documents(self) -> List[Dict[str, Any]]:
        return [doc for c in self.calls for doc in c["documents"]]

    def table_for(self, feed: str) -> str:
        return f"couchhouse.{feed}"

    def close(self) -> None:
        pass
