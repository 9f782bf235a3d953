"""
Integration test: replicate a feed into a real ClickHouse server.

Needs Docker. Enable with COUCHHOUSE_INTEGRATION=1.
"""

import os

import pytest

from couchhouse.connectors.clickhouse_writer import ClickHouseSink, WriteMode
from couchhouse.jobs.models import JobStatus
from couchhouse.jobs.replication import ReplicationPipeline

from tests.fakes import FakeSource, make_events, seq_for

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        os.getenv("COUCHHOUSE_INTEGRATION") != "1",
        reason="set COUCHHOUSE_INTEGRATION=1 to run against a ClickHouse container"
    ),
]

HTTP_PORT = 8123


@pytest.fixture(scope="module")
def clickhouse():
    from testcontainers.clickhouse import ClickHouseContainer

    container = ClickHouseContainer(
        "clickhouse/clickhouse-server:24.3",
        username="couchhouse",
        password="couchhouse",
        dbname="couchhouse"
    ).with_exposed_ports(HTTP_PORT)
    with container:
        yield container


@pytest.fixture
def sink(clickhouse):
    sink = ClickHouseSink(
        host=clickhouse.get_container_host_ip(),
        port=int(clickhouse.get_exposed_port(HTTP_PORT)),
        username="couchhouse",
        password="couchhouse",
        database="couchhouse"
    )
    client = sink._get_client()
    client.command("DROP TABLE IF EXISTS couchhouse.orders")
    client.command(
        "CREATE TABLE couchhouse.orders (id String, n Int64) "
        "ENGINE = MergeTree ORDER BY id"
    )
    yield sink
    sink.close()


def test_replicates_and_resumes(sink, store):
    """Test batches land in ClickHouse and a restart resumes after the checkpoint."""
    events = make_events(250)

    first = ReplicationPipeline(
        feed="orders", source=FakeSource(events[:120]), sink=sink, checkpoint_store=store,
        table="couchhouse.orders", write_mode=WriteMode.SYNC, progress=lambda line: None
    ).run()
    second = ReplicationPipeline(
        feed="orders", source=FakeSource(events), sink=sink, checkpoint_store=store,
        table="couchhouse.orders", write_mode=WriteMode.SYNC, progress=lambda line: None
    ).run()

    client = sink._get_client()
    assert first.status == JobStatus.SUCCESS
    assert second.since == seq_for(120)
    assert client.command("SELECT count() FROM couchhouse.orders") == 250
    assert client.command("SELECT uniqExact(id) FROM couchhouse.orders") == 250
    assert store.load("orders") == seq_for(250)
