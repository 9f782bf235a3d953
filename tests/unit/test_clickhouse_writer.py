"""Unit tests for the ClickHouse sink."""

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from couchhouse.config.settings import ClickHouseSettings
from couchhouse.connectors.clickhouse_writer import ClickHouseSink, WriteMode, insert_settings


class TestInsertSettings:
    """Test insert_settings."""

    def test_async_mode(self):
        assert insert_settings(WriteMode.ASYNC) == {
            "date_time_input_format": "best_effort",
            "async_insert": 1,
            "wait_for_async_insert": 0,
        }

    def test_sync_mode(self):
        settings = insert_settings("sync")
        assert settings["async_insert"] == 0
        assert "wait_for_async_insert" not in settings
        assert settings["date_time_input_format"] == "best_effort"

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            insert_settings("eventually")


class TestClickHouseSink:
    """Test ClickHouseSink."""

    @pytest.fixture
    def mock_client(self):
        with patch("couchhouse.connectors.clickhouse_writer.clickhouse_connect.get_client") as get_client:
            client = MagicMock()
            get_client.return_value = client
            yield get_client, client

    def test_bulk_insert_sends_json_each_row(self, mock_client):
        """Test documents are sent as one newline-delimited JSON block."""
        get_client, client = mock_client
        sink = ClickHouseSink(host="ch", port=8443, username="u", password="p", secure=True)
        documents = [
            {"id": "a", "n": 1},
            {"id": "b", "at": datetime(2023, 12, 6, 10, 54, 48, tzinfo=timezone.utc)},
        ]

        assert sink.bulk_insert("couchhouse.orders", documents) == 2

        get_client.assert_called_once_with(
            host="ch", port=8443, username="u", password="p", secure=True,
            send_receive_timeout=300
        )
        args, kwargs = client.raw_insert.call_args
        assert args == ("couchhouse.orders",)
        assert kwargs["fmt"] == "JSONEachRow"
        assert kwargs["settings"] == insert_settings(WriteMode.ASYNC)
        rows = [json.loads(line) for line in kwargs["insert_block"].decode("utf-8").split("\n")]
        assert rows == [
            {"id": "a", "n": 1},
            {"id": "b", "at": "2023-12-06 10:54:48+00:00"},
        ]

    def test_sync_write_mode(self, mock_client):
        _, client = mock_client
        ClickHouseSink().bulk_insert("t", [{"id": "a"}], WriteMode.SYNC)
        assert client.raw_insert.call_args.kwargs["settings"]["async_insert"] == 0

    def test_empty_documents_skip_request(self, mock_client):
        get_client, client = mock_client
        assert ClickHouseSink().bulk_insert("t", []) == 0
        get_client.assert_not_called()

    def test_client_reused(self, mock_client):
        get_client, _ = mock_client
        sink = ClickHouseSink()
        sink.bulk_insert("t", [{"id": "a"}])
        sink.bulk_insert("t", [{"id": "b"}])
        get_client.assert_called_once()

    def test_errors_propagate(self, mock_client):
        _, client = mock_client
        client.raw_insert.side_effect = ConnectionError("timed out")
        with pytest.raises(ConnectionError):
            ClickHouseSink().bulk_insert("t", [{"id": "a"}])

    def test_close(self, mock_client):
        _, client = mock_client
        sink = ClickHouseSink()
        sink.bulk_insert("t", [{"id": "a"}])
        sink.close()
        client.close.assert_called_once()
        sink.close()

    def test_from_settings_and_table_for(self):
        settings = ClickHouseSettings(host="clickhouse", database="replica")
        sink = ClickHouseSink.from_settings(settings)
        assert sink.host == "clickhouse"
        assert sink.table_for("orders") == "replica.orders"
