"""Tests for the Redis Streams broker against a mocked Redis client."""

import json
from unittest.mock import MagicMock

import pytest
import redis
from ordering.domain import ordering
from ordering.messaging.redis_broker import ReclaimingRedisBroker
from protean.port.broker import registry

STREAM = "payment_events"
GROUP = "ordering.payments.consumer.PaymentEventSubscriber"


def _entry(message_id, message):
    return (message_id.encode(), {b"data": json.dumps(message).encode()})


def _read_reply(*entries):
    return [[STREAM.encode(), list(entries)]] if entries else []


@pytest.fixture()
def client():
    client = MagicMock()
    client.xautoclaim.return_value = [b"0-0", [], []]
    client.xreadgroup.return_value = []
    return client


@pytest.fixture()
def broker(client):
    broker = ReclaimingRedisBroker(
        "streams",
        ordering,
        {"provider": "redis_streams", "URI": "redis://localhost:6379/0", "claim_min_idle_ms": 30000},
    )
    broker.redis_instance = client
    return broker


class TestRegistration:
    def test_provider_name_resolves_to_the_broker(self):
        assert registry.get("redis_streams") is ReclaimingRedisBroker

    def test_claim_idle_time_defaults_to_a_minute(self):
        broker = ReclaimingRedisBroker("streams", ordering, {"URI": "redis://localhost:6379/0"})
        assert broker.claim_min_idle_ms == 60000


class TestReclaimingStalledDeliveries:
    def test_claims_entries_idle_in_other_consumers(self, broker, client):
        client.xautoclaim.return_value = [b"0-0", [_entry("1-0", {"event": "PaymentSucceeded"})], []]

        messages = broker._read(STREAM, GROUP, 5)

        assert messages == [("1-0", {"event": "PaymentSucceeded"})]
        client.xautoclaim.assert_called_once_with(
            STREAM,
            GROUP,
            broker._consumer_name,
            min_idle_time=30000,
            start_id="0-0",
            count=5,
        )

    def test_reclaimed_entries_are_not_returned_twice(self, broker, client):
        stalled = _entry("1-0", {"event": "PaymentSucceeded"})
        client.xautoclaim.return_value = [b"0-0", [stalled], []]
        client.xreadgroup.side_effect = [
            _read_reply(_entry("2-0", {"event": "PaymentFailed"})),
            _read_reply(stalled),
        ]

        messages = broker._read(STREAM, GROUP, 5)

        assert [identifier for identifier, _ in messages] == ["1-0", "2-0"]

    def test_full_batch_of_reclaimed_entries_skips_the_group_read(self, broker, client):
        client.xautoclaim.return_value = [
            b"3-0",
            [_entry("1-0", {"n": 1}), _entry("2-0", {"n": 2})],
            [],
        ]

        messages = broker._read(STREAM, GROUP, 2)

        assert len(messages) == 2
        client.xreadgroup.assert_not_called()

    def test_scan_resumes_from_the_returned_cursor(self, broker, client):
        client.xautoclaim.return_value = [b"7-0", [], []]

        broker._read(STREAM, GROUP, 5)
        broker._read(STREAM, GROUP, 5)

        assert client.xautoclaim.call_args_list[1].kwargs["start_id"] == "7-0"

    def test_deleted_entries_are_skipped(self, broker, client):
        client.xautoclaim.return_value = [b"0-0", [(b"1-0", None), _entry("2-0", {"n": 2})], [b"1-0"]]

        assert broker._read(STREAM, GROUP, 5) == [("2-0", {"n": 2})]

    def test_claim_errors_fall_back_to_new_deliveries(self, broker, client):
        client.xautoclaim.side_effect = redis.ResponseError("ERR unknown command 'XAUTOCLAIM'")
        client.xreadgroup.side_effect = [_read_reply(_entry("2-0", {"n": 2})), []]

        assert broker._read(STREAM, GROUP, 5) == [("2-0", {"n": 2})]


class TestConsumerGroups:
    def test_existing_group_is_reused(self, broker, client):
        client.xgroup_create.side_effect = redis.ResponseError("BUSYGROUP Consumer Group name already exists")

        broker._read(STREAM, GROUP, 5)
        broker._read(STREAM, GROUP, 5)

        client.xgroup_create.assert_called_once()
        assert client.xautoclaim.call_count == 2
