"""Redis Streams broker that reclaims stalled deliveries.

Protean's ``RedisBroker`` re-reads only the pending entries of its own
consumer, so a message delivered to a worker that died stays pending for good.
``ReclaimingRedisBroker`` first takes over entries that any consumer of the
group has left idle for ``claim_min_idle_ms`` (``XAUTOCLAIM``), then reads new
and own-pending entries the way ``RedisBroker`` does.

Registered with Protean as the ``redis_streams`` broker provider.
"""

from typing import Any

import redis
import structlog
from protean.adapters.broker.redis import RedisBroker

logger = structlog.get_logger(__name__)

DEFAULT_CLAIM_MIN_IDLE_MS = 60_000
_CURSOR_START = "0-0"


class ReclaimingRedisBroker(RedisBroker):
    __broker__ = "redis_streams"

    def __init__(self, name, domain, conn_info) -> None:
        super().__init__(name, domain, conn_info)
        self.claim_min_idle_ms = int(conn_info.get("claim_min_idle_ms", DEFAULT_CLAIM_MIN_IDLE_MS))
        # (stream, group) -> XAUTOCLAIM cursor to resume the PEL scan from
        self._claim_cursors: dict[tuple[str, str], str] = {}

    def _read(self, stream: str, consumer_group: str, no_of_messages: int) -> list[tuple[str, dict[str, Any]]]:
        messages = self._reclaim_stalled(stream, consumer_group, no_of_messages)
        if len(messages) >= no_of_messages:
            return messages[:no_of_messages]

        # Reclaimed entries are now this consumer's pending entries, which the
        # parent read returns again
        seen = {identifier for identifier, _ in messages}
        for identifier, message in super()._read(stream, consumer_group, no_of_messages - len(messages)):
            if identifier not in seen:
                messages.append((identifier, message))
                seen.add(identifier)
        return messages[:no_of_messages]

    def _reclaim_stalled(self, stream: str, consumer_group: str, count: int) -> list[tuple[str, dict[str, Any]]]:
        self._ensure_group(consumer_group, stream)
        key = (stream, consumer_group)
        try:
            reply = self._client.xautoclaim(
                stream,
                consumer_group,
                self._consumer_name,
                min_idle_time=self.claim_min_idle_ms,
                start_id=self._claim_cursors.get(key, _CURSOR_START),
                count=count,
            )
        except redis.ResponseError as exc:
            logger.warning("stalled_deliveries_reclaim_failed", stream=stream, group=consumer_group, error=str(exc))
            return []

        next_cursor, claimed = reply[0], reply[1]
        self._claim_cursors[key] = self._decode_if_bytes(next_cursor)

        messages = []
        for message_id, fields in claimed:
            if fields:
                messages.append((self._decode_if_bytes(message_id), self._deserialize_message(fields)))
        if messages:
            logger.info(
                "stalled_deliveries_reclaimed",
                stream=stream,
                group=consumer_group,
                consumer=self._consumer_name,
                count=len(messages),
            )
        return messages
