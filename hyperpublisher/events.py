"""Typed publish/subscribe channel for log notifications."""

import itertools
import logging
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeerInfo:
    """A remote peer as seen from one side of a connection."""

    peer_id: str
    remote_address: str = "memory"
    remote_type: str = "memory"
    remote_public_key: bytes = b""


@dataclass(frozen=True)
class PeerConnect:
    """Emitted when a connection to a remote peer opens."""

    peer: PeerInfo


@dataclass(frozen=True)
class PeerAck:
    """A peer reporting on `length` contiguous blocks starting at `start_block`.

    Only events with is_ack=True mean the peer durably stored the blocks;
    other notices (e.g. "have" announcements) share the same channel.
    """

    peer_id: str
    start_block: int
    length: int
    is_ack: bool = True

    @property
    def end_block(self) -> int:
        return self.start_block + self.length


@dataclass(frozen=True)
class BlockStored:
    """Emitted when a block's data is stored locally (appended or downloaded)."""

    index: int
    downloaded: bool


Handler = Callable[[Any], None]


class EventSource:
    """Synchronous fan-out of events to subscribed handlers.

    Handlers subscribe for one event type (or all events with None) and get
    back an integer token used to unsubscribe. Delivery iterates over a
    snapshot so handlers may unsubscribe themselves while being called.
    """

    def __init__(self, name: str = "events"):
        self.name = name
        self._handlers: dict[int, tuple[type | None, Handler]] = {}
        self._tokens = itertools.count(1)

    def subscribe(self, handler: Handler, event_type: type | None = None) -> int:
        """Register a handler and return its subscription token."""
        token = next(self._tokens)
        self._handlers[token] = (event_type, handler)
        return token

    def unsubscribe(self, token: int) -> bool:
        """Remove a subscription. Returns False if it was already gone."""
        return self._handlers.pop(token, None) is not None

    def emit(self, event: Any) -> None:
        """Deliver an event to every matching handler, in subscription order."""
        for token, (event_type, handler) in list(self._handlers.items()):
            if token not in self._handlers:
                continue
            if event_type is not None and not isinstance(event, event_type):
                continue
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    f"{self.name}: handler {token} failed on {event!r}: {e}",
                    exc_info=True,
                )

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)
