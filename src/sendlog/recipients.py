"""Recipient resolution for the send log.

The send log stores integer recipient ids rather than addresses. Resolution
belongs to the surrounding client; RecipientResolver is the seam it plugs
into, and InMemoryRecipientResolver is a reference implementation used by
the CLI and tests.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod

from .models import RecipientId, ServiceAddress


class RecipientResolver(ABC):
    """Maps service addresses to local recipient ids."""

    @abstractmethod
    def resolve_recipient(self, address: ServiceAddress) -> RecipientId:
        """Return the recipient id for an address, creating one if needed."""


class InMemoryRecipientResolver(RecipientResolver):
    """Assigns sequential recipient ids, keyed by address identifier.

    Thread safety: resolution may be called from any sending thread, so id
    assignment is guarded by a lock.
    """

    def __init__(self, start: int = 1) -> None:
        self._ids: dict[str, RecipientId] = {}
        self._next_id = start
        self._lock = threading.Lock()

    def resolve_recipient(self, address: ServiceAddress) -> RecipientId:
        key = address.identifier()
        with self._lock:
            recipient_id = self._ids.get(key)
            if recipient_id is None:
                recipient_id = RecipientId(self._next_id)
                self._next_id += 1
                self._ids[key] = recipient_id
            return recipient_id

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)
