from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from .errors import DuplicateKeyError, StoreWriteError
from .models import NotificationIntent, NotificationRecord
from .storage import Storage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerEntry:
    record: NotificationRecord
    created: bool
    refreshed: bool = False


class NotificationLedger:
    """Create-or-refresh over the notifications table, keyed by the idempotency tuple.

    A record found for the key keeps its delivery fields; only its message is
    synced to the current template. A concurrent insert that loses the unique-key
    race resolves to the winner's row.
    """

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    async def record(self, intent: NotificationIntent) -> LedgerEntry:
        existing = await self._storage.find_notification(intent.key)
        if existing is not None:
            return await self._refresh(existing, intent)

        try:
            created = await self._storage.insert_notification(intent)
        except DuplicateKeyError:
            logger.info("Notification %s was inserted concurrently; reusing existing row", intent.key)
            existing = await self._storage.find_notification(intent.key)
            if existing is None:
                raise StoreWriteError(f"duplicate key reported but no row found for {intent.key}")
            return await self._refresh(existing, intent)
        return LedgerEntry(record=created, created=True)

    async def _refresh(self, existing: NotificationRecord, intent: NotificationIntent) -> LedgerEntry:
        if existing.message == intent.message:
            return LedgerEntry(record=existing, created=False)
        await self._storage.update_notification_message(existing.id, intent.message)
        logger.debug("Refreshed message of notification %s", existing.id)
        return LedgerEntry(
            record=replace(existing, message=intent.message),
            created=False,
            refreshed=True,
        )
