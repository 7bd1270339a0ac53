"""
Preference store: per-recipient channel and event-type opt-ins.

Reads fail open: if the backend cannot be read, the all-enabled default is
returned so an infrastructure error never silently unsubscribes anyone.
Writes fail closed: a backend failure raises PersistenceError so the
recipient can retry from the UI.

The backend is any object with load_preferences(recipient_id) and
save_preferences(recipient_id, record); both may be plain or async methods.
The JSON DataStore is the default backend.
"""

import inspect
import logging
from typing import Any, Optional, Protocol, Union

from shared.exceptions import PersistenceError
from shared.models import (
    NotificationPreferences,
    NotificationPreferencesUpdate,
    default_preferences,
)

logger = logging.getLogger("preferences")


class PreferenceBackend(Protocol):
    """Key-value storage of raw preference records by recipient id."""

    def load_preferences(self, recipient_id: int) -> Optional[dict[str, Any]]:
        ...

    def save_preferences(self, recipient_id: int, record: dict[str, Any]) -> None:
        ...


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


class PreferenceStore:
    """Reads and updates NotificationPreferences over a pluggable backend."""

    def __init__(self, backend: PreferenceBackend):
        self.backend = backend

    async def _load(self, recipient_id: int) -> Optional[NotificationPreferences]:
        record = await _maybe_await(self.backend.load_preferences(recipient_id))
        if record is None:
            return None
        return NotificationPreferences(**{**record, "recipient_id": recipient_id})

    async def get(self, recipient_id: int) -> NotificationPreferences:
        """
        Return the recipient's resolved preferences.

        A missing record yields the all-enabled default, which is not persisted.
        A backend failure is logged and also yields the default.
        """
        try:
            stored = await self._load(recipient_id)
        except Exception as e:
            logger.warning(
                f"Preference read failed for recipient {recipient_id}, using defaults: {e}"
            )
            stored = None
        if stored is None:
            stored = default_preferences(recipient_id)
        return stored.resolved()

    async def update(
        self,
        recipient_id: int,
        partial: Union[NotificationPreferencesUpdate, dict[str, Any]],
    ) -> NotificationPreferences:
        """
        Merge a partial update into the stored record and return the resolved view.

        Turning a channel's global flag off makes every per-type flag of that
        channel read False in the returned record; the stored per-type choices
        survive so re-enabling the global flag brings them back.

        Raises:
            PersistenceError: If the backend cannot be read or written.
        """
        if isinstance(partial, dict):
            partial = NotificationPreferencesUpdate(**partial)

        try:
            stored = await self._load(recipient_id)
        except Exception as e:
            raise PersistenceError(
                f"Could not read preferences for recipient {recipient_id}: {e}"
            ) from e

        merged = (stored or default_preferences(recipient_id)).merged_with(partial)

        try:
            await _maybe_await(
                self.backend.save_preferences(recipient_id, merged.model_dump(mode="json"))
            )
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(
                f"Could not save preferences for recipient {recipient_id}: {e}"
            ) from e

        logger.info(
            f"Preferences updated for recipient {recipient_id}: "
            f"{partial.model_dump(exclude_unset=True, exclude_none=True)}"
        )
        return merged.resolved()
