"""
JSON-backed data store for the notification service.

This module provides a simple data access layer that reads from JSON fixture files.
In production the marketplace database owns these records; the notifier only
reads service providers and clients, and reads/writes preference records.

Design decisions:
- Lazy loading: each fixture file is read on first access
- Preference records are kept as raw dicts; validation and the derived
  suppression rules live in the PreferenceStore
- Preference writes update memory and, when persistence is enabled, rewrite
  notification_preferences.json (an OSError propagates to the caller)
"""

import json
from pathlib import Path
from typing import Any, Optional

from shared.models import Client, ServiceProvider


class DataStore:
    """
    Central data store that loads and manages JSON fixtures.

    Acts both as the recipient directory (who is service provider 7, what is
    their email) and as the key-value backend of the PreferenceStore.
    """

    PREFERENCES_FILE = "notification_preferences.json"

    def __init__(self, data_dir: Optional[Path] = None, persist_preferences: bool = False):
        """
        Initialize the data store.

        Args:
            data_dir: Path to the data directory containing JSON fixtures.
                     Defaults to ./data relative to project root.
            persist_preferences: Write preference updates back to disk.
        """
        if data_dir is None:
            data_dir = Path(__file__).parent.parent / "data"

        self.data_dir = Path(data_dir)
        self.persist_preferences = persist_preferences

        # In-memory caches - loaded lazily
        self._service_providers: Optional[dict[int, ServiceProvider]] = None
        self._clients: Optional[dict[int, Client]] = None
        self._preferences: Optional[dict[int, dict[str, Any]]] = None  # keyed by recipient_id

    # =========================================================================
    # Data Loading (lazy)
    # =========================================================================

    def _load_json(self, filename: str) -> list[dict]:
        """Load a JSON fixture file."""
        filepath = self.data_dir / filename
        if not filepath.exists():
            return []
        with open(filepath, "r", encoding="utf-8") as f:
            return json.load(f)

    def _ensure_service_providers_loaded(self):
        if self._service_providers is None:
            data = self._load_json("service_providers.json")
            self._service_providers = {p["id"]: ServiceProvider(**p) for p in data}

    def _ensure_clients_loaded(self):
        if self._clients is None:
            data = self._load_json("clients.json")
            self._clients = {c["id"]: Client(**c) for c in data}

    def _ensure_preferences_loaded(self):
        if self._preferences is None:
            data = self._load_json(self.PREFERENCES_FILE)
            self._preferences = {p["recipient_id"]: p for p in data}

    # =========================================================================
    # Directory Operations
    # =========================================================================

    def get_service_provider(self, provider_id: int) -> Optional[ServiceProvider]:
        """Get a service provider (notification recipient) by ID."""
        self._ensure_service_providers_loaded()
        return self._service_providers.get(provider_id)

    def get_service_providers(self) -> list[ServiceProvider]:
        self._ensure_service_providers_loaded()
        return list(self._service_providers.values())

    def add_service_provider(self, provider: ServiceProvider) -> None:
        """Register a provider in memory (used by demos and tests)."""
        self._ensure_service_providers_loaded()
        self._service_providers[provider.id] = provider

    def get_client(self, client_id: int) -> Optional[Client]:
        """Get a client by ID. Used to name the client who accepted an offer."""
        self._ensure_clients_loaded()
        return self._clients.get(client_id)

    # =========================================================================
    # Preference Backend
    # =========================================================================

    def load_preferences(self, recipient_id: int) -> Optional[dict[str, Any]]:
        """Return the raw stored preference record, or None if absent."""
        self._ensure_preferences_loaded()
        record = self._preferences.get(recipient_id)
        return dict(record) if record is not None else None

    def save_preferences(self, recipient_id: int, record: dict[str, Any]) -> None:
        """
        Store a raw preference record (last writer wins).

        Raises:
            OSError: If persistence is enabled and the file cannot be written.
        """
        self._ensure_preferences_loaded()
        updated = dict(self._preferences)
        updated[recipient_id] = record
        if self.persist_preferences:
            self._write_preferences(updated)
        self._preferences = updated

    def _write_preferences(self, records: dict[int, dict[str, Any]]) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        filepath = self.data_dir / self.PREFERENCES_FILE
        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(list(records.values()), f, indent=2, default=str)

    # =========================================================================
    # Utility Methods
    # =========================================================================

    def reload(self):
        """Force reload all data from JSON files."""
        self._service_providers = None
        self._clients = None
        self._preferences = None


# Module-level singleton for convenience
# In tests, create a new DataStore instance with test fixtures
_default_store: Optional[DataStore] = None


def get_data_store() -> DataStore:
    """Get the default data store singleton."""
    global _default_store
    if _default_store is None:
        _default_store = DataStore()
    return _default_store


def reset_data_store(store: Optional[DataStore] = None) -> DataStore:
    """Replace the default data store (useful for testing)."""
    global _default_store
    _default_store = store or DataStore()
    return _default_store
