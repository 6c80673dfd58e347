"""
User preference storage for the puzzle race client.

Keeps a small JSON key/value record per device (last room, session credential,
event year) with in-memory caching.
"""

import json
import logging
from typing import Any, Dict
from sqlalchemy import select
from puzzlerace.services.base import BaseService
from puzzlerace.database.models import Preference

logger = logging.getLogger(__name__)

class PreferenceService(BaseService):
    """Manages device preferences with simple caching."""

    ROOM_ID = 'room_id'
    SESSION_TOKEN = 'session_token'
    YEAR = 'year'

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self._cache: Dict[str, Any] = {}

    async def load_all(self):
        """Load all preferences from database into memory."""
        new_cache = {}
        async with self.get_session() as session:
            result = await session.execute(select(Preference))
            preferences = result.scalars().all()

            for preference in preferences:
                try:
                    new_cache[preference.key] = json.loads(preference.value)
                except json.JSONDecodeError:
                    logger.warning(f"Invalid JSON for preference '{preference.key}', skipping")
                    continue

        self._cache = new_cache
        logger.info(f"Loaded {len(self._cache)} preferences")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get preference value by key.

        Args:
            key: Preference key (e.g., 'room_id')
            default: Default value if key not found

        Returns:
            Preference value or default
        """
        return self._cache.get(key, default)

    async def set(self, key: str, value: Any):
        """
        Set preference value and persist it.

        Args:
            key: Preference key
            value: Preference value (will be JSON-encoded)
        """
        async with self.get_session() as session:
            result = await session.execute(
                select(Preference).where(Preference.key == key)
            )
            preference = result.scalar_one_or_none()

            if preference:
                preference.value = json.dumps(value)
            else:
                session.add(Preference(key=key, value=json.dumps(value)))

        self._cache[key] = value

    def list_all(self) -> Dict[str, Any]:
        return self._cache.copy()
