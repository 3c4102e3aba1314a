"""
Session Manager for State Persistence

Persists the learner's profile and learning path as a pair of JSON
strings in a string-keyed store. Three stores are provided:

- InMemoryStore: process memory (default, and fallback without Supabase)
- JsonFileStore: a single JSON file on disk
- SupabaseStore: a two-column key/value table in Supabase
"""

import json
import logging
import os
from typing import Dict, Optional, Tuple

from edupal_tutor.models import (
    LearningPath,
    SessionDecodeError,
    UserProfile,
    decode_path,
    decode_profile,
    encode_path,
    encode_profile,
)

logger = logging.getLogger(__name__)


PROFILE_KEY = "edupal_profile"
PATH_KEY = "edupal_path"
DEFAULT_TABLE = "kv_store"


class InMemoryStore:
    """Key/value store held in process memory."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore:
    """
    Key/value store backed by one JSON object on disk.

    The whole file is rewritten on every change. A missing or corrupt
    file reads as an empty store and is replaced on the next write.
    """

    def __init__(self, path: str):
        self.path = path

    def _read(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except ValueError as e:
            logger.warning(f"⚠️ [JsonFileStore] {self.path} is not valid UTF-8 JSON, treating it as empty: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"⚠️ [JsonFileStore] {self.path} does not hold a JSON object, treating it as empty")
            return {}
        return data

    def _write(self, data: Dict[str, str]) -> None:
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> Optional[str]:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def delete(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)


class SupabaseStore:
    """
    Key/value store in a Supabase table with `key` (primary key) and
    `value` text columns.
    """

    def __init__(self, supabase_client, table: str = DEFAULT_TABLE):
        self.supabase = supabase_client
        self.table = table

    def get(self, key: str) -> Optional[str]:
        result = self.supabase.table(self.table) \
            .select('value') \
            .eq('key', key) \
            .execute()
        if result.data and len(result.data) > 0:
            return result.data[0].get('value')
        return None

    def set(self, key: str, value: str) -> None:
        self.supabase.table(self.table) \
            .upsert({'key': key, 'value': value}) \
            .execute()

    def delete(self, key: str) -> None:
        self.supabase.table(self.table) \
            .delete() \
            .eq('key', key) \
            .execute()


class SessionManager:
    """
    Loads, saves and clears the persisted (profile, learning path) pair.

    The pair is all-or-nothing: if either record is missing or cannot be
    decoded, `load()` reports no saved session and the app starts fresh.
    """

    def __init__(self, store=None, supabase_client=None, table: str = DEFAULT_TABLE):
        """
        Initialize SessionManager.

        Args:
            store: Key/value store (get/set/delete). Takes precedence.
            supabase_client: Supabase client used when no store is given
            table: Supabase table name
        """
        if store is None:
            if supabase_client is not None:
                store = SupabaseStore(supabase_client, table=table)
            else:
                logger.warning("⚠️ [SessionManager] Supabase not available, using in-memory store")
                store = InMemoryStore()
        self.store = store

    async def load(self) -> Optional[Tuple[UserProfile, LearningPath]]:
        """
        Load the saved session.

        Returns:
            (profile, path), or None when there is no usable saved session
        """
        try:
            profile_text = self.store.get(PROFILE_KEY)
            path_text = self.store.get(PATH_KEY)
        except Exception as e:
            logger.error(f"❌ [SessionManager] Error reading saved session: {e}")
            return None

        if not profile_text or not path_text:
            return None

        try:
            profile = decode_profile(profile_text)
            path = decode_path(path_text)
        except SessionDecodeError as e:
            logger.warning(f"⚠️ [SessionManager] Saved session is unreadable, starting fresh: {e}")
            return None

        logger.info(f"✅ [SessionManager] Restored session for {profile.name} ({len(path.modules)} modules)")
        return profile, path

    async def save(self, profile: UserProfile, path: LearningPath) -> bool:
        """
        Save the profile and path.

        Returns:
            True if both records were written
        """
        try:
            self.store.set(PROFILE_KEY, encode_profile(profile))
            self.store.set(PATH_KEY, encode_path(path))
            return True
        except Exception as e:
            logger.error(f"❌ [SessionManager] Error saving session: {e}", exc_info=True)
            return False

    async def clear(self) -> bool:
        """Delete both records."""
        try:
            self.store.delete(PROFILE_KEY)
            self.store.delete(PATH_KEY)
            return True
        except Exception as e:
            logger.error(f"❌ [SessionManager] Error clearing session: {e}")
            return False
