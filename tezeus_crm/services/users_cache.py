"""Users cache.

``TTLCache`` is an explicit, injectable cache: one instance is built by the
container and shared by reference. ``UsersDirectory`` loads active system
users through it and falls back to the last known list when the database
read fails.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional

from ..observability import Observability
from ..utils.db_helpers import db_call_with_retry, rows

Listener = Callable[[Hashable, Any], None]


@dataclass
class _Entry:
    value: Any
    expires_at: float


class TTLCache:
    def __init__(self, *, default_ttl_s: float = 300.0, clock: Optional[Callable[[], float]] = None):
        self._default_ttl_s = default_ttl_s
        self._clock = clock or time.monotonic
        self._entries: Dict[Hashable, _Entry] = {}
        self._listeners: List[Listener] = []

    def get(self, key: Hashable, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None or entry.expires_at <= self._clock():
            return default
        return entry.value

    def peek(self, key: Hashable, default: Any = None) -> Any:
        """Return the value even if expired."""
        entry = self._entries.get(key)
        return default if entry is None else entry.value

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        ttl_s = self._default_ttl_s if ttl is None else ttl
        self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl_s)
        for listener in list(self._listeners):
            listener(key, value)

    def invalidate(self, key: Hashable) -> None:
        entry = self._entries.get(key)
        if entry is not None:
            entry.expires_at = float("-inf")

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe


class UsersDirectory:
    CACHE_KEY = "system_users:active"

    def __init__(self, client: Any, *, cache: TTLCache, obs: Observability, limit: int = 100):
        self._client = client
        self._cache = cache
        self._obs = obs
        self._limit = limit

    async def list_users(
        self,
        profiles: Optional[Iterable[str]] = None,
        *,
        refresh: bool = False,
    ) -> List[Dict[str, Any]]:
        if refresh:
            self._cache.invalidate(self.CACHE_KEY)
        users = self._cache.get(self.CACHE_KEY)
        if users is None:
            users = self._fetch()
        return filter_by_profile(users, profiles)

    def _fetch(self) -> List[Dict[str, Any]]:
        try:
            result = db_call_with_retry(
                "system_users.list_active",
                lambda: self._client.table("system_users")
                .select("id, name, profile")
                .eq("status", "active")
                .order("name")
                .limit(self._limit)
                .execute(),
            )
        except Exception as e:
            stale = self._cache.peek(self.CACHE_KEY, [])
            self._obs.warning("users_cache.fetch_failed", error=str(e), stale=len(stale))
            return stale
        users = [{"id": u.get("id"), "name": u.get("name"), "profile": u.get("profile")} for u in rows(result)]
        self._cache.set(self.CACHE_KEY, users)
        self._obs.info("users_cache.loaded", count=len(users))
        return users


def filter_by_profile(users: List[Dict[str, Any]], profiles: Optional[Iterable[str]]) -> List[Dict[str, Any]]:
    if not profiles:
        return list(users)
    wanted = {p.strip() for p in profiles if p and p.strip()}
    if not wanted:
        return list(users)
    return [u for u in users if u.get("profile") in wanted]
