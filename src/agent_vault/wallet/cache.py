"""Connection cache: live providers keyed by ``"{agent_id}:{wallet_id}"``.

Owned by a single :class:`~agent_vault.wallet.manager.WalletManager`. All
reads and writes take one re-entrant lock, so inserts and evictions are
atomic with respect to lookups.
"""

from __future__ import annotations

import logging
import threading

from agent_vault.wallet.providers.base import WalletProvider

logger = logging.getLogger("agent_vault.wallet.cache")


def cache_key(agent_id: str, wallet_id: str) -> str:
    return f"{agent_id}:{wallet_id}"


class ConnectionCache:
    def __init__(self) -> None:
        self._entries: dict[str, WalletProvider] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def put(self, agent_id: str, wallet_id: str, provider: WalletProvider) -> None:
        with self._lock:
            self._entries[cache_key(agent_id, wallet_id)] = provider
        logger.debug(f"Cached connection {cache_key(agent_id, wallet_id)}")

    def put_if_absent(
        self, agent_id: str, wallet_id: str, provider: WalletProvider
    ) -> WalletProvider:
        """Insert *provider* unless one is cached already; return the winner."""
        key = cache_key(agent_id, wallet_id)
        with self._lock:
            existing = self._entries.get(key)
            if existing is not None:
                return existing
            self._entries[key] = provider
        logger.debug(f"Cached connection {key}")
        return provider

    def get(self, agent_id: str, wallet_id: str) -> WalletProvider | None:
        with self._lock:
            return self._entries.get(cache_key(agent_id, wallet_id))

    def pop(self, agent_id: str, wallet_id: str) -> WalletProvider | None:
        with self._lock:
            provider = self._entries.pop(cache_key(agent_id, wallet_id), None)
        if provider is not None:
            logger.debug(f"Evicted connection {cache_key(agent_id, wallet_id)}")
        return provider

    def pop_agent(self, agent_id: str) -> list[WalletProvider]:
        """Evict every connection owned by *agent_id*."""
        prefix = f"{agent_id}:"
        with self._lock:
            keys = [key for key in self._entries if key.startswith(prefix)]
            evicted = [self._entries.pop(key) for key in keys]
        if evicted:
            logger.debug(f"Evicted {len(evicted)} connection(s) for agent {agent_id}")
        return evicted

    def items(self) -> list[tuple[str, WalletProvider]]:
        with self._lock:
            return list(self._entries.items())

    def clear(self) -> list[WalletProvider]:
        with self._lock:
            evicted = list(self._entries.values())
            self._entries.clear()
        return evicted
