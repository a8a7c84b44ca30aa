"""High-level wallet manager used by the CLI and embedding applications."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable

from agent_vault.config import NetworkConfig, StorageOptions
from agent_vault.errors import NotFoundError, ValidationError
from agent_vault.wallet.cache import ConnectionCache
from agent_vault.wallet.chains import ChainType, get_chain
from agent_vault.wallet.derivation import (
    derive_wallet_key,
    generate_mnemonic,
    normalize_phrase,
    validate_seed_phrase,
)
from agent_vault.wallet.models import (
    CreationMethod,
    KeyMaterial,
    PrivateKeyMaterial,
    SeedMaterial,
    Wallet,
    WalletCreationOptions,
    new_wallet_id,
    validate_identifier,
)
from agent_vault.wallet.providers.base import WalletProvider
from agent_vault.wallet.providers.factory import create_wallet_provider
from agent_vault.wallet.storage import WalletStore, open_store

logger = logging.getLogger("agent_vault.wallet.manager")

ProviderFactory = Callable[..., WalletProvider]


class WalletManager:
    """Orchestrates key derivation, the Wallet Store and live provider connections.

    Parameters
    ----------
    storage_options:
        Default backend selection for operations that don't pass their own.
    cache:
        Connection cache owned by this manager. A fresh one is created when
        omitted.
    networks:
        Per-chain network overrides keyed by canonical chain name.
    provider_factory:
        Builds a disconnected provider for a chain; replaced in tests.
    """

    def __init__(
        self,
        storage_options: StorageOptions | None = None,
        *,
        cache: ConnectionCache | None = None,
        networks: dict[str, NetworkConfig] | None = None,
        provider_factory: ProviderFactory = create_wallet_provider,
    ) -> None:
        self.storage_options = storage_options or StorageOptions()
        self.cache = cache if cache is not None else ConnectionCache()
        self.networks = dict(networks or {})
        self.provider_factory = provider_factory
        self._stores: dict[StorageOptions, WalletStore] = {}
        # Evicted providers whose transports still need an async close
        self._retired: list[WalletProvider] = []
        self._closing: set[asyncio.Task] = set()

    def store(self, storage_options: StorageOptions | None = None) -> WalletStore:
        """Return the Wallet Store for *storage_options* (one per distinct options)."""
        options = storage_options or self.storage_options
        if options not in self._stores:
            self._stores[options] = open_store(options)
        return self._stores[options]

    # ------------------------------------------------------------------
    # Wallet lifecycle
    # ------------------------------------------------------------------

    def create_wallet(
        self,
        options: WalletCreationOptions,
        storage_options: StorageOptions | None = None,
    ) -> Wallet:
        """Derive, persist and return a new wallet.

        Derivation runs before anything is written, so a bad key or phrase
        leaves the store untouched.

        Raises ``ValidationError``, ``InvalidKeyError``.
        """
        store = self.store(storage_options)
        agent_id = validate_identifier(options.agent_id, "agent id")
        if options.wallet_id is not None:
            wallet_id = validate_identifier(options.wallet_id, "wallet id")
            if store.exists(agent_id, wallet_id):
                raise ValidationError(
                    f"Wallet '{wallet_id}' already exists for agent '{agent_id}'"
                )
        else:
            wallet_id = new_wallet_id()

        derived = derive_wallet_key(
            options.method,
            seed_phrase=options.seed_phrase,
            private_key=options.private_key,
            derivation_path=options.derivation_path,
            chain=options.chain,
        )

        now = datetime.now(timezone.utc)
        material: KeyMaterial
        if options.method.uses_seed:
            material = SeedMaterial(
                mnemonic=normalize_phrase(options.seed_phrase or ""),
                derivation_path=derived.derivation_path,
            )
        else:
            material = PrivateKeyMaterial(private_key=derived.private_key.hex())

        wallet = Wallet(
            id=wallet_id,
            agent_id=agent_id,
            chain=options.chain,
            address=derived.address,
            creation_method=options.method,
            key_material=material,
            created_at=now,
            updated_at=now,
            chain_metadata=options.chain_metadata,
        )
        store.save(wallet)
        logger.info(
            f"Wallet created: {wallet.id} ({wallet.chain.value}, {wallet.address}) "
            f"for agent {agent_id} via {options.method.value}"
        )
        return wallet

    def generate_wallet(
        self,
        agent_id: str,
        chain: ChainType | str,
        storage_options: StorageOptions | None = None,
        *,
        derivation_path: str | None = None,
        wallet_id: str | None = None,
    ) -> Wallet:
        """Create a wallet from a fresh 12-word mnemonic.

        The phrase is imported as a seed, so the wallet is tagged ``seed``.
        The returned record is the only time the phrase is handed back.
        """
        return self.create_wallet(
            WalletCreationOptions(
                agent_id=agent_id,
                chain=chain,
                method=CreationMethod.SEED,
                seed_phrase=generate_mnemonic(128),
                derivation_path=derivation_path,
                wallet_id=wallet_id,
            ),
            storage_options,
        )

    def import_wallet_from_private_key(
        self,
        agent_id: str,
        chain: ChainType | str,
        private_key: str,
        storage_options: StorageOptions | None = None,
        *,
        wallet_id: str | None = None,
    ) -> Wallet:
        return self.create_wallet(
            WalletCreationOptions(
                agent_id=agent_id,
                chain=chain,
                method=CreationMethod.PRIVATE_KEY,
                private_key=private_key,
                wallet_id=wallet_id,
            ),
            storage_options,
        )

    def import_wallet_from_seed(
        self,
        agent_id: str,
        chain: ChainType | str,
        seed_phrase: str,
        storage_options: StorageOptions | None = None,
        *,
        derivation_path: str | None = None,
        wallet_id: str | None = None,
    ) -> Wallet:
        return self.create_wallet(
            WalletCreationOptions(
                agent_id=agent_id,
                chain=chain,
                method=CreationMethod.SEED,
                seed_phrase=seed_phrase,
                derivation_path=derivation_path,
                wallet_id=wallet_id,
            ),
            storage_options,
        )

    def import_wallet_from_mnemonic(
        self,
        agent_id: str,
        chain: ChainType | str,
        mnemonic: str,
        storage_options: StorageOptions | None = None,
        *,
        derivation_path: str | None = None,
        wallet_id: str | None = None,
    ) -> Wallet:
        return self.create_wallet(
            WalletCreationOptions(
                agent_id=agent_id,
                chain=chain,
                method=CreationMethod.MNEMONIC,
                seed_phrase=mnemonic,
                derivation_path=derivation_path,
                wallet_id=wallet_id,
            ),
            storage_options,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_wallet(
        self, agent_id: str, wallet_id: str, storage_options: StorageOptions | None = None
    ) -> Wallet | None:
        validate_identifier(agent_id, "agent id")
        validate_identifier(wallet_id, "wallet id")
        return self.store(storage_options).load(agent_id, wallet_id)

    def require_wallet(
        self, agent_id: str, wallet_id: str, storage_options: StorageOptions | None = None
    ) -> Wallet:
        """Like :meth:`get_wallet` but raises ``NotFoundError``."""
        wallet = self.get_wallet(agent_id, wallet_id, storage_options)
        if wallet is None:
            raise NotFoundError(agent_id, wallet_id)
        return wallet

    def list_agent_wallets(
        self, agent_id: str, storage_options: StorageOptions | None = None
    ) -> list[Wallet]:
        """All wallets owned by *agent_id*, ordered by id."""
        store = self.store(storage_options)
        validate_identifier(agent_id, "agent id")
        wallets = []
        for wallet_id in store.list(agent_id):
            wallet = store.load(agent_id, wallet_id)
            if wallet is not None and wallet.agent_id == agent_id:
                wallets.append(wallet)
        return wallets

    def has_wallet(
        self, agent_id: str, wallet_id: str, storage_options: StorageOptions | None = None
    ) -> bool:
        validate_identifier(agent_id, "agent id")
        validate_identifier(wallet_id, "wallet id")
        return self.store(storage_options).exists(agent_id, wallet_id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def update_chain_metadata(
        self,
        agent_id: str,
        wallet_id: str,
        metadata: dict[str, Any],
        storage_options: StorageOptions | None = None,
    ) -> Wallet:
        """Merge *metadata* into the wallet's chain metadata and re-save it."""
        wallet = self.require_wallet(agent_id, wallet_id, storage_options)
        merged = {**(wallet.chain_metadata or {}), **metadata}
        wallet = wallet.model_copy(update={"chain_metadata": merged}).touch()
        self.store(storage_options).save(wallet)
        return wallet

    def remove_wallet(
        self, agent_id: str, wallet_id: str, storage_options: StorageOptions | None = None
    ) -> None:
        """Delete the wallet and evict its cached connection. Idempotent."""
        validate_identifier(agent_id, "agent id")
        validate_identifier(wallet_id, "wallet id")
        self.store(storage_options).delete(agent_id, wallet_id)
        self.clear_cached_connection(agent_id, wallet_id)
        logger.info(f"Wallet removed: {wallet_id} for agent {agent_id}")

    def clear_agent_wallets(
        self, agent_id: str, storage_options: StorageOptions | None = None
    ) -> int:
        """Delete every wallet of *agent_id*; return how many were removed."""
        store = self.store(storage_options)
        validate_identifier(agent_id, "agent id")
        wallet_ids = store.list(agent_id)
        for wallet_id in wallet_ids:
            store.delete(agent_id, wallet_id)
        for provider in self.cache.pop_agent(agent_id):
            self._retire(provider)
        logger.info(f"Cleared {len(wallet_ids)} wallet(s) for agent {agent_id}")
        return len(wallet_ids)

    # ------------------------------------------------------------------
    # Connection cache
    # ------------------------------------------------------------------

    def cache_wallet_connection(
        self, agent_id: str, wallet_id: str, provider: WalletProvider
    ) -> None:
        validate_identifier(agent_id, "agent id")
        validate_identifier(wallet_id, "wallet id")
        previous = self.cache.pop(agent_id, wallet_id)
        if previous is not None and previous is not provider:
            self._retire(previous)
        self.cache.put(agent_id, wallet_id, provider)

    def get_cached_connection(self, agent_id: str, wallet_id: str) -> WalletProvider | None:
        return self.cache.get(agent_id, wallet_id)

    def clear_cached_connection(self, agent_id: str, wallet_id: str) -> None:
        provider = self.cache.pop(agent_id, wallet_id)
        if provider is not None:
            self._retire(provider)

    async def connect_wallet(
        self, agent_id: str, wallet_id: str, storage_options: StorageOptions | None = None
    ) -> WalletProvider:
        """Return a connected provider for the wallet, building one on a cache miss.

        Raises ``NotFoundError``, ``KeyInitError``, ``ConnectionError``.
        """
        cached = self.get_cached_connection(agent_id, wallet_id)
        if cached is not None:
            return cached

        wallet = self.require_wallet(agent_id, wallet_id, storage_options)
        provider = self.provider_factory(
            wallet.chain, self.networks.get(wallet.chain.value)
        )
        provider.init_from_wallet(wallet)
        try:
            await provider.connect()
        except BaseException:
            self._retire(provider)
            raise

        winner = self.cache.put_if_absent(agent_id, wallet_id, provider)
        if winner is not provider:
            await provider.disconnect()
            return winner

        # Removed while we were connecting: don't leave a dangling entry.
        if not self.has_wallet(agent_id, wallet_id, storage_options):
            self.clear_cached_connection(agent_id, wallet_id)
            raise NotFoundError(agent_id, wallet_id)
        return provider

    async def get_agent_balances(
        self, agent_id: str, storage_options: StorageOptions | None = None
    ) -> dict[str, dict]:
        """Balances of every wallet owned by *agent_id*, fetched concurrently.

        Returns a dict mapping wallet id to ``{chain, address, balance,
        symbol, error}``. A failing wallet doesn't abort the others.
        """
        wallets = self.list_agent_wallets(agent_id, storage_options)
        entries = await asyncio.gather(
            *(self._wallet_balance(wallet, storage_options) for wallet in wallets)
        )
        return {wallet.id: entry for wallet, entry in zip(wallets, entries)}

    async def _wallet_balance(
        self, wallet: Wallet, storage_options: StorageOptions | None
    ) -> dict:
        network = self.networks.get(wallet.chain.value)
        entry = {
            "chain": wallet.chain.value,
            "address": wallet.address,
            "balance": None,
            "symbol": get_chain(wallet.chain).symbol_for(bool(network and network.is_testnet)),
            "error": None,
        }
        try:
            provider = await self.connect_wallet(wallet.agent_id, wallet.id, storage_options)
            balance = await provider.get_balance(wallet.address)
            entry["balance"] = balance.amount
            entry["symbol"] = balance.denomination
        except Exception as e:
            logger.warning(f"Failed to get balance for wallet {wallet.id}: {e}")
            entry["error"] = str(e)
        return entry

    def _retire(self, provider: WalletProvider) -> None:
        """Release an evicted provider now; close its transport when a loop allows."""
        provider.release()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._retired.append(provider)
            return
        task = loop.create_task(provider.disconnect())
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def close(self) -> None:
        """Disconnect every cached or evicted provider and empty the cache."""
        retired, self._retired = self._retired, []
        for provider in self.cache.clear() + retired:
            await provider.disconnect()
        if self._closing:
            await asyncio.gather(*self._closing)

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------

    @staticmethod
    def validate_seed_phrase(phrase: str) -> bool:
        return validate_seed_phrase(phrase)
