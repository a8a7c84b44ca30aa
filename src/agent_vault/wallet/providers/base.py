"""Base wallet provider: the capability contract every chain implements.

A provider starts Disconnected. ``connect()`` moves it to Connected only
after the chain handshake succeeds, so a failed or cancelled connect leaves
it Disconnected. ``disconnect()`` drops the keypair and never raises.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import AsyncIterator, ClassVar, Optional

from pydantic import BaseModel

from agent_vault.errors import (
    ConnectionError,
    InvalidAmountError,
    KeyInitError,
    NotConnectedError,
    UnsupportedOperationError,
    ValidationError,
    WalletError,
)
from agent_vault.wallet.chains import Chain, ChainType, get_chain
from agent_vault.wallet.derivation import DerivedKey, derive_wallet_key
from agent_vault.wallet.models import (
    Balance,
    CreationMethod,
    SignedTransaction,
    Transaction,
    TransactionRequest,
    Wallet,
)

logger = logging.getLogger("agent_vault.wallet.providers")


class ProviderConfig(BaseModel):
    """Connection settings for one provider instance."""

    chain: ChainType
    rpc_url: Optional[str] = None
    is_testnet: bool = False
    timeout: float = 15.0


class WalletProvider(ABC):
    """Uniform wallet operations over one chain, bound to one keypair."""

    chain_type: ClassVar[ChainType]

    def __init__(self, config: ProviderConfig | None = None) -> None:
        self.config = config or ProviderConfig(chain=self.chain_type)
        if self.config.chain is not self.chain_type:
            raise ValidationError(
                f"{type(self).__name__} cannot serve chain '{self.config.chain.value}'"
            )
        # Token of the network this instance talks to; providers may refine
        # both from the node on connect.
        self.symbol = self.chain.symbol_for(self.config.is_testnet)
        self.decimals = self.chain.decimals_for(self.config.is_testnet)
        self._connected = False
        self._keypair: DerivedKey | None = None
        self._sent: list[Transaction] = []

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def chain(self) -> Chain:
        return get_chain(self.chain_type)

    def get_chain(self) -> ChainType:
        return self.chain_type

    def get_rpc_url(self) -> str:
        return self.config.rpc_url or self.chain.default_rpc_url(self.config.is_testnet)

    def is_testnet(self) -> bool:
        return self.config.is_testnet

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Handshake with the chain and move to Connected.

        Raises ``ConnectionError``; the provider stays Disconnected on failure.
        """
        if self._connected:
            return
        try:
            await self._open()
        except ConnectionError:
            raise
        except Exception as exc:
            raise ConnectionError(
                f"Failed to connect to {self.chain.display_name} at {self.get_rpc_url()}: {exc}"
            ) from exc
        self._connected = True
        logger.info(f"{self.chain.display_name} provider connected ({self.get_rpc_url()})")

    async def disconnect(self) -> None:
        """Drop the keypair and return to Disconnected. Never raises."""
        self.release()
        try:
            await self._close()
        except Exception as exc:
            logger.warning(f"Error while closing {self.chain.display_name} provider: {exc}")

    def release(self) -> None:
        """Synchronously forget the keypair and mark the provider Disconnected."""
        self._keypair = None
        self._connected = False

    async def _open(self) -> None:
        """Chain-specific handshake. Default: nothing to do."""

    async def _close(self) -> None:
        """Chain-specific teardown. Default: nothing to do."""

    # ------------------------------------------------------------------
    # Keypair binding
    # ------------------------------------------------------------------

    def init_from_mnemonic(self, mnemonic: str, derivation_path: str | None = None) -> None:
        """Bind the keypair derived from *mnemonic*. Raises ``KeyInitError``."""
        try:
            self._keypair = derive_wallet_key(
                CreationMethod.MNEMONIC,
                seed_phrase=mnemonic,
                derivation_path=derivation_path,
                chain=self.chain_type,
            )
        except WalletError as exc:
            raise KeyInitError(
                f"Failed to initialize {self.chain.display_name} keypair: {exc}"
            ) from exc
        logger.debug(f"{self.chain.display_name} keypair bound via {self._keypair.derivation_path}")

    def init_from_private_key(self, private_key: str) -> None:
        """Bind the keypair for a raw private key. Raises ``KeyInitError``."""
        try:
            self._keypair = derive_wallet_key(
                CreationMethod.PRIVATE_KEY, private_key=private_key, chain=self.chain_type
            )
        except WalletError as exc:
            raise KeyInitError(
                f"Failed to initialize {self.chain.display_name} keypair from private key: {exc}"
            ) from exc
        logger.debug(f"{self.chain.display_name} keypair bound from private key")

    def init_from_wallet(self, wallet: Wallet) -> None:
        """Bind the keypair from a stored wallet and check the address still matches."""
        if wallet.chain is not self.chain_type:
            raise KeyInitError(
                f"Wallet {wallet.id} is a {wallet.chain.value} wallet, not {self.chain_type.value}"
            )
        if wallet.private_key is not None:
            self.init_from_private_key(wallet.private_key)
        else:
            self.init_from_mnemonic(wallet.mnemonic or "", wallet.seed_derivation_path)
        if self.get_address() != wallet.address:
            self._keypair = None
            raise KeyInitError(
                f"Stored key material for wallet {wallet.id} no longer derives {wallet.address}"
            )

    def get_address(self) -> str | None:
        return self._keypair.address if self._keypair else None

    def get_public_key(self) -> str | None:
        return self._keypair.public_key_hex if self._keypair else None

    # ------------------------------------------------------------------
    # Chain operations
    # ------------------------------------------------------------------

    @abstractmethod
    def validate_address(self, address: str) -> bool:
        """Chain-specific format check. Never raises."""

    @abstractmethod
    async def get_balance(self, address: str) -> Balance: ...

    @abstractmethod
    async def estimate_fee(self, request: TransactionRequest) -> str: ...

    @abstractmethod
    async def send_transaction(self, from_address: str, request: TransactionRequest) -> Transaction: ...

    @abstractmethod
    async def sign_transaction(self, tx: TransactionRequest, private_key: str) -> SignedTransaction: ...

    @abstractmethod
    def get_transaction_history(self, address: str) -> AsyncIterator[Transaction]:
        """Lazily yield past transactions for *address* (finite, maybe partial)."""

    @abstractmethod
    async def get_transaction(self, tx_hash: str) -> Transaction | None: ...

    @abstractmethod
    async def get_block_number(self) -> int: ...

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def _require_connection(self) -> None:
        if not self._connected:
            raise NotConnectedError(
                f"{self.chain.display_name} provider is not connected. Call connect() first."
            )

    def _require_keypair(self) -> DerivedKey:
        if self._keypair is None:
            raise KeyInitError(f"No {self.chain.display_name} keypair loaded")
        return self._keypair

    def _require_sender(self, from_address: str) -> DerivedKey:
        keypair = self._require_keypair()
        if from_address != keypair.address:
            raise ValidationError(
                f"Sender {from_address} does not match the loaded keypair ({keypair.address})"
            )
        return keypair

    def _unsupported(self, operation: str) -> UnsupportedOperationError:
        return UnsupportedOperationError(self.chain_type.value, operation)

    def _to_base_units(self, amount: str) -> int:
        """Parse a positive display-unit amount into integer base units.

        Raises ``InvalidAmountError``.
        """
        try:
            value = Decimal(str(amount).replace(",", "").strip())
        except InvalidOperation as exc:
            raise InvalidAmountError(f"Invalid amount {amount!r}") from exc
        if not value.is_finite() or value <= 0:
            raise InvalidAmountError(f"Amount must be a positive number, got {amount!r}")
        units = value.scaleb(self.decimals)
        if units != units.to_integral_value():
            raise InvalidAmountError(
                f"{amount} has more than {self.decimals} decimal places "
                f"for {self.symbol}"
            )
        return int(units)

    def _from_base_units(self, units: int) -> str:
        value = Decimal(units).scaleb(-self.decimals)
        return format(value.normalize(), "f") if units else "0"

    async def _session_history(self, address: str) -> AsyncIterator[Transaction]:
        """Transactions sent through this provider instance touching *address*."""
        for tx in list(self._sent):
            if address in (tx.from_address, tx.to):
                yield tx

    def _session_transaction(self, tx_hash: str) -> Transaction | None:
        for tx in self._sent:
            if tx.hash == tx_hash:
                return tx
        return None
