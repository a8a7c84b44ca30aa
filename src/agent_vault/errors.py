"""Error taxonomy for the wallet core.

Every failure raised by this package derives from :class:`WalletError` and
carries a stable ``kind`` string so callers (CLI, web, GUI layers) can
branch on the category without string-matching messages.
"""

from __future__ import annotations

import builtins


class WalletError(Exception):
    """Base class for all wallet core errors."""

    kind: str = "wallet_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class InvalidEntropyError(WalletError):
    """Mnemonic entropy size is not one of the supported values."""

    kind = "invalid_entropy"


class InvalidKeyError(WalletError):
    """A private key is malformed (wrong length, not hex, out of range)."""

    kind = "invalid_key"


class ValidationError(WalletError):
    """Bad mnemonic, derivation path, chain name, or identifier."""

    kind = "validation"


class ConnectionError(WalletError, builtins.ConnectionError):
    """A provider could not reach its Chain Gateway."""

    kind = "connection"


class GatewayError(ConnectionError):
    """The Chain Gateway answered, but with an error response."""

    kind = "gateway"


class NotConnectedError(WalletError):
    """Operation needs live chain state but the provider is disconnected."""

    kind = "not_connected"


class KeyInitError(WalletError):
    """A provider could not bind a keypair from the supplied key material."""

    kind = "key_init"


class SigningError(WalletError):
    kind = "signing"


class InvalidAmountError(WalletError):
    kind = "invalid_amount"


class UnsupportedOperationError(WalletError):
    """The chain integration does not implement this operation yet."""

    kind = "unsupported"

    def __init__(self, chain: str, operation: str) -> None:
        super().__init__(
            f"'{operation}' is not supported by the {chain} provider yet"
        )
        self.chain = chain
        self.operation = operation


class NotFoundError(WalletError):
    """No wallet with this id exists for the owning agent."""

    kind = "not_found"

    def __init__(self, agent_id: str, wallet_id: str) -> None:
        super().__init__(f"Wallet '{wallet_id}' not found for agent '{agent_id}'")
        self.agent_id = agent_id
        self.wallet_id = wallet_id
