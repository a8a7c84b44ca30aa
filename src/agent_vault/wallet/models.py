"""Pydantic models for wallets, key material, and chain records."""

from __future__ import annotations

import json
import re
import secrets
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from agent_vault.errors import ValidationError
from agent_vault.wallet.chains import ChainType, normalize_chain


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class CreationMethod(str, Enum):
    PRIVATE_KEY = "private-key"
    SEED = "seed"
    MNEMONIC = "mnemonic"

    @property
    def uses_seed(self) -> bool:
        return self is not CreationMethod.PRIVATE_KEY


class TransactionStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_wallet_id() -> str:
    """Generate a wallet ID from 128 bits of secure randomness."""
    return f"wallet-{secrets.token_hex(16)}"


def validate_identifier(value: str, label: str = "identifier") -> str:
    """Reject ids that could escape a storage namespace or a cache key.

    Raises ``ValidationError``.
    """
    if not isinstance(value, str) or not _IDENTIFIER_RE.match(value) or ".." in value:
        raise ValidationError(
            f"Invalid {label} {value!r}: use letters, digits, '.', '_' or '-'"
        )
    return value


# ---------------------------------------------------------------------------
# Key material (tagged union)
# ---------------------------------------------------------------------------

class PrivateKeyMaterial(BaseModel):
    """Raw private key, hex-encoded without ``0x``."""

    kind: Literal["private-key"] = "private-key"
    private_key: str = Field(repr=False)


class SeedMaterial(BaseModel):
    """Mnemonic phrase plus the path the wallet key was derived along."""

    kind: Literal["seed"] = "seed"
    mnemonic: str = Field(repr=False)
    derivation_path: str


KeyMaterial = Annotated[
    Union[PrivateKeyMaterial, SeedMaterial], Field(discriminator="kind")
]


# ---------------------------------------------------------------------------
# Wallet record
# ---------------------------------------------------------------------------

class Wallet(BaseModel):
    """A stored wallet, namespaced by its owning agent."""

    id: str
    agent_id: str
    chain: ChainType
    address: str
    creation_method: CreationMethod
    key_material: KeyMaterial
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    chain_metadata: Optional[dict[str, Any]] = None

    @model_validator(mode="after")
    def _check_material_matches_method(self) -> "Wallet":
        expects_seed = self.creation_method.uses_seed
        if expects_seed != isinstance(self.key_material, SeedMaterial):
            raise ValueError(
                f"creation_method '{self.creation_method.value}' does not match "
                f"key material kind '{self.key_material.kind}'"
            )
        return self

    @property
    def private_key(self) -> str | None:
        if isinstance(self.key_material, PrivateKeyMaterial):
            return self.key_material.private_key
        return None

    @property
    def mnemonic(self) -> str | None:
        if isinstance(self.key_material, SeedMaterial):
            return self.key_material.mnemonic
        return None

    @property
    def seed_derivation_path(self) -> str | None:
        if isinstance(self.key_material, SeedMaterial):
            return self.key_material.derivation_path
        return None

    def touch(self) -> "Wallet":
        """Return a copy with ``updated_at`` refreshed."""
        return self.model_copy(update={"updated_at": _utcnow()})


class WalletCreationOptions(BaseModel):
    """Input to ``WalletManager.create_wallet``."""

    agent_id: str
    chain: ChainType
    method: CreationMethod
    seed_phrase: Optional[str] = Field(default=None, repr=False)
    private_key: Optional[str] = Field(default=None, repr=False)
    derivation_path: Optional[str] = None
    wallet_id: Optional[str] = None
    chain_metadata: Optional[dict[str, Any]] = None

    @field_validator("chain", mode="before")
    @classmethod
    def _normalize_chain(cls, value: Any) -> ChainType:
        return normalize_chain(value)


# ---------------------------------------------------------------------------
# Chain records
# ---------------------------------------------------------------------------

class Balance(BaseModel):
    """Balance snapshot in the chain's display denomination."""

    amount: str
    denomination: str
    chain: ChainType
    address: str
    block_number: Optional[int] = None


class TransactionRequest(BaseModel):
    to: str
    amount: str
    memo: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)

    def signing_payload(self, chain: ChainType) -> bytes:
        """Canonical bytes signed by ``sign_transaction``."""
        body = {
            "chain": chain.value,
            "to": self.to,
            "amount": self.amount,
            "memo": self.memo,
            "data": self.data,
        }
        return json.dumps(body, sort_keys=True, separators=(",", ":")).encode("utf-8")


class Transaction(BaseModel):
    hash: str
    from_address: str
    to: str
    amount: str
    chain: ChainType
    timestamp: datetime = Field(default_factory=_utcnow)
    status: TransactionStatus = TransactionStatus.PENDING
    fee: Optional[str] = None
    block_number: Optional[int] = None
    data: dict[str, Any] = Field(default_factory=dict)


class SignedTransaction(BaseModel):
    tx_hash: str
    signed_tx: str
    signature: str
    request: TransactionRequest
