"""Internet Computer wallet provider (partial).

Balances come from the public ledger REST API and signing is real
secp256k1 ECDSA. Transfers and history need an authenticated agent call to
the ledger canister, which is not wired up yet, so those raise
``UnsupportedOperationError``.
"""

from __future__ import annotations

import hashlib
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import AsyncIterator

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature

from agent_vault.errors import GatewayError, SigningError, ValidationError, WalletError
from agent_vault.wallet.chains import ChainType
from agent_vault.wallet.derivation import (
    icp_account_identifier,
    icp_principal_from_text,
    key_from_private_key,
)
from agent_vault.wallet.gateway import RestGateway
from agent_vault.wallet.models import (
    Balance,
    SignedTransaction,
    Transaction,
    TransactionRequest,
)
from agent_vault.wallet.providers.base import ProviderConfig, WalletProvider

logger = logging.getLogger("agent_vault.wallet.providers.icp")

_ACCOUNT_ID_RE = re.compile(r"^[0-9a-fA-F]{64}$")


class IcpProvider(WalletProvider):
    """ICP provider: ledger balance lookups and offline signing."""

    chain_type = ChainType.ICP

    def __init__(
        self,
        config: ProviderConfig | None = None,
        gateway: RestGateway | None = None,
    ) -> None:
        super().__init__(config)
        self.gateway = gateway or RestGateway(self.get_rpc_url(), timeout=self.config.timeout)

    def validate_address(self, address: str) -> bool:
        """Accept principal text or a 64-hex-digit ledger account identifier."""
        if not isinstance(address, str):
            return False
        if _ACCOUNT_ID_RE.match(address):
            return True
        try:
            icp_principal_from_text(address)
        except Exception:
            return False
        return True

    def _account_id(self, address: str) -> str:
        if not self.validate_address(address):
            raise ValidationError(f"Invalid ICP address: {address}")
        if _ACCOUNT_ID_RE.match(address):
            return address.lower()
        return icp_account_identifier(icp_principal_from_text(address))

    def _parse_balance(self, resp) -> str:
        if resp.status_code == 404:
            return "0"
        text = resp.text.strip()
        if text.isdigit():
            return self._from_base_units(int(text))
        try:
            data = resp.json()
        except ValueError as exc:
            raise GatewayError(f"Unparseable ICP balance response: {text[:80]!r}") from exc
        if isinstance(data, dict):
            if "e8s" in data:
                return self._from_base_units(int(data["e8s"]))
            for key in ("balance", "amount"):
                if key in data:
                    try:
                        value = Decimal(str(data[key]))
                    except InvalidOperation as exc:
                        raise GatewayError(f"Unparseable ICP balance {data[key]!r}") from exc
                    return format(value.normalize(), "f") if value else "0"
        raise GatewayError(f"Unexpected ICP balance response: {text[:80]!r}")

    async def get_balance(self, address: str) -> Balance:
        self._require_connection()
        account_id = self._account_id(address)
        resp = await self.gateway.get(f"accounts/{account_id}/balance")
        return Balance(
            amount=self._parse_balance(resp),
            denomination=self.symbol,
            chain=self.chain_type,
            address=address,
        )

    async def estimate_fee(self, request: TransactionRequest) -> str:
        # The ledger charges a flat 10_000 e8s per transfer.
        return self.chain.nominal_fee

    async def send_transaction(self, from_address: str, request: TransactionRequest) -> Transaction:
        self._require_connection()
        raise self._unsupported("send_transaction")

    async def sign_transaction(self, tx: TransactionRequest, private_key: str) -> SignedTransaction:
        """ECDSA/secp256k1 over SHA-256 of the canonical request encoding.

        The signature is the raw 64-byte ``r || s`` form the IC expects.
        """
        try:
            key = key_from_private_key(self.chain_type, private_key)
            signer = ec.derive_private_key(
                int.from_bytes(key.private_key, "big"), ec.SECP256K1()
            )
            payload = tx.signing_payload(self.chain_type)
            r, s = decode_dss_signature(signer.sign(payload, ec.ECDSA(hashes.SHA256())))
        except WalletError as exc:
            raise SigningError(f"Failed to sign ICP transaction: {exc}") from exc
        except Exception as exc:
            raise SigningError(f"Failed to create ICP signature: {exc}") from exc

        signature = r.to_bytes(32, "big") + s.to_bytes(32, "big")
        signed = payload + signature
        return SignedTransaction(
            tx_hash=hashlib.sha256(signed).hexdigest(),
            signed_tx=signed.hex(),
            signature=signature.hex(),
            request=tx,
        )

    async def get_transaction_history(self, address: str) -> AsyncIterator[Transaction]:
        raise self._unsupported("get_transaction_history")
        yield  # pragma: no cover

    async def get_transaction(self, tx_hash: str) -> Transaction | None:
        raise self._unsupported("get_transaction")

    async def get_block_number(self) -> int:
        self._require_connection()
        raise self._unsupported("get_block_number")
