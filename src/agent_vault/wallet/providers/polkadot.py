"""Polkadot wallet provider (full implementation).

Keys are sr25519 pairs derived along Substrate junction paths; signatures
come from ``sr25519`` (Schnorrkel). Chain access goes through Substrate
JSON-RPC: balances are read from ``System.Account`` storage and transfers
are submitted as signed v4 extrinsics calling
``Balances.transfer_keep_alive`` with an immortal era.
"""

from __future__ import annotations

import hashlib
import logging
from typing import AsyncIterator

import sr25519

from agent_vault.errors import GatewayError, SigningError, ValidationError, WalletError
from agent_vault.wallet.chains import ChainType
from agent_vault.wallet.derivation import DerivedKey, decode_ss58, key_from_private_key
from agent_vault.wallet.gateway import JsonRpcGateway
from agent_vault.wallet.models import (
    Balance,
    SignedTransaction,
    Transaction,
    TransactionRequest,
)
from agent_vault.wallet.providers.base import ProviderConfig, WalletProvider

logger = logging.getLogger("agent_vault.wallet.providers.polkadot")

# twox128("System") ++ twox128("Account")
SYSTEM_ACCOUNT_PREFIX = bytes.fromhex(
    "26aa394eea5630e07c48ae0c9558cef7b99d880ec681799c0cf30e8886371da9"
)

# Balances pallet index differs between Polkadot (5) and Westend (4);
# transfer_keep_alive is call 3 in both. Keyed by the node's system_chain.
TRANSFER_KEEP_ALIVE_CALL = {
    "polkadot": bytes([0x05, 0x03]),
    "westend": bytes([0x04, 0x03]),
}

ACCEPTED_SS58_PREFIXES = (0, 42)

_EXTRINSIC_V4_SIGNED = 0x84
_MULTIADDRESS_ID = 0x00
_MULTISIGNATURE_SR25519 = 0x01
_IMMORTAL_ERA = b"\x00"
_METADATA_HASH_DISABLED = b"\x00"


def _first(value):
    """Node properties are scalars on single-token chains, lists otherwise."""
    if isinstance(value, list):
        return value[0] if value else None
    return value


def blake2_256(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


def scale_compact(value: int) -> bytes:
    """SCALE compact encoding of a non-negative integer."""
    if value < 0:
        raise ValueError("compact integers are unsigned")
    if value < 1 << 6:
        return bytes([value << 2])
    if value < 1 << 14:
        return ((value << 2) | 0b01).to_bytes(2, "little")
    if value < 1 << 30:
        return ((value << 2) | 0b10).to_bytes(4, "little")
    raw = value.to_bytes((value.bit_length() + 7) // 8, "little")
    return bytes([((len(raw) - 4) << 2) | 0b11]) + raw


def account_storage_key(public_key: bytes) -> str:
    """Storage key of ``System.Account`` for *public_key* (Blake2_128Concat)."""
    hashed = hashlib.blake2b(public_key, digest_size=16).digest() + public_key
    return "0x" + (SYSTEM_ACCOUNT_PREFIX + hashed).hex()


def decode_free_balance(account_info_hex: str | None) -> int:
    """Free balance from a SCALE ``AccountInfo`` (nonce, 3 ref counters, data)."""
    if not account_info_hex:
        return 0
    raw = bytes.fromhex(account_info_hex.removeprefix("0x"))
    if len(raw) < 32:
        raise GatewayError(f"Unexpected AccountInfo length {len(raw)}")
    return int.from_bytes(raw[16:32], "little")


def build_signed_extrinsic(
    keypair: DerivedKey,
    call: bytes,
    nonce: int,
    spec_version: int,
    transaction_version: int,
    genesis_hash: bytes,
    tip: int = 0,
) -> bytes:
    """Encode and sign a v4 extrinsic, returning the length-prefixed bytes."""
    extra = _IMMORTAL_ERA + scale_compact(nonce) + scale_compact(tip) + _METADATA_HASH_DISABLED
    additional = (
        spec_version.to_bytes(4, "little")
        + transaction_version.to_bytes(4, "little")
        + genesis_hash
        + genesis_hash  # immortal era: checkpoint block is genesis
        + _METADATA_HASH_DISABLED
    )
    payload = call + extra + additional
    if len(payload) > 256:
        payload = blake2_256(payload)
    signature = sr25519.sign((keypair.public_key, keypair.signing_key), payload)

    body = (
        bytes([_EXTRINSIC_V4_SIGNED, _MULTIADDRESS_ID])
        + keypair.public_key
        + bytes([_MULTISIGNATURE_SR25519])
        + signature
        + extra
        + call
    )
    return scale_compact(len(body)) + body


class PolkadotProvider(WalletProvider):
    """Polkadot provider backed by Substrate JSON-RPC."""

    chain_type = ChainType.POLKADOT

    def __init__(
        self,
        config: ProviderConfig | None = None,
        gateway: JsonRpcGateway | None = None,
    ) -> None:
        super().__init__(config)
        self.gateway = gateway or JsonRpcGateway(self.get_rpc_url(), timeout=self.config.timeout)
        self.network_name: str | None = None
        self._transfer_index = TRANSFER_KEEP_ALIVE_CALL[
            "westend" if self.config.is_testnet else "polkadot"
        ]

    async def _open(self) -> None:
        name = await self.gateway.call("system_chain")
        properties = await self.gateway.call("system_properties") or {}

        self.network_name = name
        self._transfer_index = self._transfer_index_for(name)
        decimals = _first(properties.get("tokenDecimals"))
        symbol = _first(properties.get("tokenSymbol"))
        if decimals is not None:
            self.decimals = int(decimals)
        if symbol:
            self.symbol = str(symbol)
        logger.debug(f"Connected to {name}: {self.symbol} with {self.decimals} decimals")

    def _transfer_index_for(self, network_name: str | None) -> bytes:
        key = (network_name or "").lower()
        for runtime, index in TRANSFER_KEEP_ALIVE_CALL.items():
            if runtime in key:
                return index
        fallback = "westend" if self.config.is_testnet else "polkadot"
        logger.warning(f"Unknown Substrate chain {network_name!r}, assuming the {fallback} Balances layout")
        return TRANSFER_KEEP_ALIVE_CALL[fallback]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def validate_address(self, address: str) -> bool:
        try:
            prefix, public_key = decode_ss58(address)
        except Exception:
            return False
        return prefix in ACCEPTED_SS58_PREFIXES and len(public_key) == 32

    def _public_key_of(self, address: str) -> bytes:
        if not self.validate_address(address):
            raise ValidationError(f"Invalid Polkadot address: {address}")
        return decode_ss58(address)[1]

    async def get_balance(self, address: str) -> Balance:
        self._require_connection()
        storage_key = account_storage_key(self._public_key_of(address))

        block_hash = await self.gateway.call("chain_getBlockHash")
        header = await self.gateway.call("chain_getHeader", [block_hash])
        account_info = await self.gateway.call("state_getStorage", [storage_key, block_hash])

        return Balance(
            amount=self._from_base_units(decode_free_balance(account_info)),
            denomination=self.symbol,
            chain=self.chain_type,
            address=address,
            block_number=int(header["number"], 16),
        )

    async def get_block_number(self) -> int:
        self._require_connection()
        header = await self.gateway.call("chain_getHeader")
        return int(header["number"], 16)

    async def estimate_fee(self, request: TransactionRequest) -> str:
        """Ask ``payment_queryInfo`` when possible, else the nominal fee."""
        if not self._connected or self._keypair is None:
            return self.chain.nominal_fee
        extrinsic = await self._build_transfer(
            self._keypair, self._public_key_of(request.to), self._to_base_units(request.amount)
        )
        info = await self.gateway.call("payment_queryInfo", ["0x" + extrinsic.hex()])
        partial_fee = info["partialFee"]
        if isinstance(partial_fee, str):
            partial_fee = int(partial_fee, 16) if partial_fee.startswith("0x") else int(partial_fee)
        return self._from_base_units(partial_fee)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _transfer_call(self, dest: bytes, amount: int) -> bytes:
        return (
            self._transfer_index
            + bytes([_MULTIADDRESS_ID])
            + dest
            + scale_compact(amount)
        )

    async def _build_transfer(self, keypair: DerivedKey, dest: bytes, amount: int) -> bytes:
        runtime = await self.gateway.call("state_getRuntimeVersion")
        genesis = await self.gateway.call("chain_getBlockHash", [0])
        nonce = await self.gateway.call("system_accountNextIndex", [keypair.address])
        return build_signed_extrinsic(
            keypair,
            self._transfer_call(dest, amount),
            nonce=int(nonce),
            spec_version=int(runtime["specVersion"]),
            transaction_version=int(runtime["transactionVersion"]),
            genesis_hash=bytes.fromhex(genesis.removeprefix("0x")),
        )

    async def send_transaction(self, from_address: str, request: TransactionRequest) -> Transaction:
        self._require_connection()
        keypair = self._require_sender(from_address)
        planck = self._to_base_units(request.amount)
        dest = self._public_key_of(request.to)

        extrinsic = await self._build_transfer(keypair, dest, planck)
        submitted = await self.gateway.call("author_submitExtrinsic", ["0x" + extrinsic.hex()])

        tx = Transaction(
            hash=submitted or "0x" + blake2_256(extrinsic).hex(),
            from_address=from_address,
            to=request.to,
            amount=request.amount,
            chain=self.chain_type,
            data={"memo": request.memo} if request.memo else {},
        )
        self._sent.append(tx)
        logger.info(f"Submitted {self.symbol} transfer {tx.hash} ({request.amount} {self.symbol} -> {request.to})")
        return tx

    async def sign_transaction(self, tx: TransactionRequest, private_key: str) -> SignedTransaction:
        """sr25519-sign the canonical request encoding.

        *private_key* is a 32-byte mini-secret or a 64-byte sr25519 secret.
        """
        try:
            keypair = key_from_private_key(self.chain_type, private_key)
            payload = tx.signing_payload(self.chain_type)
            signature = sr25519.sign((keypair.public_key, keypair.signing_key), payload)
        except WalletError as exc:
            raise SigningError(f"Failed to sign Polkadot transaction: {exc}") from exc
        except Exception as exc:
            raise SigningError(f"Failed to create Polkadot signature: {exc}") from exc

        signed = payload + signature
        return SignedTransaction(
            tx_hash="0x" + blake2_256(signed).hex(),
            signed_tx="0x" + signed.hex(),
            signature="0x" + signature.hex(),
            request=tx,
        )

    async def get_transaction_history(self, address: str) -> AsyncIterator[Transaction]:
        # Substrate RPC has no per-account history; only this session's sends.
        async for tx in self._session_history(address):
            yield tx

    async def get_transaction(self, tx_hash: str) -> Transaction | None:
        return self._session_transaction(tx_hash)
