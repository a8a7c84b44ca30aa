"""Ethereum (ckETH) wallet provider over web3.

The keypair is a secp256k1 key at ``m/44'/60'/0'/0/0`` by default and the
address its EIP-55 checksum form. Transfers use EIP-1559 fee parameters
with a legacy gas price fallback.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import AsyncIterator

from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound
from web3.middleware import ExtraDataToPOAMiddleware

from agent_vault.errors import ConnectionError, SigningError, ValidationError, WalletError
from agent_vault.wallet.chains import ChainType
from agent_vault.wallet.derivation import key_from_private_key
from agent_vault.wallet.models import (
    Balance,
    SignedTransaction,
    Transaction,
    TransactionRequest,
    TransactionStatus,
)
from agent_vault.wallet.providers.base import ProviderConfig, WalletProvider

logger = logging.getLogger("agent_vault.wallet.providers.cketh")

TRANSFER_GAS = 21_000


class CkEthProvider(WalletProvider):
    """EVM provider; one ``AsyncWeb3`` instance per provider."""

    chain_type = ChainType.CKETH

    def __init__(
        self,
        config: ProviderConfig | None = None,
        web3: AsyncWeb3 | None = None,
    ) -> None:
        super().__init__(config)
        self.w3 = web3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(self.get_rpc_url()))
        self.chain_id: int | None = None
        self._poa_injected = False

    async def _open(self) -> None:
        if not await self.w3.is_connected():
            raise ConnectionError(f"Ethereum node at {self.get_rpc_url()} is not reachable")
        self.chain_id = await self.w3.eth.chain_id

        # Testnets and L2s put extra data in block headers
        if self.chain_id != 1 and not self._poa_injected:
            self.w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
            self._poa_injected = True

    async def _close(self) -> None:
        # AsyncHTTPProvider caches aiohttp sessions until disconnect()
        disconnect = getattr(self.w3.provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def validate_address(self, address: str) -> bool:
        try:
            return bool(Web3.is_address(address))
        except Exception:
            return False

    def _checksum(self, address: str) -> str:
        if not self.validate_address(address):
            raise ValidationError(f"Invalid Ethereum address: {address}")
        return Web3.to_checksum_address(address)

    async def get_balance(self, address: str) -> Balance:
        self._require_connection()
        checksum = self._checksum(address)
        balance_wei = await self.w3.eth.get_balance(checksum)
        block_number = await self.w3.eth.block_number
        amount = Decimal(str(Web3.from_wei(balance_wei, "ether")))
        return Balance(
            amount=format(amount.normalize(), "f") if balance_wei else "0",
            denomination=self.symbol,
            chain=self.chain_type,
            address=checksum,
            block_number=block_number,
        )

    async def get_block_number(self) -> int:
        self._require_connection()
        return await self.w3.eth.block_number

    async def estimate_fee(self, request: TransactionRequest) -> str:
        if not self._connected:
            return self.chain.nominal_fee
        gas_price = await self.w3.eth.gas_price
        return self._from_base_units(gas_price * TRANSFER_GAS)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def _fee_fields(self, tx: dict) -> None:
        """EIP-1559 first, legacy gas price fallback."""
        try:
            latest = await self.w3.eth.get_block("latest")
            base_fee = latest.get("baseFeePerGas")
            if base_fee is None:
                raise ValueError("No baseFeePerGas")
            max_priority = Web3.to_wei(1.5, "gwei")
            tx["maxFeePerGas"] = base_fee * 2 + max_priority
            tx["maxPriorityFeePerGas"] = max_priority
            tx["gas"] = await self.w3.eth.estimate_gas(tx)
        except Exception as exc:
            logger.debug(f"EIP-1559 fee lookup failed, using legacy gas price: {exc}")
            tx.pop("maxFeePerGas", None)
            tx.pop("maxPriorityFeePerGas", None)
            tx["gasPrice"] = await self.w3.eth.gas_price
            tx["gas"] = await self.w3.eth.estimate_gas(tx)

    async def send_transaction(self, from_address: str, request: TransactionRequest) -> Transaction:
        self._require_connection()
        keypair = self._require_sender(from_address)
        value = self._to_base_units(request.amount)
        to = self._checksum(request.to)

        tx: dict = {
            "from": keypair.address,
            "to": to,
            "value": value,
            "nonce": await self.w3.eth.get_transaction_count(keypair.address, "pending"),
            "chainId": self.chain_id,
        }
        await self._fee_fields(tx)

        signed = Account.sign_transaction(tx, keypair.private_key)
        tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)

        record = Transaction(
            hash=Web3.to_hex(tx_hash),
            from_address=keypair.address,
            to=to,
            amount=request.amount,
            chain=self.chain_type,
            data={"nonce": tx["nonce"], "gas": tx["gas"]},
        )
        self._sent.append(record)
        logger.info(f"Sent {request.amount} {self.symbol} to {to}: {record.hash}")
        return record

    async def sign_transaction(self, tx: TransactionRequest, private_key: str) -> SignedTransaction:
        """Sign the canonical request encoding as an EIP-191 personal message."""
        try:
            key = key_from_private_key(self.chain_type, private_key)
            payload = tx.signing_payload(self.chain_type)
            signed = Account.sign_message(encode_defunct(primitive=payload), key.private_key)
        except WalletError as exc:
            raise SigningError(f"Failed to sign Ethereum transaction: {exc}") from exc
        except Exception as exc:
            raise SigningError(f"Failed to create Ethereum signature: {exc}") from exc

        signature = bytes(signed.signature)
        return SignedTransaction(
            tx_hash=Web3.to_hex(Web3.keccak(payload + signature)),
            signed_tx=Web3.to_hex(payload + signature),
            signature=Web3.to_hex(signature),
            request=tx,
        )

    async def get_transaction_history(self, address: str) -> AsyncIterator[Transaction]:
        # JSON-RPC nodes don't index by account; only this session's sends.
        async for tx in self._session_history(address):
            yield tx

    async def get_transaction(self, tx_hash: str) -> Transaction | None:
        """Look up *tx_hash*: this session's sends first, then the node.

        Raises ``NotConnectedError`` only when the node has to be asked.
        """
        sent = self._session_transaction(tx_hash)
        if sent is not None and not self._connected:
            return sent
        self._require_connection()
        try:
            found = await self.w3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return sent
        block_number = found.get("blockNumber")
        return Transaction(
            hash=Web3.to_hex(found["hash"]),
            from_address=found["from"],
            to=found.get("to") or "",
            amount=self._from_base_units(found["value"]),
            chain=self.chain_type,
            status=TransactionStatus.CONFIRMED if block_number is not None else TransactionStatus.PENDING,
            block_number=block_number,
        )
