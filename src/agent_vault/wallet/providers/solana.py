"""Solana wallet provider (stub).

Key derivation and address validation work; every operation that would
need the Solana RPC raises ``UnsupportedOperationError`` instead of
returning placeholder data.
"""

from __future__ import annotations

from typing import AsyncIterator

from agent_vault.wallet.chains import ChainType
from agent_vault.wallet.derivation import decode_base58
from agent_vault.wallet.models import (
    Balance,
    SignedTransaction,
    Transaction,
    TransactionRequest,
)
from agent_vault.wallet.providers.base import WalletProvider


class SolanaProvider(WalletProvider):
    chain_type = ChainType.SOLANA

    def validate_address(self, address: str) -> bool:
        try:
            return len(decode_base58(address)) == 32
        except Exception:
            return False

    async def get_balance(self, address: str) -> Balance:
        self._require_connection()
        raise self._unsupported("get_balance")

    async def estimate_fee(self, request: TransactionRequest) -> str:
        # 5000 lamports per signature
        return self.chain.nominal_fee

    async def send_transaction(self, from_address: str, request: TransactionRequest) -> Transaction:
        self._require_connection()
        raise self._unsupported("send_transaction")

    async def sign_transaction(self, tx: TransactionRequest, private_key: str) -> SignedTransaction:
        raise self._unsupported("sign_transaction")

    async def get_transaction_history(self, address: str) -> AsyncIterator[Transaction]:
        raise self._unsupported("get_transaction_history")
        yield  # pragma: no cover

    async def get_transaction(self, tx_hash: str) -> Transaction | None:
        raise self._unsupported("get_transaction")

    async def get_block_number(self) -> int:
        self._require_connection()
        raise self._unsupported("get_block_number")
