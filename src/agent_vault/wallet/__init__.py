"""Multi-chain wallet core for Agent Vault.

Derives keys for Ethereum (ckETH), Polkadot, Solana and the Internet
Computer from BIP-39 mnemonics or raw private keys, stores wallet records
per agent, and hands out connected chain providers through a cache owned
by the :class:`WalletManager`.
"""

from agent_vault.wallet.aggregator import AggregatedResults, CrossChainAggregator, MultiChainAction
from agent_vault.wallet.chains import ChainType, get_chain, list_chain_names, normalize_chain
from agent_vault.wallet.manager import WalletManager
from agent_vault.wallet.models import (
    Balance,
    CreationMethod,
    SignedTransaction,
    Transaction,
    TransactionRequest,
    Wallet,
    WalletCreationOptions,
)

__all__ = [
    "AggregatedResults",
    "Balance",
    "ChainType",
    "CreationMethod",
    "CrossChainAggregator",
    "MultiChainAction",
    "SignedTransaction",
    "Transaction",
    "TransactionRequest",
    "Wallet",
    "WalletCreationOptions",
    "WalletManager",
    "get_chain",
    "list_chain_names",
    "normalize_chain",
]
