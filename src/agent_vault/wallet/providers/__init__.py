"""Chain providers implementing the uniform wallet capability contract."""

from agent_vault.wallet.providers.base import ProviderConfig, WalletProvider
from agent_vault.wallet.providers.cketh import CkEthProvider
from agent_vault.wallet.providers.factory import create_wallet_provider
from agent_vault.wallet.providers.icp import IcpProvider
from agent_vault.wallet.providers.polkadot import PolkadotProvider
from agent_vault.wallet.providers.solana import SolanaProvider

__all__ = [
    "CkEthProvider",
    "IcpProvider",
    "PolkadotProvider",
    "ProviderConfig",
    "SolanaProvider",
    "WalletProvider",
    "create_wallet_provider",
]
