"""Provider dispatch by chain tag."""

from __future__ import annotations

from agent_vault.config import NetworkConfig
from agent_vault.wallet.chains import ChainType, normalize_chain
from agent_vault.wallet.providers.base import ProviderConfig, WalletProvider
from agent_vault.wallet.providers.cketh import CkEthProvider
from agent_vault.wallet.providers.icp import IcpProvider
from agent_vault.wallet.providers.polkadot import PolkadotProvider
from agent_vault.wallet.providers.solana import SolanaProvider

_PROVIDERS: dict[ChainType, type[WalletProvider]] = {
    ChainType.CKETH: CkEthProvider,
    ChainType.POLKADOT: PolkadotProvider,
    ChainType.SOLANA: SolanaProvider,
    ChainType.ICP: IcpProvider,
}


def create_wallet_provider(
    chain: ChainType | str, network: NetworkConfig | None = None
) -> WalletProvider:
    """Instantiate a disconnected provider for *chain*.

    Raises ``ValidationError`` for unknown chains.
    """
    chain = normalize_chain(chain)
    network = network or NetworkConfig()
    config = ProviderConfig(
        chain=chain,
        rpc_url=network.rpc_url,
        is_testnet=network.is_testnet,
        timeout=network.timeout,
    )
    return _PROVIDERS[chain](config)
