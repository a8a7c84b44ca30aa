"""Chain definitions for supported networks."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from agent_vault.errors import ValidationError


class ChainType(str, Enum):
    CKETH = "cketh"
    POLKADOT = "polkadot"
    SOLANA = "solana"
    ICP = "icp"


class Curve(str, Enum):
    SECP256K1 = "secp256k1"
    SR25519 = "sr25519"
    ED25519 = "ed25519"


@dataclass(frozen=True)
class Chain:
    """A supported blockchain network family."""

    name: ChainType
    display_name: str
    native_symbol: str
    decimals: int
    curve: Curve
    default_derivation_path: str
    rpc_url: str
    testnet_rpc_url: str
    explorer_url: str
    # Protocol-level fee used when the chain can't be asked for an estimate.
    nominal_fee: str
    # Set where the default testnet runs a different token.
    testnet_symbol: str | None = None
    testnet_decimals: int | None = None

    def default_rpc_url(self, is_testnet: bool = False) -> str:
        return self.testnet_rpc_url if is_testnet else self.rpc_url

    def symbol_for(self, is_testnet: bool = False) -> str:
        if is_testnet and self.testnet_symbol:
            return self.testnet_symbol
        return self.native_symbol

    def decimals_for(self, is_testnet: bool = False) -> int:
        if is_testnet and self.testnet_decimals is not None:
            return self.testnet_decimals
        return self.decimals


CHAINS: dict[ChainType, Chain] = {
    ChainType.CKETH: Chain(
        name=ChainType.CKETH,
        display_name="Ethereum",
        native_symbol="ETH",
        decimals=18,
        curve=Curve.SECP256K1,
        default_derivation_path="m/44'/60'/0'/0/0",
        rpc_url="https://eth.llamarpc.com",
        testnet_rpc_url="https://ethereum-sepolia-rpc.publicnode.com",
        explorer_url="https://etherscan.io",
        nominal_fee="0.00042",
    ),
    ChainType.POLKADOT: Chain(
        name=ChainType.POLKADOT,
        display_name="Polkadot",
        native_symbol="DOT",
        decimals=10,
        curve=Curve.SR25519,
        default_derivation_path="//hard//stash",
        rpc_url="https://rpc.polkadot.io",
        testnet_rpc_url="https://westend-rpc.polkadot.io",
        explorer_url="https://polkadot.subscan.io",
        nominal_fee="0.01",
        testnet_symbol="WND",
        testnet_decimals=12,
    ),
    ChainType.SOLANA: Chain(
        name=ChainType.SOLANA,
        display_name="Solana",
        native_symbol="SOL",
        decimals=9,
        curve=Curve.ED25519,
        default_derivation_path="m/44'/501'/0'/0'",
        rpc_url="https://api.mainnet-beta.solana.com",
        testnet_rpc_url="https://api.devnet.solana.com",
        explorer_url="https://explorer.solana.com",
        nominal_fee="0.000005",
    ),
    ChainType.ICP: Chain(
        name=ChainType.ICP,
        display_name="Internet Computer",
        native_symbol="ICP",
        decimals=8,
        curve=Curve.SECP256K1,
        default_derivation_path="m/44'/223'/0'/0/0",
        rpc_url="https://ledger-api.internetcomputer.org",
        testnet_rpc_url="https://ledger-api.internetcomputer.org",
        explorer_url="https://dashboard.internetcomputer.org",
        nominal_fee="0.0001",
    ),
}

_ALIASES: dict[str, ChainType] = {
    "cketh": ChainType.CKETH,
    "eth": ChainType.CKETH,
    "ethereum": ChainType.CKETH,
    "polkadot": ChainType.POLKADOT,
    "dot": ChainType.POLKADOT,
    "solana": ChainType.SOLANA,
    "sol": ChainType.SOLANA,
    "icp": ChainType.ICP,
}


def normalize_chain(name: str | ChainType) -> ChainType:
    """Map a chain name or alias to its canonical :class:`ChainType`.

    Raises ``ValidationError`` for unknown chains.
    """
    if isinstance(name, ChainType):
        return name
    key = str(name).strip().lower()
    if key not in _ALIASES:
        raise ValidationError(
            f"Unsupported chain '{name}'. Available: {list_chain_names()}"
        )
    return _ALIASES[key]


def get_chain(name: str | ChainType) -> Chain:
    """Get a chain by name or alias. Raises ``ValidationError`` if not found."""
    return CHAINS[normalize_chain(name)]


def list_chain_names() -> list[str]:
    """Return the canonical names of all supported chains."""
    return [chain.value for chain in CHAINS]
