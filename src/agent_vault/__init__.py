"""Agent Vault: multi-chain wallet management for AI agents.

Creates, imports and derives wallets scoped to an owning agent, persists
them through a pluggable Wallet Store and exposes signing and chain access
through per-chain providers.
"""

__version__ = "0.1.0"
