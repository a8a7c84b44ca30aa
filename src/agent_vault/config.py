"""Configuration system for Agent Vault.

Loads vault config from ``.agent-vault/config.yaml``, supports environment
variable expansion, and defines the storage options accepted by every
Wallet Manager operation.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Environment-variable expansion helper
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")

HOME_ENV_VAR = "AGENT_VAULT_HOME"


def _expand_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with their environment values.

    If the variable is not set the placeholder is left as-is so that
    validation can catch it later.
    """

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))

    return _ENV_VAR_RE.sub(_replace, value)


def _expand_env_recursive(obj: object) -> object:
    """Walk an arbitrary nested structure and expand env vars in strings."""
    if isinstance(obj, str):
        return _expand_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _expand_env_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# Pydantic v2 models
# ---------------------------------------------------------------------------


class StorageOptions(BaseModel):
    """Wallet Store selection. Backend and location are the only knobs."""

    model_config = ConfigDict(frozen=True)

    backend: Literal["file", "memory"] = "file"
    base_dir: Optional[Path] = None

    def resolved_base_dir(self) -> Path:
        """Directory holding per-agent wallet folders for the file backend."""
        if self.base_dir is not None:
            return Path(self.base_dir).expanduser()
        return get_root_dir() / "wallets"


class NetworkConfig(BaseModel):
    """Per-chain network override."""

    rpc_url: Optional[str] = None
    is_testnet: bool = False
    timeout: float = 15.0


class VaultConfig(BaseModel):
    """Root configuration object."""

    default_chain: str = "cketh"
    log_level: str = "INFO"
    storage: StorageOptions = Field(default_factory=StorageOptions)
    networks: dict[str, NetworkConfig] = Field(default_factory=dict)

    def network_for(self, chain: str) -> NetworkConfig:
        return self.networks.get(chain, NetworkConfig())


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def get_root_dir(base: Path | None = None) -> Path:
    """Return the ``.agent-vault/`` root directory (no auto-create).

    ``$AGENT_VAULT_HOME`` wins over *base*; otherwise *base* defaults to the
    current working directory.
    """
    home = os.environ.get(HOME_ENV_VAR)
    if home:
        return Path(home).expanduser()
    if base is None:
        base = Path.cwd()
    return base / ".agent-vault"


def load_config(path: Path) -> VaultConfig:
    """Load and validate a vault configuration from a YAML file.

    Environment variable placeholders (``${VAR}``) are expanded before
    validation. A missing file yields the defaults.
    """
    if not path.exists():
        return VaultConfig()
    raw_text = path.read_text(encoding="utf-8")
    raw_data = yaml.safe_load(raw_text) or {}
    expanded = _expand_env_recursive(raw_data)
    return VaultConfig.model_validate(expanded)


def save_config(config: VaultConfig, path: Path) -> None:
    """Serialize a :class:`VaultConfig` to a YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="json", exclude_none=True)
    with open(path, "w", encoding="utf-8") as fh:
        yaml.dump(data, fh, default_flow_style=False, sort_keys=False)
