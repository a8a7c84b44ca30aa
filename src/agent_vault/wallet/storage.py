"""Wallet Store backends.

Wallets are addressed by ``(agent_id, wallet_id)`` only. The file backend
keeps one JSON document per wallet under ``<base_dir>/<agent_id>/``; the
memory backend is a dict and exists for tests and ephemeral sessions.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

from agent_vault.config import StorageOptions
from agent_vault.wallet.models import Wallet, validate_identifier

logger = logging.getLogger("agent_vault.wallet.storage")

# Owner read/write only (Unix).
SECURE_FILE_MODE = 0o600
SECURE_DIR_MODE = 0o700


@runtime_checkable
class WalletStore(Protocol):
    """Key-value persistence for wallet records."""

    def save(self, wallet: Wallet) -> None: ...

    def load(self, agent_id: str, wallet_id: str) -> Wallet | None: ...

    def delete(self, agent_id: str, wallet_id: str) -> None: ...

    def list(self, agent_id: str) -> list[str]: ...

    def exists(self, agent_id: str, wallet_id: str) -> bool: ...


def set_secure_permissions(path: Path, mode: int = SECURE_FILE_MODE) -> None:
    """Restrict *path* to its owner. No-op on Windows."""
    if os.name == "posix":
        try:
            os.chmod(path, mode)
        except OSError as exc:
            logger.warning(f"Could not restrict permissions on {path}: {exc}")


class FileWalletStore:
    """One JSON file per wallet, written atomically.

    Parameters
    ----------
    base_dir:
        Root folder holding one sub-directory per agent. Created on first
        save.
    """

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)

    def agent_dir(self, agent_id: str) -> Path:
        return self.base_dir / validate_identifier(agent_id, "agent id")

    def wallet_path(self, agent_id: str, wallet_id: str) -> Path:
        return self.agent_dir(agent_id) / f"{validate_identifier(wallet_id, 'wallet id')}.json"

    def save(self, wallet: Wallet) -> None:
        """Write *wallet* atomically: a crash leaves the previous file intact."""
        path = self.wallet_path(wallet.agent_id, wallet.id)
        path.parent.mkdir(parents=True, exist_ok=True)
        set_secure_permissions(path.parent, SECURE_DIR_MODE)

        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(wallet.model_dump_json(indent=2))
                fh.flush()
                os.fsync(fh.fileno())
            set_secure_permissions(Path(tmp_name))
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def load(self, agent_id: str, wallet_id: str) -> Wallet | None:
        path = self.wallet_path(agent_id, wallet_id)
        if not path.exists():
            return None
        wallet = Wallet.model_validate_json(path.read_text(encoding="utf-8"))
        # A record copied into another agent's folder must not resolve there.
        if wallet.agent_id != agent_id or wallet.id != wallet_id:
            logger.warning(f"Ignoring misfiled wallet record at {path}")
            return None
        return wallet

    def delete(self, agent_id: str, wallet_id: str) -> None:
        self.wallet_path(agent_id, wallet_id).unlink(missing_ok=True)

    def list(self, agent_id: str) -> list[str]:
        agent_dir = self.agent_dir(agent_id)
        if not agent_dir.is_dir():
            return []
        return sorted(
            p.stem for p in agent_dir.glob("*.json") if not p.name.startswith(".")
        )

    def exists(self, agent_id: str, wallet_id: str) -> bool:
        return self.wallet_path(agent_id, wallet_id).exists()


class MemoryWalletStore:
    """In-process store. Records are kept serialized so callers can't mutate them."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def save(self, wallet: Wallet) -> None:
        key = (validate_identifier(wallet.agent_id, "agent id"),
               validate_identifier(wallet.id, "wallet id"))
        payload = wallet.model_dump_json()
        with self._lock:
            self._records[key] = payload

    def load(self, agent_id: str, wallet_id: str) -> Wallet | None:
        with self._lock:
            payload = self._records.get((agent_id, wallet_id))
        if payload is None:
            return None
        return Wallet.model_validate_json(payload)

    def delete(self, agent_id: str, wallet_id: str) -> None:
        with self._lock:
            self._records.pop((agent_id, wallet_id), None)

    def list(self, agent_id: str) -> list[str]:
        with self._lock:
            return sorted(wid for aid, wid in self._records if aid == agent_id)

    def exists(self, agent_id: str, wallet_id: str) -> bool:
        with self._lock:
            return (agent_id, wallet_id) in self._records


def open_store(options: StorageOptions) -> WalletStore:
    """Build the backend selected by *options*."""
    if options.backend == "memory":
        return MemoryWalletStore()
    return FileWalletStore(options.resolved_base_dir())
