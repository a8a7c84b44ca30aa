"""Shared fixtures for the Agent Vault test suite."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from agent_vault.config import StorageOptions
from agent_vault.wallet.manager import WalletManager

# BIP-39 test vector (all-zero 128-bit entropy)
ABANDON_MNEMONIC = "abandon " * 11 + "about"
ABANDON_ETH_ADDRESS = "0x9858EfFD232B4033E47d90003D41EC34EcaEda94"

# Private key from the eth-account documentation
ETH_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
ETH_ADDRESS = "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"


@pytest.fixture
def memory_storage() -> StorageOptions:
    return StorageOptions(backend="memory")


@pytest.fixture
def manager(memory_storage) -> WalletManager:
    return WalletManager(memory_storage)


@pytest.fixture
def file_manager(tmp_path) -> WalletManager:
    return WalletManager(StorageOptions(backend="file", base_dir=tmp_path / "wallets"))


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path, monkeypatch):
    """Keep config and wallet files out of the real working directory."""
    monkeypatch.setenv("AGENT_VAULT_HOME", str(tmp_path / ".agent-vault"))


class RpcRecorder:
    """JSON-RPC mock node: canned results per method, records every call."""

    def __init__(self, results: dict):
        self.results = results
        self.calls: list[tuple[str, list]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        method, params = body["method"], body.get("params", [])
        self.calls.append((method, params))
        if method not in self.results:
            return httpx.Response(
                200,
                json={"jsonrpc": "2.0", "id": body["id"],
                      "error": {"code": -32601, "message": f"Method not found: {method}"}},
            )
        result = self.results[method]
        if callable(result):
            result = result(params)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    def params_of(self, method: str) -> list:
        for name, params in self.calls:
            if name == method:
                return params
        raise AssertionError(f"{method} was never called")

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def hanging_transport(self, *methods: str) -> httpx.MockTransport:
        """Like :meth:`transport`, but calls to *methods* never get a reply."""

        async def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            if body["method"] in methods:
                self.calls.append((body["method"], body.get("params", [])))
                await asyncio.Event().wait()
            return self(request)

        return httpx.MockTransport(handler)
