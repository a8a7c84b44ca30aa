"""Cross-chain aggregation over one agent's wallets.

Actions run in parallel batches and independently: there is no rollback,
and a failing wallet is reported in its result rather than raised. Sends
from the same wallet are still serialized so they never race on a nonce.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from typing import Optional

from pydantic import BaseModel, Field

from agent_vault.config import StorageOptions
from agent_vault.wallet.chains import ChainType
from agent_vault.wallet.manager import WalletManager
from agent_vault.wallet.models import Transaction, TransactionRequest

logger = logging.getLogger("agent_vault.wallet.aggregator")


class MultiChainAction(BaseModel):
    """A transfer from one of the agent's wallets."""

    wallet_id: str
    request: TransactionRequest


class ActionResult(BaseModel):
    wallet_id: str
    chain: Optional[ChainType] = None
    success: bool
    tx_hash: Optional[str] = None
    fee: Optional[str] = None
    error: Optional[str] = None
    duration: float = 0.0


class AggregatedResults(BaseModel):
    results: list[ActionResult] = Field(default_factory=list)
    duration: float = 0.0

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    def summary(self) -> str:
        rate = f"{self.succeeded / self.total * 100:.2f}" if self.total else "0"
        lines = [
            "Cross-Chain Execution Summary",
            f"Total actions: {self.total}",
            f"Succeeded:     {self.succeeded}",
            f"Failed:        {self.failed}",
            f"Success rate:  {rate}%",
            f"Duration:      {self.duration:.3f}s",
        ]
        failures = [r for r in self.results if not r.success]
        if failures:
            lines.append("")
            lines.append("Failed actions:")
            for r in failures:
                chain = r.chain.value if r.chain else "?"
                lines.append(f"  [{chain}] {r.wallet_id}: {r.error}")
        return "\n".join(lines)


class CrossChainAggregator:
    """Fan wallet operations for one agent out across chains.

    Parameters
    ----------
    manager:
        Supplies wallets and connected providers.
    max_concurrency:
        Actions per batch.
    timeout:
        Seconds allowed for each action, connect included.
    continue_on_error:
        When false, stop after the first batch that has a failure.
    """

    def __init__(
        self,
        manager: WalletManager,
        *,
        max_concurrency: int = 5,
        timeout: float = 30.0,
        continue_on_error: bool = True,
        storage_options: StorageOptions | None = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.manager = manager
        self.max_concurrency = max_concurrency
        self.timeout = timeout
        self.continue_on_error = continue_on_error
        self.storage_options = storage_options

    async def _timed(self, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(f"timed out after {self.timeout}s") from None

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    async def execute(self, agent_id: str, actions: list[MultiChainAction]) -> AggregatedResults:
        """Send every action's transfer, in batches of ``max_concurrency``."""
        start = time.monotonic()
        if not actions:
            return AggregatedResults()

        logger.info(f"Executing {len(actions)} cross-chain action(s) for agent {agent_id}")
        locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        results: list[ActionResult] = []
        for i in range(0, len(actions), self.max_concurrency):
            batch = actions[i:i + self.max_concurrency]
            batch_results = await asyncio.gather(
                *(self._send(agent_id, action, locks[action.wallet_id]) for action in batch)
            )
            results.extend(batch_results)
            if not self.continue_on_error and any(not r.success for r in batch_results):
                logger.info("Stopping after a failed batch (continue_on_error is off)")
                break

        aggregated = AggregatedResults(results=results, duration=time.monotonic() - start)
        logger.info(
            f"Cross-chain execution done: {aggregated.succeeded} succeeded, "
            f"{aggregated.failed} failed ({aggregated.duration:.2f}s)"
        )
        return aggregated

    async def _send(
        self, agent_id: str, action: MultiChainAction, lock: asyncio.Lock
    ) -> ActionResult:
        start = time.monotonic()
        result = ActionResult(wallet_id=action.wallet_id, success=False)
        try:
            async with lock:
                provider = await self._timed(
                    self.manager.connect_wallet(agent_id, action.wallet_id, self.storage_options)
                )
                result.chain = provider.get_chain()
                tx: Transaction = await self._timed(
                    provider.send_transaction(provider.get_address(), action.request)
                )
            result.success = True
            result.tx_hash = tx.hash
        except Exception as e:
            logger.warning(f"Cross-chain action on wallet {action.wallet_id} failed: {e}")
            result.error = str(e)
        result.duration = time.monotonic() - start
        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def estimate_fees(self, agent_id: str, actions: list[MultiChainAction]) -> list[ActionResult]:
        """Fee estimate for every action, all at once."""
        return list(await asyncio.gather(*(self._estimate(agent_id, a) for a in actions)))

    async def _estimate(self, agent_id: str, action: MultiChainAction) -> ActionResult:
        start = time.monotonic()
        result = ActionResult(wallet_id=action.wallet_id, success=False)
        try:
            provider = await self._timed(
                self.manager.connect_wallet(agent_id, action.wallet_id, self.storage_options)
            )
            result.chain = provider.get_chain()
            result.fee = await self._timed(provider.estimate_fee(action.request))
            result.success = True
        except Exception as e:
            logger.warning(f"Fee estimate for wallet {action.wallet_id} failed: {e}")
            result.error = str(e)
        result.duration = time.monotonic() - start
        return result

    async def get_multi_chain_history(self, agent_id: str, limit: int = 20) -> list[Transaction]:
        """Up to *limit* transactions per wallet, across all of the agent's wallets."""
        wallets = self.manager.list_agent_wallets(agent_id, self.storage_options)
        histories = await asyncio.gather(
            *(self._history(agent_id, wallet.id, wallet.address, limit) for wallet in wallets)
        )
        return [tx for history in histories for tx in history]

    async def _history(self, agent_id: str, wallet_id: str, address: str, limit: int) -> list[Transaction]:
        async def collect() -> list[Transaction]:
            provider = await self.manager.connect_wallet(agent_id, wallet_id, self.storage_options)
            found: list[Transaction] = []
            async for tx in provider.get_transaction_history(address):
                found.append(tx)
                if len(found) >= limit:
                    break
            return found

        try:
            return await self._timed(collect())
        except Exception as e:
            logger.warning(f"Failed to get history for wallet {wallet_id}: {e}")
            return []
