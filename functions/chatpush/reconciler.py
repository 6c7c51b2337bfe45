"""Device token cleanup.

Two policies live here on purpose:

- ``reconcile`` runs after a real send and only drops tokens the gateway
  classified as permanently invalid.
- ``sweep`` runs on a schedule and drops every token whose dry-run send
  fails for any reason, including transport errors.
"""
import asyncio
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from . import config
from .interfaces import DeviceTokenStore, PushGateway
from .logging_config import CloudFunctionLogger
from .models import SendResult, SweepResult

logger = CloudFunctionLogger("token-reconciler")


class TokenReconciler:
    def __init__(
        self,
        tokens: DeviceTokenStore,
        gateway: PushGateway,
        concurrency: int = config.SWEEP_CONCURRENCY,
        log: Optional[CloudFunctionLogger] = None,
    ):
        self.tokens = tokens
        self.gateway = gateway
        self.concurrency = max(1, concurrency)
        self.log = log or logger

    async def reconcile(
        self,
        user_id: str,
        tokens: Sequence[str],
        results: Sequence[SendResult],
    ) -> List[str]:
        """Remove tokens whose send failed with a permanent error.

        Args:
            user_id: Owner of the tokens
            tokens: Tokens passed to the bulk send, in send order
            results: Gateway results, one per token in the same order

        Returns:
            The tokens that were removed (possibly empty)
        """
        to_remove = []
        for token, result in zip(tokens, results):
            if result.error is None:
                continue
            if result.error.is_permanent:
                if token not in to_remove:
                    to_remove.append(token)
            else:
                self.log.warning(
                    "Transient push failure, keeping token",
                    user_id=user_id, code=result.error.code.value,
                    reason=result.error.message)

        if to_remove:
            await self.tokens.remove_tokens(user_id, to_remove)

        self.log.info(
            "Post-send reconciliation complete",
            user_id=user_id, removed=len(to_remove))
        return to_remove

    async def sweep(self) -> SweepResult:
        """Dry-run every registered token and drop the ones that fail.

        Safe to re-run: a second pass with no new registrations removes
        nothing because only deliverable tokens are left.
        """
        semaphore = asyncio.Semaphore(self.concurrency)
        result = SweepResult()

        tasks = []
        async for user_id, tokens in self.tokens.iter_token_sets():
            if not tokens:
                continue
            result.users_checked += 1
            result.tokens_checked += len(tokens)
            tasks.append(asyncio.create_task(
                self._sweep_user(user_id, list(tokens), semaphore)))

        outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                # Token removal failed; the next sweep retries that user
                self.log.error("Sweep update failed", error=str(outcome))
                continue
            if outcome:
                result.users_cleaned += 1
                result.tokens_removed += outcome

        result.completed_at = datetime.now(timezone.utc)
        self.log.info(
            f"Cleaned up tokens for {result.users_cleaned} users",
            users_checked=result.users_checked,
            tokens_checked=result.tokens_checked,
            tokens_removed=result.tokens_removed)
        return result

    async def _sweep_user(
        self, user_id: str, tokens: List[str], semaphore: asyncio.Semaphore
    ) -> int:
        checks = await asyncio.gather(
            *(self._is_deliverable(user_id, token, semaphore) for token in tokens))
        invalid = [token for token, ok in zip(tokens, checks) if not ok]
        if invalid:
            await self.tokens.remove_tokens(user_id, invalid)
            self.log.info(
                "Removed undeliverable tokens", user_id=user_id,
                removed=len(invalid), remaining=len(tokens) - len(invalid))
        return len(invalid)

    async def _is_deliverable(
        self, user_id: str, token: str, semaphore: asyncio.Semaphore
    ) -> bool:
        async with semaphore:
            try:
                result = await self.gateway.send_dry_run(token)
            except Exception as e:
                self.log.warning(
                    "Dry-run send raised", user_id=user_id, error=str(e))
                return False
        return result.success
