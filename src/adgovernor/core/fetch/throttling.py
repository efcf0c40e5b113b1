"""
Rate limiting and throttling utilities.

Provides per-account, score-based rate limiting that mirrors the remote
service's own accounting: every call costs score, accumulated score halves
every decay period, and overflowing the budget blocks the account for a
penalty window.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from adgovernor.core.config.models import RateLimitTier

from .errors import GraphApiError

logger = logging.getLogger(__name__)

# Longest wait_for_capacity will poll before giving up
MAX_CAPACITY_WAIT_MS = 60_000
CAPACITY_POLL_INTERVAL_MS = 1_000


@dataclass(frozen=True)
class RateLimitConfig:
    """Score budget for one access tier."""

    max_score: float
    decay_time_ms: float
    block_time_ms: float
    read_call_score: float = 1
    write_call_score: float = 3


DEVELOPMENT_TIER = RateLimitConfig(
    max_score=60,
    decay_time_ms=300_000,
    block_time_ms=300_000,
)

STANDARD_TIER = RateLimitConfig(
    max_score=9000,
    decay_time_ms=300_000,
    block_time_ms=60_000,
)

TIER_CONFIGS: dict[RateLimitTier, RateLimitConfig] = {
    RateLimitTier.DEVELOPMENT: DEVELOPMENT_TIER,
    RateLimitTier.STANDARD: STANDARD_TIER,
}


@dataclass
class AccountRateState:
    """Mutable usage state for a single account."""

    current_score: float = 0.0
    last_decay_time: float = 0.0  # ms on the limiter clock
    is_blocked: bool = False
    block_until: float = 0.0  # ms on the limiter clock


class RateLimiter:
    """Per-account score limiter with exponential decay and block windows.

    Features:
    - Read and write calls cost different amounts of score
    - Score halves every decay period of inactivity
    - Overflowing the budget blocks the account for a fixed window
    - State is created lazily per account and lives as long as the limiter

    The admission check has no await between evaluation and update, so
    concurrent tasks on one event loop can never overshoot the budget.
    """

    def __init__(
        self,
        tier: RateLimitTier = RateLimitTier.STANDARD,
        *,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize rate limiter.

        Args:
            tier: Access tier whose budget to enforce
            config: Explicit budget (overrides ``tier``); reported as the
                matching named tier, or "custom"
            clock: Monotonic clock in seconds
            sleep: Awaitable sleep used while waiting for capacity
        """
        self.tier: RateLimitTier | None = tier
        self.config = TIER_CONFIGS[tier]
        if config is not None:
            self.config = config
            self.tier = next((name for name, budget in TIER_CONFIGS.items() if budget == config), None)
        self._clock = clock
        self._sleep = sleep
        self._accounts: dict[str, AccountRateState] = {}

    @classmethod
    def from_config(cls, config: RateLimitConfig, **kwargs: Any) -> "RateLimiter":
        return cls(config=config, **kwargs)

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def _get_state(self, account_id: str) -> AccountRateState:
        """Get or create state for an account."""
        state = self._accounts.get(account_id)
        if state is None:
            state = AccountRateState(last_decay_time=self._now_ms())
            self._accounts[account_id] = state
        return state

    def _update(self, account_id: str) -> AccountRateState:
        """Apply decay and clear an expired block."""
        state = self._get_state(account_id)
        now = self._now_ms()

        periods = math.floor((now - state.last_decay_time) / self.config.decay_time_ms)
        if periods > 0:
            state.current_score = max(0.0, state.current_score * 0.5 ** periods)
            state.last_decay_time = now

        if state.is_blocked and now >= state.block_until:
            state.is_blocked = False
            state.block_until = 0.0
            logger.info(f"Rate limit block lifted for account {account_id}")

        return state

    async def check_rate_limit(self, account_id: str, is_write_call: bool = False) -> None:
        """Admit one call for an account or raise.

        Args:
            account_id: Account the call is made on behalf of
            is_write_call: Whether the call mutates remote state

        Raises:
            GraphApiError: RATE_LIMIT kind, with the wait in ``retry_after_ms``
        """
        state = self._update(account_id)

        if state.is_blocked:
            wait_ms = max(0.0, state.block_until - self._now_ms())
            raise GraphApiError.rate_limit(
                f"Rate limit exceeded for account {account_id}. "
                f"Please wait {math.ceil(wait_ms / 1000)} seconds.",
                wait_ms,
            )

        call_score = self.config.write_call_score if is_write_call else self.config.read_call_score

        if state.current_score + call_score > self.config.max_score:
            state.is_blocked = True
            state.block_until = self._now_ms() + self.config.block_time_ms
            logger.warning(
                f"Account {account_id} exceeded score budget "
                f"({state.current_score:.1f} + {call_score} > {self.config.max_score}), "
                f"blocking for {self.config.block_time_ms / 1000:.0f}s",
                extra={"account_id": account_id, "retry_after_ms": self.config.block_time_ms},
            )
            raise GraphApiError.rate_limit(
                f"Rate limit exceeded for account {account_id}. "
                f"Blocked for {self.config.block_time_ms / 1000:.0f} seconds.",
                self.config.block_time_ms,
            )

        state.current_score += call_score

    async def wait_for_capacity(self, account_id: str, required_score: float = 1) -> None:
        """Wait until an account can afford ``required_score``.

        Polls once a second for at most a minute. A block that outlasts the
        remaining wait fails straight away instead of being waited out.

        Raises:
            GraphApiError: RATE_LIMIT kind when capacity cannot be had in time
        """
        waited_ms = 0

        while waited_ms < MAX_CAPACITY_WAIT_MS:
            state = self._update(account_id)

            if not state.is_blocked and state.current_score + required_score <= self.config.max_score:
                return

            if state.is_blocked:
                remaining = self.get_block_time_remaining(account_id)
                if remaining > MAX_CAPACITY_WAIT_MS - waited_ms:
                    raise GraphApiError.rate_limit(
                        f"Rate limit block time ({math.ceil(remaining / 1000)}s) "
                        f"exceeds maximum wait time",
                        remaining,
                    )

            await self._sleep(CAPACITY_POLL_INTERVAL_MS / 1000.0)
            waited_ms += CAPACITY_POLL_INTERVAL_MS

        raise GraphApiError.rate_limit(
            f"Could not acquire rate limit capacity after {MAX_CAPACITY_WAIT_MS // 1000} seconds",
            0,
        )

    def get_current_score(self, account_id: str) -> float:
        return self._update(account_id).current_score

    def get_remaining_capacity(self, account_id: str) -> float:
        state = self._update(account_id)
        return max(0.0, self.config.max_score - state.current_score)

    def is_account_blocked(self, account_id: str) -> bool:
        return self._update(account_id).is_blocked

    def get_block_time_remaining(self, account_id: str) -> float:
        """Milliseconds until the account's block lifts (0 if not blocked)."""
        state = self._update(account_id)
        if not state.is_blocked:
            return 0.0
        return max(0.0, state.block_until - self._now_ms())

    def stats(self, account_id: str | None = None) -> dict[str, Any]:
        """Get rate limiter statistics.

        Args:
            account_id: Specific account or None for a summary

        Returns:
            Statistics dictionary
        """
        if account_id:
            state = self._update(account_id)
            return {
                "account_id": account_id,
                "current_score": state.current_score,
                "remaining_capacity": max(0.0, self.config.max_score - state.current_score),
                "is_blocked": state.is_blocked,
                "block_time_remaining_ms": self.get_block_time_remaining(account_id),
                "config": self.config,
            }

        return {
            "tier": self.tier.value if self.tier else "custom",
            "accounts_tracked": len(self._accounts),
            "accounts_blocked": sum(
                1 for acct in list(self._accounts) if self._update(acct).is_blocked
            ),
        }
