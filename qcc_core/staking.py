"""
Staking periods, reward arithmetic, interest-rate caching and stake
submission.

Rates come from the staking backend (``/staking/rates``) and change
rarely, so they are cached for a fixed TTL.  The cache takes its clock as
a constructor argument, which keeps expiry testable without sleeping.

Reward model (simple interest, no compounding):

    reward       = amount × (apy / 365 / 100) × days
    total_return = amount + reward

Staking is two steps: a signed ``Send`` of the coins to the
staking wallet, then ``POST /staking`` carrying the Send's transaction
hash.  :func:`stake` runs both and only registers the stake once the
chain has returned a hash.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Optional

from qcc_core.crypto_utils import address as derive_address
from qcc_core.errors import BroadcastError, ChainAPIError
from qcc_core.precision import AmountLike, to_base_units
from qcc_core.wallet import public_key

if TYPE_CHECKING:
    from qcc_core.client import QCCClient, StakingClient
    from qcc_core.config import QCCConfig

logger = logging.getLogger("qcc_staking")

DEFAULT_CACHE_SECONDS: float = 5 * 60

# Used when /api/config is unreachable.
DEFAULT_STAKING_WALLET_ADDRESS = "dde0b5f4a236f209d62efe7354e73ca2f52a2dc78cca"


@dataclass(frozen=True)
class StakingPeriod:
    id: str
    name: str
    days: int
    apy: float


# Used when the staking backend is unreachable.
DEFAULT_STAKING_PERIODS: tuple[StakingPeriod, ...] = (
    StakingPeriod("30", "30 days", 30, 3.0),
    StakingPeriod("90", "90 days", 90, 6.0),
    StakingPeriod("180", "180 days", 180, 10.0),
    StakingPeriod("365", "365 days", 365, 15.0),
)


def calculate_reward(amount: float, apy: float, days: int) -> float:
    daily_rate = apy / 365 / 100
    return amount * daily_rate * days


def calculate_total_return(amount: float, apy: float, days: int) -> float:
    return amount + calculate_reward(amount, apy, days)


def truncate_address(address: str) -> str:
    """``abcdef...wxyz`` form for display."""
    if not address:
        return ""
    return f"{address[:6]}...{address[-4:]}"


def period_from_rate(record: dict) -> StakingPeriod:
    """Build a :class:`StakingPeriod` from a ``{period, rate, name}`` record."""
    days = int(record["period"])
    return StakingPeriod(
        id=str(days),
        name=str(record.get("name") or f"{days} days"),
        days=days,
        apy=float(record["rate"]),
    )


def find_staking_period(periods: list[StakingPeriod] | tuple[StakingPeriod, ...],
                        period_id: str) -> Optional[StakingPeriod]:
    for period in periods:
        if period.id == period_id:
            return period
    return None


# ===================================================================
#  Rate cache
# ===================================================================

class RateCache:
    """
    Holds the last fetched staking periods until they go stale.

    ``clock`` returns seconds; it defaults to ``time.monotonic``.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_CACHE_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._periods: list[StakingPeriod] | None = None
        self._expires_at: float = 0.0

    @classmethod
    def from_config(cls, cfg: QCCConfig,
                    clock: Callable[[], float] = time.monotonic) -> RateCache:
        return cls(cfg.staking.rates_cache_seconds, clock=clock)

    def get(self) -> list[StakingPeriod] | None:
        """Cached periods, or ``None`` if empty or expired."""
        if self._periods is None or self._clock() >= self._expires_at:
            return None
        return list(self._periods)

    def put(self, periods: list[StakingPeriod]) -> None:
        self._periods = list(periods)
        self.invalidate_after(self.ttl_seconds)

    def invalidate_after(self, seconds: float) -> None:
        """Expire the cached entry *seconds* from now."""
        self._expires_at = self._clock() + seconds

    def invalidate(self) -> None:
        self._periods = None
        self._expires_at = 0.0

    @property
    def is_fresh(self) -> bool:
        return self.get() is not None


async def get_staking_periods(client: StakingClient, cache: RateCache) -> list[StakingPeriod]:
    """
    Current staking periods: cached if fresh, otherwise fetched.

    A failed fetch returns :data:`DEFAULT_STAKING_PERIODS` and leaves the
    cache untouched so the next call retries.
    """
    cached = cache.get()
    if cached is not None:
        return cached
    try:
        records = await client.fetch_interest_rates()
        periods = [period_from_rate(r) for r in records]
    except (ChainAPIError, KeyError, TypeError, ValueError) as exc:
        logger.warning("Interest rate fetch failed, using defaults: %s", exc)
        return list(DEFAULT_STAKING_PERIODS)
    cache.put(periods)
    return periods


# ===================================================================
#  Stake submission
# ===================================================================

@dataclass
class StakeResult:
    tx_hash: str
    staking_address: str
    staking: dict = field(default_factory=dict)


def _amount_number(amount: AmountLike) -> int | float:
    """The amount as a JSON number, the way the staking backend stores it."""
    value = float(amount)
    return int(value) if value.is_integer() else value


async def get_staking_wallet_address(
    client: StakingClient,
    fallback: str = DEFAULT_STAKING_WALLET_ADDRESS,
) -> str:
    """Staking wallet address from the backend, or *fallback* if it is unreachable."""
    try:
        return await client.fetch_staking_wallet_address()
    except ChainAPIError as exc:
        logger.warning("Staking wallet address lookup failed, using fallback: %s", exc)
        return fallback


async def stake(
    chain: QCCClient,
    staking_client: StakingClient,
    private_key: str,
    amount: AmountLike,
    period_days: int,
    staking_address: str | None = None,
) -> StakeResult:
    """
    Send *amount* to the staking wallet and register the stake.

    Nothing is registered unless the broadcast succeeds and yields a
    transaction hash; a hash-less response raises :class:`BroadcastError`.
    """
    wallet_address = derive_address(public_key(private_key))
    to_base_units(amount)  # raises InvalidAmountError
    number = _amount_number(amount)
    if staking_address is None:
        staking_address = await get_staking_wallet_address(staking_client)

    result = await chain.send(private_key, staking_address, amount)
    if not result.tx_hash or result.tx_hash == "unknown":
        raise BroadcastError("Broadcast returned no transaction hash; stake not registered",
                             result.output)

    record = await staking_client.create_staking(
        wallet_address, number, int(period_days), result.tx_hash,
    )
    return StakeResult(result.tx_hash, staking_address, record)
