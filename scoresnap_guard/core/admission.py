"""
Admission control for remote scoreboard analysis.

Decides whether a new analysis call may proceed given the calls already
accepted in the trailing minute, hour and day.

Admission rules:
1. A call is allowed only if every window's count is below its threshold
2. Checking never mutates the ledger
3. Recording re-checks and appends atomically under a single lock

Persistence is best-effort: it runs after the lock is released, and a
failure to save is logged rather than raised.
"""

import threading
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Iterable, Optional

from .ledger import UsageLedger
from .policy import DEFAULT_POLICY, DEVELOPER_POLICY, RateLimitPolicy
from .security import get_logger
from scoresnap_guard.storage.models import UsageRecord
from scoresnap_guard.storage.repository import UsageStore

logger = get_logger(__name__)

_LEDGER = "ledger"
_POLICY = "policy"


class UsageIntensity(Enum):
    """Usage bands in increasing order of call density."""
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    VERY_HIGH = 4

    @property
    def label(self) -> str:
        return self.name.replace("_", " ").title()


# Upper bounds (exclusive) on the fraction of the daily threshold used
_INTENSITY_BANDS = (
    (0.25, UsageIntensity.LOW),
    (0.5, UsageIntensity.MEDIUM),
    (0.8, UsageIntensity.HIGH),
)


def classify_intensity(calls_last_day: int, per_day: int) -> UsageIntensity:
    """Classify recent call density relative to the daily threshold."""
    if calls_last_day <= 0:
        return UsageIntensity.LOW
    ratio = calls_last_day / max(1, per_day)
    for upper, intensity in _INTENSITY_BANDS:
        if ratio < upper:
            return intensity
    return UsageIntensity.VERY_HIGH


def _mode(values: Iterable[int]) -> Optional[int]:
    """Most frequent value; the smallest value wins ties."""
    counts = Counter(values)
    if not counts:
        return None
    return min(counts, key=lambda value: (-counts[value], value))


@dataclass(frozen=True)
class UsageStatistics:
    """Snapshot of ledger usage."""
    total_calls: int
    calls_last_minute: int
    calls_last_hour: int
    calls_last_24_hours: int
    calls_last_7_days: int
    average_calls_per_day: float
    intensity: UsageIntensity
    peak_hour: Optional[int] = None
    most_active_weekday: Optional[int] = None


@dataclass(frozen=True)
class DebugInfo:
    """Limiter state for developer diagnostics."""
    statistics: UsageStatistics
    policy: RateLimitPolicy
    developer_mode: bool
    is_limit_exceeded: bool

    @property
    def description(self) -> str:
        stats = self.statistics
        return "\n".join([
            "API Limiter Debug Info:",
            f"- Current Usage: {stats.total_calls} total calls",
            f"- Last Minute: {stats.calls_last_minute}/{self.policy.per_minute}",
            f"- Last Hour: {stats.calls_last_hour}/{self.policy.per_hour}",
            f"- Last Day: {stats.calls_last_24_hours}/{self.policy.per_day}",
            f"- Developer Mode: {self.developer_mode}",
            f"- Limit Exceeded: {self.is_limit_exceeded}",
            f"- Usage Intensity: {stats.intensity.label}",
        ])


def _within_limits(ledger: UsageLedger, policy: RateLimitPolicy, now: datetime) -> bool:
    for window_seconds, threshold in policy.windows():
        if ledger.count_since(now - timedelta(seconds=window_seconds)) >= threshold:
            return False
    return True


class AdmissionController:
    """Owns the usage ledger and the active rate limit policy.

    Instances are independent: each one reads its initial state from the
    store it is given and writes back to that store only.
    """

    def __init__(
        self,
        store: UsageStore,
        now: Callable[[], datetime] = datetime.now
    ):
        """Initialize the controller from persisted state.

        Corrupted or unreadable persisted state is discarded in favour of an
        empty ledger and the default policy.

        Args:
            store: Persistence collaborator for ledger and policy blobs
            now: Clock returning naive local datetimes
        """
        self._store = store
        self._now = now
        self._lock = threading.Lock()
        self._persist_lock = threading.Lock()
        self._revisions: Dict[str, int] = {_LEDGER: 0, _POLICY: 0}
        self._persisted: Dict[str, int] = {_LEDGER: 0, _POLICY: 0}
        self._developer_mode = False

        self._ledger = self._load_ledger()
        self._policy = self._load_policy()
        self._ledger.purge(self._now())

    def __enter__(self) -> "AdmissionController":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # Admission

    def can_proceed(self) -> bool:
        """Return True if a call made now would stay within every window."""
        with self._lock:
            snapshot = self._ledger.copy()
        return _within_limits(snapshot, self.active_policy, self._now())

    def record_call(self) -> bool:
        """Record an accepted call if the limits allow it.

        Returns:
            True if the call was recorded, False if a limit was reached
        """
        with self._lock:
            now = self._now()
            if not _within_limits(self._ledger, self.active_policy, now):
                logger.info("Rate limit reached, call not recorded")
                return False
            self._ledger.append(UsageRecord(now))
            self._ledger.purge(now)
            revision, blob = self._stage(_LEDGER, self._ledger.to_blob())

        self._persist(_LEDGER, revision, blob)
        return True

    @property
    def is_limit_exceeded(self) -> bool:
        return not self.can_proceed()

    # Policy

    @property
    def policy(self) -> RateLimitPolicy:
        """The normal policy, regardless of developer mode."""
        return self._policy

    @property
    def active_policy(self) -> RateLimitPolicy:
        return DEVELOPER_POLICY if self._developer_mode else self._policy

    @property
    def developer_mode(self) -> bool:
        return self._developer_mode

    def update_policy(self, candidate: RateLimitPolicy) -> RateLimitPolicy:
        """Replace the normal policy.

        Thresholds below 1 are clamped up to 1.

        Returns:
            The policy that was stored
        """
        policy = RateLimitPolicy(
            per_minute=max(1, candidate.per_minute),
            per_hour=max(1, candidate.per_hour),
            per_day=max(1, candidate.per_day)
        )
        with self._lock:
            self._policy = policy
            revision, blob = self._stage(_POLICY, policy.to_blob())
        logger.info(
            "Rate limit policy updated: %d/min, %d/hour, %d/day",
            policy.per_minute, policy.per_hour, policy.per_day
        )
        self._persist(_POLICY, revision, blob)
        return policy

    def reset_policy(self) -> RateLimitPolicy:
        """Restore the default policy (3/min, 20/hour, 40/day)."""
        return self.update_policy(DEFAULT_POLICY)

    def set_developer_mode(self, enabled: bool) -> None:
        """Swap in high developer limits without touching the normal policy."""
        with self._lock:
            self._developer_mode = bool(enabled)
        logger.info("Developer mode %s", "enabled" if enabled else "disabled")

    # Ledger maintenance

    def force_reset(self) -> None:
        """Empty the ledger, as if every window had rolled over."""
        with self._lock:
            self._ledger.clear()
            revision, blob = self._stage(_LEDGER, self._ledger.to_blob())
        logger.info("Usage ledger reset")
        self._persist(_LEDGER, revision, blob)

    def simulate_calls(self, count: int) -> int:
        """Record up to ``count`` calls and return how many were accepted."""
        return sum(1 for _ in range(count) if self.record_call())

    # Statistics

    def get_usage_statistics(self) -> UsageStatistics:
        """Summarize the ledger relative to the active policy."""
        with self._lock:
            snapshot = self._ledger.copy()
        policy = self.active_policy
        now = self._now()

        calls_last_day = snapshot.count_since(now - timedelta(days=1))
        calls_last_week = snapshot.count_since(now - timedelta(days=7))

        return UsageStatistics(
            total_calls=len(snapshot),
            calls_last_minute=snapshot.count_since(now - timedelta(minutes=1)),
            calls_last_hour=snapshot.count_since(now - timedelta(hours=1)),
            calls_last_24_hours=calls_last_day,
            calls_last_7_days=calls_last_week,
            average_calls_per_day=calls_last_week / 7,
            intensity=classify_intensity(calls_last_day, policy.per_day),
            peak_hour=_mode(record.timestamp.hour for record in snapshot),
            most_active_weekday=_mode(record.timestamp.weekday() for record in snapshot)
        )

    def debug_info(self) -> DebugInfo:
        return DebugInfo(
            statistics=self.get_usage_statistics(),
            policy=self.active_policy,
            developer_mode=self._developer_mode,
            is_limit_exceeded=self.is_limit_exceeded
        )

    def close(self) -> None:
        """Write the current ledger and policy to the store."""
        with self._lock:
            ledger = self._stage(_LEDGER, self._ledger.to_blob())
            policy = self._stage(_POLICY, self._policy.to_blob())
        self._persist(_LEDGER, *ledger)
        self._persist(_POLICY, *policy)

    # Persistence

    def _load_ledger(self) -> UsageLedger:
        try:
            blob = self._store.load_ledger()
        except Exception as e:
            logger.warning("Failed to load usage ledger, starting empty: %s", e)
            return UsageLedger()
        if blob is None:
            return UsageLedger()
        try:
            return UsageLedger.from_blob(blob)
        except (ValueError, TypeError) as e:
            logger.warning("Discarding corrupted usage ledger: %s", e)
            return UsageLedger()

    def _load_policy(self) -> RateLimitPolicy:
        try:
            blob = self._store.load_policy()
        except Exception as e:
            logger.warning("Failed to load rate limit policy, using defaults: %s", e)
            return DEFAULT_POLICY
        if blob is None:
            return DEFAULT_POLICY
        try:
            return RateLimitPolicy.from_blob(blob)
        except (ValueError, TypeError) as e:
            logger.warning("Discarding corrupted rate limit policy: %s", e)
            return DEFAULT_POLICY

    def _stage(self, kind: str, blob: bytes):
        """Assign a revision to a snapshot. Caller holds ``_lock``."""
        self._revisions[kind] += 1
        return self._revisions[kind], blob

    def _persist(self, kind: str, revision: int, blob: bytes) -> None:
        with self._persist_lock:
            # A newer snapshot already reached the store
            if revision <= self._persisted[kind]:
                return
            save = self._store.save_ledger if kind == _LEDGER else self._store.save_policy
            try:
                save(blob)
            except Exception as e:
                logger.warning("Failed to persist %s: %s", kind, e)
                return
            self._persisted[kind] = revision
