"""
Rate limit policy.

Three thresholds bound the number of accepted analysis calls in trailing
windows of one minute, one hour and one day.
"""

import json
from dataclasses import asdict, dataclass

MINUTE_WINDOW_SECONDS = 60
HOUR_WINDOW_SECONDS = 3600
DAY_WINDOW_SECONDS = 86400


@dataclass(frozen=True)
class RateLimitPolicy:
    """Per-window call limits.

    Every threshold is clamped up to 1, so a policy can never block all
    calls outright.
    """
    per_minute: int = 3
    per_hour: int = 20
    per_day: int = 40

    def __post_init__(self):
        """Clamp thresholds to at least one call per window."""
        for name in ("per_minute", "per_hour", "per_day"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name} must be an integer")
            object.__setattr__(self, name, max(1, value))

    def windows(self):
        """(window length in seconds, threshold) pairs, shortest window first."""
        return (
            (MINUTE_WINDOW_SECONDS, self.per_minute),
            (HOUR_WINDOW_SECONDS, self.per_hour),
            (DAY_WINDOW_SECONDS, self.per_day),
        )

    def to_blob(self) -> bytes:
        return json.dumps(asdict(self)).encode("utf-8")

    @classmethod
    def from_blob(cls, blob: bytes) -> "RateLimitPolicy":
        """Decode a persisted policy.

        Raises:
            ValueError: If the blob is not a JSON object with integer thresholds
        """
        if isinstance(blob, (bytes, bytearray)):
            blob = blob.decode("utf-8")
        data = json.loads(blob)
        if not isinstance(data, dict):
            raise ValueError("Persisted policy must be a JSON object")
        try:
            return cls(
                per_minute=data["per_minute"],
                per_hour=data["per_hour"],
                per_day=data["per_day"]
            )
        except KeyError as e:
            raise ValueError(f"Persisted policy missing {e}")


DEFAULT_POLICY = RateLimitPolicy(per_minute=3, per_hour=20, per_day=40)

# Used while developer mode is on
DEVELOPER_POLICY = RateLimitPolicy(per_minute=100, per_hour=1000, per_day=10000)
