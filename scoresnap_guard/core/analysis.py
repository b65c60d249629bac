"""
Scoreboard analysis results.

Every field of the remote response is optional at every level. Decoding
never fails on a missing or wrongly typed field; such fields are simply
absent from the result.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        if isinstance(value, (int, float, str)):
            return float(value)
    except (ValueError, OverflowError):
        return None
    return None


def _as_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _as_dict(value: Any) -> Optional[Dict[str, Any]]:
    return value if isinstance(value, dict) else None


@dataclass(frozen=True)
class TeamScore:
    """Per-team fields.

    ``name``, ``fouls`` and ``timeouts`` can be decoded from a response but
    are always cleared by the ResponseValidator before results leave the
    client.
    """
    score: Optional[int] = None
    name: Optional[str] = None
    fouls: Optional[int] = None
    timeouts: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Any) -> Optional["TeamScore"]:
        data = _as_dict(data)
        if data is None:
            return None
        return cls(
            score=_as_int(data.get("score")),
            name=_as_str(data.get("name")),
            fouls=_as_int(data.get("fouls")),
            timeouts=_as_int(data.get("timeouts"))
        )


@dataclass(frozen=True)
class GameInfo:
    """Coarse game state read from the scoreboard."""
    quarter: Optional[int] = None
    time_remaining: Optional[str] = None
    possession: Optional[str] = None
    shot_clock: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Any) -> Optional["GameInfo"]:
        data = _as_dict(data)
        if data is None:
            return None
        return cls(
            quarter=_as_int(data.get("quarter")),
            time_remaining=_as_str(data.get("timeRemaining")),
            possession=_as_str(data.get("possession")),
            shot_clock=_as_int(data.get("shotClock"))
        )


@dataclass(frozen=True)
class AnalysisResult:
    """Structured scoreboard reading."""
    home_team: Optional[TeamScore] = None
    away_team: Optional[TeamScore] = None
    game_info: Optional[GameInfo] = None
    confidence: Optional[float] = None
    notes: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        """True if anything was read off the scoreboard."""
        return (
            self.home_team is not None
            or self.away_team is not None
            or self.game_info is not None
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisResult":
        """Decode the wire schema permissively.

        Args:
            data: Decoded JSON object from the remote model

        Returns:
            AnalysisResult with every unreadable field left as None
        """
        return cls(
            home_team=TeamScore.from_dict(data.get("homeTeam")),
            away_team=TeamScore.from_dict(data.get("awayTeam")),
            game_info=GameInfo.from_dict(data.get("gameInfo")),
            confidence=_as_float(data.get("confidence")),
            notes=_as_str(data.get("notes"))
        )
