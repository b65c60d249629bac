"""
Response validation.

Scoreboard results are restricted to scores and coarse game state. Team
names, fouls and timeouts are never returned, whatever the remote model
emits.
"""

import math
from dataclasses import replace
from typing import Optional

from .analysis import AnalysisResult, TeamScore


def _strip_team(team: Optional[TeamScore]) -> Optional[TeamScore]:
    if team is None:
        return None
    return replace(team, name=None, fouls=None, timeouts=None)


def _clamp_confidence(confidence: Optional[float]) -> Optional[float]:
    if confidence is None or not math.isfinite(confidence):
        return None
    return min(1.0, max(0.0, confidence))


class ResponseValidator:
    """Enforces the restricted output schema on decoded responses."""

    def validate(self, decoded: AnalysisResult) -> AnalysisResult:
        """Return a copy of ``decoded`` that satisfies the output schema.

        Never raises. Confidence is clamped into [0, 1]; non-finite values
        are dropped.
        """
        return replace(
            decoded,
            home_team=_strip_team(decoded.home_team),
            away_team=_strip_team(decoded.away_team),
            confidence=_clamp_confidence(decoded.confidence)
        )
