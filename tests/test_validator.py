"""
Tests for permissive response decoding and output schema enforcement.
"""

import math

import pytest

from scoresnap_guard.core.analysis import AnalysisResult, GameInfo, TeamScore
from scoresnap_guard.core.validator import ResponseValidator


class TestAnalysisDecoding:
    """Test decoding of the wire schema."""

    def test_full_response(self):
        result = AnalysisResult.from_dict({
            "homeTeam": {"score": 54},
            "awayTeam": {"score": 48},
            "gameInfo": {
                "quarter": 3,
                "timeRemaining": "04:12",
                "possession": "home",
                "shotClock": 14
            },
            "confidence": 0.92,
            "notes": "Slight glare on the left digits"
        })

        assert result.home_team == TeamScore(score=54)
        assert result.away_team == TeamScore(score=48)
        assert result.game_info == GameInfo(
            quarter=3, time_remaining="04:12", possession="home", shot_clock=14
        )
        assert result.confidence == 0.92
        assert result.notes == "Slight glare on the left digits"
        assert result.is_valid is True

    def test_empty_object_decodes(self):
        result = AnalysisResult.from_dict({})
        assert result == AnalysisResult()
        assert result.is_valid is False

    def test_nulls_and_wrong_types_become_absent(self):
        result = AnalysisResult.from_dict({
            "homeTeam": "Lakers",
            "awayTeam": {"score": None},
            "gameInfo": {"quarter": "OT", "timeRemaining": 12, "shotClock": True},
            "confidence": "very",
            "notes": ["not", "text"]
        })

        assert result.home_team is None
        assert result.away_team == TeamScore()
        assert result.game_info == GameInfo()
        assert result.confidence is None
        assert result.notes is None

    def test_numeric_strings_and_integral_floats(self):
        result = AnalysisResult.from_dict({
            "homeTeam": {"score": "61"},
            "awayTeam": {"score": 59.0},
            "confidence": "0.5"
        })
        assert result.home_team.score == 61
        assert result.away_team.score == 59
        assert result.confidence == 0.5

    def test_fractional_score_is_absent(self):
        result = AnalysisResult.from_dict({"homeTeam": {"score": 12.5}})
        assert result.home_team.score is None

    @pytest.mark.parametrize("raw", [
        10 ** 400,
        -(10 ** 400),
        "1" + "0" * 400,
        "1e999",
        float("inf"),
        float("nan"),
    ])
    def test_out_of_range_confidence_never_raises(self, raw):
        result = AnalysisResult.from_dict({"confidence": raw})
        assert ResponseValidator().validate(result).confidence is None

    @pytest.mark.parametrize("raw, expected", [
        (10 ** 400, 10 ** 400),
        (1e300, int(1e300)),
        (float("inf"), None),
        (float("nan"), None),
        ({"value": 3}, None),
        ([3], None),
    ])
    def test_score_edge_values(self, raw, expected):
        result = AnalysisResult.from_dict({"homeTeam": {"score": raw}})
        assert result.home_team.score == expected

    @pytest.mark.parametrize("raw", [
        {"homeTeam": [[[[{"score": 1}]]]]},
        {"gameInfo": {"quarter": {"quarter": {"quarter": 2}}}},
        {"awayTeam": {"score": {"score": {"score": 7}}}},
    ])
    def test_nested_wrong_shapes_become_absent(self, raw):
        result = AnalysisResult.from_dict(raw)
        assert result.home_team is None or result.home_team.score is None
        assert result.away_team is None or result.away_team.score is None
        assert result.game_info is None or result.game_info.quarter is None

    def test_team_name_decodes_internally(self):
        result = AnalysisResult.from_dict({"homeTeam": {"name": "Tigers", "score": 30}})
        assert result.home_team.name == "Tigers"


class TestResponseValidator:
    """Test the restricted output schema."""

    def setup_method(self):
        self.validator = ResponseValidator()

    def test_team_name_fouls_and_timeouts_are_removed(self):
        decoded = AnalysisResult.from_dict({
            "homeTeam": {"name": "Tigers", "score": 30, "fouls": 4, "timeouts": 2},
            "awayTeam": {"name": "Hawks", "score": 28, "fouls": 6, "timeouts": 1},
        })

        result = self.validator.validate(decoded)

        assert result.home_team.name is None
        assert result.home_team.fouls is None
        assert result.home_team.timeouts is None
        assert result.home_team.score == 30
        assert result.away_team.name is None
        assert result.away_team.score == 28

    @pytest.mark.parametrize("raw, expected", [
        (1.7, 1.0),
        (-0.3, 0.0),
        (0.42, 0.42),
        (0, 0.0),
        (1, 1.0),
    ])
    def test_confidence_is_clamped(self, raw, expected):
        result = self.validator.validate(AnalysisResult(confidence=raw))
        assert result.confidence == expected

    def test_absent_confidence_stays_absent(self):
        assert self.validator.validate(AnalysisResult()).confidence is None

    def test_non_finite_confidence_is_dropped(self):
        assert self.validator.validate(AnalysisResult(confidence=math.nan)).confidence is None
        assert self.validator.validate(AnalysisResult(confidence=math.inf)).confidence is None

    def test_other_fields_untouched(self):
        decoded = AnalysisResult(
            game_info=GameInfo(quarter=2, time_remaining="00:31"),
            notes="Buzzer"
        )
        result = self.validator.validate(decoded)
        assert result.game_info == decoded.game_info
        assert result.notes == "Buzzer"
        assert result.home_team is None
