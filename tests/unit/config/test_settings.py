# tests/unit/config/test_settings.py - v2
"""Tests for config/settings.py - typed Settings and validation rules."""

from __future__ import annotations

import pytest

from suitegate.config.settings import (
    ConfigurationError,
    Settings,
    ThresholdMisconfiguration,
    load_settings,
)


class TestSettingsDefaults:
    def test_default_thresholds(self):
        s = Settings(_env_file=None)
        assert s.ac_match_threshold == 0.8
        assert s.coverage_min_ratio == 0.5
        assert s.generation_score_threshold == 0.7

    def test_default_weights(self):
        s = Settings(_env_file=None)
        assert s.ranking_weights == {
            "similarity": 0.3,
            "coverage": 0.3,
            "defect_density": 0.2,
            "module_criticality": 0.1,
            "recurrence": 0.1,
        }

    def test_default_timeouts(self):
        s = Settings(_env_file=None)
        assert s.approval_timeout_s == 24 * 3600
        assert s.agent_call_timeout_s == 300
        assert s.agent_max_retries == 3

    def test_default_store(self):
        s = Settings(_env_file=None)
        assert s.store_backend == "sqlite"
        assert s.run_list_max == 100


class TestSettingsValidation:
    def test_min_ratio_override_rejected(self):
        with pytest.raises(ThresholdMisconfiguration, match="COVERAGE_MIN_RATIO"):
            Settings(_env_file=None, coverage_min_ratio=0.4)

    @pytest.mark.parametrize("field", ["ac_match_threshold", "generation_score_threshold"])
    @pytest.mark.parametrize("value", [-0.1, 1.01])
    def test_threshold_range(self, field, value):
        with pytest.raises(ThresholdMisconfiguration, match=field.upper()):
            Settings(_env_file=None, **{field: value})

    def test_negative_weight(self):
        with pytest.raises(ThresholdMisconfiguration, match="RANKING_W_RECURRENCE"):
            Settings(_env_file=None, ranking_w_recurrence=-0.5)

    def test_all_zero_weights(self):
        with pytest.raises(ThresholdMisconfiguration, match="at least one"):
            Settings(
                _env_file=None,
                ranking_w_similarity=0,
                ranking_w_coverage=0,
                ranking_w_defect_density=0,
                ranking_w_module_criticality=0,
                ranking_w_recurrence=0,
            )

    def test_non_positive_timeout(self):
        with pytest.raises(ThresholdMisconfiguration, match="APPROVAL_TIMEOUT_HOURS"):
            Settings(_env_file=None, approval_timeout_hours=0)

    @pytest.mark.parametrize(
        "field",
        [
            "ranking_w_recurrence",
            "ranking_w_similarity",
            "ac_match_threshold",
            "generation_score_threshold",
            "approval_timeout_hours",
            "agent_call_timeout_s",
            "agent_backoff_base_s",
        ],
    )
    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_rejected(self, field, value):
        with pytest.raises(ThresholdMisconfiguration, match=f"{field.upper()} must be a finite"):
            Settings(_env_file=None, **{field: value})

    def test_timeout_upper_bound(self):
        with pytest.raises(ThresholdMisconfiguration, match="APPROVAL_TIMEOUT_HOURS"):
            Settings(_env_file=None, approval_timeout_hours=1e9)
        assert Settings(_env_file=None, approval_timeout_hours=24 * 365).approval_timeout_hours == 8760

    def test_errors_are_collected(self):
        with pytest.raises(ThresholdMisconfiguration) as exc_info:
            Settings(_env_file=None, ac_match_threshold=2, agent_max_retries=-1)
        assert "AC_MATCH_THRESHOLD" in str(exc_info.value)
        assert "AGENT_MAX_RETRIES" in str(exc_info.value)

    def test_threshold_error_is_configuration_error(self):
        assert issubclass(ThresholdMisconfiguration, ConfigurationError)


class TestPhaseAgents:
    def test_parse_map(self):
        s = Settings(
            _env_file=None,
            phase_agents="ingestion=pkg.agents.Parser, retrieval = pkg.agents.Search",
        )
        assert s.phase_agents_map == {
            "ingestion": "pkg.agents.Parser",
            "retrieval": "pkg.agents.Search",
        }

    def test_malformed_entry(self):
        with pytest.raises(ConfigurationError, match="phase=module.Class"):
            Settings(_env_file=None, phase_agents="ingestion")


class TestEnvLoading:
    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("AC_MATCH_THRESHOLD", "0.75")
        monkeypatch.setenv("RANKING_W_SIMILARITY", "0.5")
        s = Settings(_env_file=None)
        assert s.ac_match_threshold == 0.75
        assert s.ranking_weights["similarity"] == 0.5

    def test_env_min_ratio_rejected(self, monkeypatch):
        monkeypatch.setenv("COVERAGE_MIN_RATIO", "0.3")
        with pytest.raises(ThresholdMisconfiguration):
            Settings(_env_file=None)

    def test_load_settings_overrides(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        s = load_settings(generation_score_threshold=0.9)
        assert s.generation_score_threshold == 0.9
