"""
Tests for escalation policy loading and hot reload.
"""

from datetime import date
from pathlib import Path

import pytest

from src.config import Priority
from src.core import ConfigurationException
from src.issues.infrastructure import EscalationConfigManager

VALID_YAML = """
working_hours:
  start_hour: 10
  end_hour: 18
  working_weekdays: [0, 1, 2, 3, 4]
  holidays: ["2025-03-14"]
sla_thresholds_hours:
  critical: 2
critical_after_hours: 12
escalation_targets:
  critical: [ceo]
reopen_window_hours: 24
"""


@pytest.fixture
def manager() -> EscalationConfigManager:
    return EscalationConfigManager("UTC")


class TestLoad:

    def test_load_from_file(self, manager, tmp_path):
        path = tmp_path / "escalation_config.yaml"
        path.write_text(VALID_YAML)

        policy = manager.load(path)

        assert policy.calculator.calendar.start_hour == 10
        assert policy.calculator.calendar.working_weekdays == frozenset({0, 1, 2, 3, 4})
        assert date(2025, 3, 14) in policy.calculator.calendar.holidays
        assert policy.sla.threshold(Priority.CRITICAL) == 2
        assert policy.sla.threshold(Priority.LOW) == 168
        assert policy.resolver.critical_after_hours == 12
        assert policy.reopen_window_hours == 24
        assert manager.config.get_escalation_targets(Priority.CRITICAL) == ["ceo"]

    def test_missing_file_uses_defaults(self, manager, tmp_path):
        policy = manager.load(tmp_path / "absent.yaml")

        assert policy.sla.threshold(Priority.HIGH) == 24
        assert policy.reopen_window_hours == 48

    def test_invalid_file_raises(self, manager, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("working_hours:\n  start_hour: 18\n  end_hour: 9\n")

        with pytest.raises(ConfigurationException):
            manager.load(path)

    def test_malformed_yaml_raises(self, manager, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("sla_thresholds_hours: [unclosed\n")

        with pytest.raises(ConfigurationException):
            manager.load(path)

    def test_policy_before_load(self, manager):
        with pytest.raises(RuntimeError):
            manager.get_policy()

    def test_shipped_config_is_valid(self):
        manager = EscalationConfigManager("Asia/Kolkata")
        policy = manager.load(Path(__file__).resolve().parent.parent / "escalation_config.yaml")
        assert policy.sla.threshold(Priority.CRITICAL) == 4


class TestReload:

    def test_reload_swaps_policy(self, manager, tmp_path):
        path = tmp_path / "escalation_config.yaml"
        path.write_text(VALID_YAML)
        manager.load(path)

        path.write_text(VALID_YAML.replace("critical: 2", "critical: 3"))

        assert manager.reload() is True
        assert manager.get_policy().sla.threshold(Priority.CRITICAL) == 3

    def test_failed_reload_keeps_previous(self, manager, tmp_path):
        path = tmp_path / "escalation_config.yaml"
        path.write_text(VALID_YAML)
        manager.load(path)
        before = manager.get_policy()

        path.write_text("priority_ladder:\n  - {min_hours: 0, priority: high}\n  - {min_hours: 4, priority: low}\n")

        assert manager.reload() is False
        assert manager.get_policy() is before

    def test_reload_before_load(self, manager):
        assert manager.reload() is False

    def test_watching_missing_file_is_skipped(self, manager, tmp_path):
        manager.load(tmp_path / "absent.yaml")
        manager.start_watching()
        manager.stop_watching()
