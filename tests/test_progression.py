"""
Tests de la progresión por sección: umbrales, racha y mantenimiento del verde
"""
from datetime import timedelta

import pytest

from conftest import PRE, T0, local
from constants import Color
from errors import InvalidInput
from progression import (
    climbing_color, default_section_progress, next_progression_target, overall_color,
    record_log, recent_valid_logs, recompute_color,
)
from schemas import CodeLog, SectionProgress


def log(technique_id, at, valid=True):
    return CodeLog(technique_id=technique_id, timestamp=at, is_valid=valid)


class TestClimbingThresholds:

    @pytest.mark.parametrize("logs,unique,expected", [
        (0, 0, Color.red),
        (1, 1, Color.red),
        (2, 1, Color.orange),
        (6, 1, Color.orange),
        (6, 2, Color.yellow),
        (12, 2, Color.yellow),
        (12, 3, Color.green),
    ])
    def test_guardrails(self, logs, unique, expected):
        assert climbing_color(logs, unique) == expected


class TestStreak:

    def test_consecutive_days_increment(self):
        progress = default_section_progress(PRE)
        for day in range(3):
            progress = record_log(progress, log("a", local(2024, 1, 8 + day, 20, 0)))
        assert progress.streak_days == 3

    def test_same_day_does_not_change(self):
        progress = default_section_progress(PRE)
        progress = record_log(progress, log("a", local(2024, 1, 8, 9, 0)))
        progress = record_log(progress, log("b", local(2024, 1, 8, 22, 0)))
        assert progress.streak_days == 1

    def test_gap_resets_to_one(self):
        progress = default_section_progress(PRE)
        progress = record_log(progress, log("a", local(2024, 1, 8, 9, 0)))
        progress = record_log(progress, log("a", local(2024, 1, 9, 9, 0)))
        progress = record_log(progress, log("a", local(2024, 1, 12, 9, 0)))
        assert progress.streak_days == 1

    def test_backfill_does_not_touch_streak(self):
        progress = default_section_progress(PRE)
        progress = record_log(progress, log("a", local(2024, 1, 8, 9, 0)))
        progress = record_log(progress, log("a", local(2024, 1, 9, 9, 0)))
        progress = record_log(progress, log("a", local(2024, 1, 5, 9, 0)), now=local(2024, 1, 9, 10, 0))
        assert progress.streak_days == 2
        assert progress.total_logs == 3
        assert progress.last_log_at == local(2024, 1, 9, 9, 0)

    def test_local_midnight_decides_the_day(self):
        """23:30 y 00:30 del día siguiente son dos días distintos"""
        progress = default_section_progress(PRE)
        progress = record_log(progress, log("a", local(2024, 1, 8, 23, 30)))
        progress = record_log(progress, log("a", local(2024, 1, 9, 0, 30)))
        assert progress.streak_days == 2


class TestRecordLog:

    def test_invalid_logs_are_kept_but_not_counted(self):
        progress = record_log(default_section_progress(PRE), log("a", T0, valid=False))
        assert progress.total_logs == 0
        assert progress.unique_technique_ids == set()
        assert len(progress.log_history) == 1

    def test_does_not_mutate_input(self):
        progress = default_section_progress(PRE)
        record_log(progress, log("a", T0))
        assert progress.total_logs == 0

    def test_naive_timestamp_is_rejected(self):
        with pytest.raises(InvalidInput):
            record_log(default_section_progress(PRE), log("a", T0.replace(tzinfo=None)))

    def test_history_keeps_only_rolling_window(self):
        progress = record_log(default_section_progress(PRE), log("a", T0))
        progress = record_log(progress, log("b", T0 + timedelta(days=10)))
        progress = record_log(progress, log("c", T0 + timedelta(days=30)))

        assert [entry.technique_id for entry in progress.log_history] == ["b", "c"]
        assert progress.total_logs == 3
        assert recent_valid_logs(progress, T0 + timedelta(days=30)) == 2


class TestGreenMaintenance:
    """Ya en verde: log reciente + racha ≥7 + ≥16 logs en 28 días"""

    def green_progress(self) -> SectionProgress:
        progress = default_section_progress(PRE)
        ids = ["a", "b", "c"]
        n = 0
        for day in range(8):
            for hour in (9, 20):
                progress = record_log(progress, log(ids[n % 3], local(2024, 1, 8 + day, hour, 0)))
                n += 1
        return progress

    def test_reaches_and_keeps_green(self):
        progress = self.green_progress()
        assert progress.total_logs == 16
        assert progress.streak_days == 8
        assert progress.color == Color.green
        assert progress.green_first_achieved_at is not None

    def test_drops_to_yellow_without_recent_log(self):
        progress = self.green_progress()
        first_green = progress.green_first_achieved_at
        later = recompute_color(progress, local(2024, 1, 19, 21, 0))
        assert later.color == Color.yellow
        assert later.green_first_achieved_at == first_green

    def test_first_green_needs_only_guardrail(self):
        progress = default_section_progress(PRE)
        ids = ["a", "b", "c"]
        for i in range(12):
            progress = record_log(progress, log(ids[i % 3], T0 + timedelta(minutes=i)))
        assert progress.color == Color.green
        assert progress.green_first_achieved_at == T0 + timedelta(minutes=11)


class TestTargets:

    def test_next_target_counts_missing_logs_and_codes(self):
        progress = SectionProgress(section=PRE, color=Color.orange, total_logs=3,
                                   unique_technique_ids={"a"})
        target = next_progression_target(progress)
        assert target == {"next_color": Color.yellow, "logs_needed": 3, "codes_needed": 1}

    def test_no_target_when_green(self):
        progress = SectionProgress(section=PRE, color=Color.green)
        assert next_progression_target(progress) is None

    def test_overall_green_only_when_all_green(self):
        greens = [SectionProgress(section=PRE, color=Color.green) for _ in range(5)]
        assert overall_color(greens) == Color.green
        greens[0] = SectionProgress(section=PRE, color=Color.yellow)
        assert overall_color(greens) != Color.green
