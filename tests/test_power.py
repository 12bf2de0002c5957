"""
Tests del modelo de poder: curva, bonus de código nuevo, luna de miel y decay
"""
from datetime import timedelta

import pytest

from conftest import HIGH_RNG, IN, LOW_RNG, PRE, T0, local, technique
from constants import USAGE_LOG_MAX_ENTRIES, GainKind
from errors import InvalidInput
from power import (
    apply_decay, apply_decay_to_profile, base_gain, decay_warning, is_honeymoon_active,
    record_use, section_average_power,
)
from schemas import PowerProfile


def new_profile(created_at=T0) -> PowerProfile:
    return PowerProfile(account_created_at=created_at)


def use_many(profile, technique_id, times, start=T0, step=timedelta(hours=1), rng=HIGH_RNG):
    gains = []
    now = start
    for _ in range(times):
        result = record_use(profile, technique_id, "Box Breathing", PRE, now, rng)
        profile = result.profile
        gains.append(result)
        now = now + step
    return profile, gains


class TestGrowthCurve:
    """La ganancia base depende del número de log del código"""

    @pytest.mark.parametrize("previous_logs,expected", [
        (0, 20), (2, 20), (3, 10), (5, 10), (6, 5), (9, 5),
    ])
    def test_fixed_steps(self, previous_logs, expected):
        assert base_gain(previous_logs) == expected

    def test_late_logs_use_injected_rng(self):
        assert base_gain(10, HIGH_RNG) == 3
        assert base_gain(10, LOW_RNG) == 2
        assert base_gain(50, LOW_RNG) == 2


class TestFreshBonus:
    """Los dos primeros logs de un código llevan +10 y +5"""

    def test_free_throw_reset_scenario(self):
        """Cuenta nueva: 30 → 55 → 80 (bonus, bonus, luna de miel)"""
        profile = new_profile()
        first = record_use(profile, "ftr", "Free Throw Reset", PRE, T0)
        second = record_use(first.profile, "ftr", "Free Throw Reset", PRE, T0 + timedelta(hours=1))
        third = record_use(second.profile, "ftr", "Free Throw Reset", PRE, T0 + timedelta(hours=2))

        assert first.profile.techniques["ftr"].power_percentage == 30
        assert second.profile.techniques["ftr"].power_percentage == 55
        assert third.profile.techniques["ftr"].power_percentage == 80
        assert [first.kind, second.kind, third.kind] == [
            GainKind.fresh_bonus, GainKind.fresh_bonus, GainKind.honeymoon,
        ]

    def test_fresh_bonus_total_never_exceeds_fifteen(self):
        profile, gains = use_many(new_profile(T0 - timedelta(days=30)), "a", 15)
        fresh = [g for g in gains if g.kind == GainKind.fresh_bonus]
        technique_power = profile.techniques["a"]

        assert len(fresh) == 2
        assert technique_power.fresh_bonus_used == 2
        # Sin luna de miel: 20+10, 20+5 y luego la curva normal
        assert [g.amount_gained for g in gains[:4]] == [30, 25, 20, 10]

    def test_fresh_bonus_takes_priority_over_honeymoon(self):
        result = record_use(new_profile(), "a", "Box Breathing", PRE, T0)
        assert result.kind == GainKind.fresh_bonus
        assert result.amount_gained == 30


class TestHoneymoon:
    """x1.25 durante 7 días, mientras la sección tenga < 10 logs"""

    def test_not_after_seven_days(self):
        profile = new_profile(T0 - timedelta(days=8))
        profile, gains = use_many(profile, "a", 3)

        assert gains[2].kind == GainKind.normal
        assert gains[2].amount_gained == 20
        assert profile.honeymoon_ended is True
        assert profile.honeymoon_ended_at == T0

    def test_not_once_section_has_ten_logs(self):
        profile = new_profile()
        profile.techniques["old"] = technique("old", PRE, power=60, logs=10)
        profile, gains = use_many(profile, "a", 3)

        assert gains[2].kind == GainKind.normal
        assert gains[2].amount_gained == 20

    def test_other_sections_do_not_count(self):
        profile = new_profile()
        profile.techniques["old"] = technique("old", IN, power=60, logs=10)
        assert is_honeymoon_active(profile, PRE, T0)
        assert not is_honeymoon_active(profile, IN, T0)

    def test_multiplier_rounds_half_up(self):
        """Log 4: 10 * 1.25 = 12.5 → 13"""
        profile, gains = use_many(new_profile(), "a", 4)
        assert gains[3].kind == GainKind.honeymoon
        assert gains[3].amount_gained == 13


class TestRecordUse:

    def test_power_is_monotonic_and_capped(self):
        profile, gains = use_many(new_profile(), "a", 40)
        powers = [g.profile.techniques["a"].power_percentage for g in gains]
        assert powers == sorted(powers)
        assert powers[-1] == 100
        assert all(p <= 100 for p in powers)
        assert profile.techniques["a"].total_logs == 40

    def test_does_not_mutate_input(self):
        profile = new_profile()
        record_use(profile, "a", "Box Breathing", PRE, T0)
        assert profile.techniques == {}
        assert profile.total_logs_all_sections == 0

    def test_resets_decay_checkpoint(self):
        profile = new_profile()
        profile.techniques["a"] = technique("a", PRE, power=40, logs=4,
                                            last_used=T0 - timedelta(days=5))
        result = record_use(profile, "a", "Code a", PRE, T0)
        assert result.profile.techniques["a"].last_decay_checkpoint == T0
        assert result.profile.techniques["a"].last_used_at == T0

    def test_usage_log_keeps_latest_entries(self):
        profile, _ = use_many(new_profile(), "a", USAGE_LOG_MAX_ENTRIES + 5)
        usage_log = profile.techniques["a"].usage_log
        assert len(usage_log) == USAGE_LOG_MAX_ENTRIES
        assert usage_log[-1].timestamp == T0 + timedelta(hours=USAGE_LOG_MAX_ENTRIES + 4)
        assert profile.techniques["a"].total_logs == USAGE_LOG_MAX_ENTRIES + 5

    def test_section_mismatch_is_rejected(self):
        profile = new_profile()
        profile.techniques["a"] = technique("a", PRE)
        with pytest.raises(InvalidInput):
            record_use(profile, "a", "Code a", IN, T0)

    def test_unknown_section_is_rejected(self):
        with pytest.raises(InvalidInput):
            record_use(new_profile(), "a", "Code a", "Half-Time", T0)

    def test_naive_timestamp_is_rejected(self):
        with pytest.raises(InvalidInput):
            record_use(new_profile(), "a", "Code a", PRE, T0.replace(tzinfo=None))

    def test_blank_name_for_new_code_is_rejected(self):
        with pytest.raises(InvalidInput):
            record_use(new_profile(), "a", "  ", PRE, T0)


class TestDecay:
    """-5 por medianoche local cruzada tras 72h sin uso"""

    def test_no_decay_before_72_hours(self):
        power = technique("a", power=80)
        assert apply_decay(power, 0, T0 + timedelta(hours=71)).power_percentage == 80

    def test_counts_midnights_after_threshold(self):
        """Umbral: 11/01 09:00. Hasta 13/01 10:00 hay 2 medianoches → -10"""
        power = technique("a", power=80)
        decayed = apply_decay(power, 0, local(2024, 1, 13, 10, 0))
        assert decayed.power_percentage == 70

    def test_is_idempotent_for_same_now(self):
        now = local(2024, 1, 13, 10, 0)
        once = apply_decay(technique("a", power=80), 0, now)
        twice = apply_decay(once, 0, now)
        assert twice.power_percentage == once.power_percentage == 70

    def test_incremental_sweeps_match_single_sweep(self):
        power = technique("a", power=80)
        step = apply_decay(power, 0, local(2024, 1, 12, 10, 0))
        assert step.power_percentage == 75
        step = apply_decay(step, 0, local(2024, 1, 13, 10, 0))
        assert step.power_percentage == 70

    def test_respects_section_floor(self):
        power = technique("a", power=80)
        decayed = apply_decay(power, 75, local(2024, 1, 20, 10, 0))
        assert decayed.power_percentage == 75

    def test_never_raises_power_below_floor(self):
        power = technique("a", power=20)
        decayed = apply_decay(power, 50, local(2024, 1, 20, 10, 0))
        assert decayed.power_percentage == 20

    def test_never_goes_below_zero(self):
        power = technique("a", power=10)
        assert apply_decay(power, None, local(2024, 3, 1, 10, 0)).power_percentage == 0

    def test_profile_skips_given_ids(self):
        profile = new_profile()
        profile.techniques["a"] = technique("a", power=80)
        profile.techniques["b"] = technique("b", power=80)
        decayed = apply_decay_to_profile(profile, local(2024, 1, 13, 10, 0), skip={"b"})
        assert decayed.techniques["a"].power_percentage == 70
        assert decayed.techniques["b"].power_percentage == 80


class TestDecayWarning:

    def test_in_danger_twelve_hours_before(self):
        warning = decay_warning(technique("a", power=50), T0 + timedelta(hours=61))
        assert warning["is_in_danger"] is True
        assert warning["is_decaying"] is False

    def test_not_in_danger_early(self):
        warning = decay_warning(technique("a", power=50), T0 + timedelta(hours=50))
        assert warning["is_in_danger"] is False

    def test_decaying_after_threshold(self):
        warning = decay_warning(technique("a", power=50), T0 + timedelta(hours=80))
        assert warning["is_decaying"] is True
        assert warning["time_until_decay"] == timedelta(0)


def test_section_average_power_rounds_half_up():
    profile = new_profile()
    profile.techniques["a"] = technique("a", power=50)
    profile.techniques["b"] = technique("b", power=51)
    assert section_average_power(profile, PRE) == 51
