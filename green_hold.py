"""
=============================================================================
GREEN_HOLD.PY — Green Hold y Consistencia
=============================================================================
Green Hold = el tiempo que una sección lleva SEGUIDA en verde.

Máquina de estados por sección:
  NotHeld ──(pasa a verde)──→ Held      → arranca el cronómetro
  Held ────(baja del verde)─→ NotHeld   → se cierra un GreenHoldRecord

Hitos del hold (desde que arrancó): 0, 3, 7, 14, 30, 60 y 90 días.
El motor solo dice QUÉ hitos se han cruzado; las insignias y tarjetas
para compartir son cosa de la capa de presentación.

Consistencia:
  - Cada log contado actualiza la actividad (ventana de 7 días locales)
  - El barrido diario cuenta días inactivos:
      2 días inactivos → aviso + plazo de gracia (día 3 a las 12:00)
      plazo vencido    → degradación forzada
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from clock import local_day, local_time_on
from constants import (
    CONSISTENCY_MIN_ACTIVE_DAYS, CONSISTENCY_WINDOW_DAYS, GRACE_DEADLINE_HOUR,
    GRACE_MAX_INACTIVE_DAYS, GRACE_WARNING_INACTIVE_DAYS, GREEN_HOLD_MILESTONES,
)
from errors import validate_section, validate_timestamp
from schemas import GreenHoldRecord, GreenHoldState, GreenHoldTimer, SectionConsistency

logger = logging.getLogger("cheatcodes.green_hold")

ONE_DAY = timedelta(days=1)


# =============================================================================
# ===================== HITOS =================================================
# =============================================================================

def milestones_crossed(duration: timedelta) -> list[str]:
    return [m["id"] for m in GREEN_HOLD_MILESTONES if duration >= m["duration"]]


def next_milestone(duration: timedelta) -> dict | None:
    return next((m for m in GREEN_HOLD_MILESTONES if duration < m["duration"]), None)


def milestone_name(milestone_id: str) -> str:
    for m in GREEN_HOLD_MILESTONES:
        if m["id"] == milestone_id:
            return m["name"]
    return milestone_id


# =============================================================================
# ===================== CRONÓMETRO ============================================
# =============================================================================

def has_active_hold(holds: GreenHoldState, section: str) -> bool:
    timer = holds.timers.get(section)
    return bool(timer and timer.is_active and timer.started_at)


def current_hold_duration(holds: GreenHoldState, section: str, now: datetime) -> timedelta:
    """Duración del hold en curso: exactamente now - started_at (0 si no hay)"""
    if not has_active_hold(holds, section):
        return timedelta(0)
    return now - holds.timers[section].started_at


def start_hold(holds: GreenHoldState, section: str, now: datetime) -> GreenHoldState:
    section = validate_section(section)
    now = validate_timestamp(now, "now")
    holds = holds.model_copy(deep=True)
    holds.timers[section] = GreenHoldTimer(section=section, started_at=now, is_active=True)
    logger.info(f"🟢 Green hold iniciado en {section}")
    return holds


def stop_hold(holds: GreenHoldState, section: str,
              now: datetime) -> tuple[GreenHoldState, GreenHoldRecord | None]:
    """
    Cierra el hold en curso y lo guarda como récord.
    Retorna (estado_nuevo, récord); récord es None si no había hold.
    """
    section = validate_section(section)
    now = validate_timestamp(now, "now")
    if not has_active_hold(holds, section):
        return holds, None

    holds = holds.model_copy(deep=True)
    timer = holds.timers[section]
    duration = now - timer.started_at
    record = GreenHoldRecord(
        section=section,
        started_at=timer.started_at,
        ended_at=now,
        duration=duration,
        achieved_milestones=milestones_crossed(duration),
    )

    longest = holds.longest_holds.get(section)
    if longest is None or duration > longest.duration:
        holds.longest_holds[section] = record

    holds.all_time_records.append(record)
    holds.all_time_records.sort(key=lambda r: r.duration, reverse=True)

    holds.timers[section] = GreenHoldTimer(section=section, demoted_at=timer.demoted_at)
    logger.info(f"Green hold cerrado en {section} tras {duration}")
    return holds, record


def collect_new_milestones(holds: GreenHoldState, section: str,
                           now: datetime) -> tuple[GreenHoldState, list[str]]:
    """Hitos cruzados que todavía no se habían anunciado en este hold"""
    if not has_active_hold(holds, section):
        return holds, []
    crossed = milestones_crossed(current_hold_duration(holds, section, now))
    new = [m for m in crossed if m not in holds.timers[section].announced_milestones]
    if not new:
        return holds, []
    holds = holds.model_copy(deep=True)
    holds.timers[section].announced_milestones.extend(new)
    return holds, new


def set_demoted(holds: GreenHoldState, section: str, demoted_at: datetime | None) -> GreenHoldState:
    holds = holds.model_copy(deep=True)
    holds.timers[section].demoted_at = demoted_at
    return holds


def is_demoted(holds: GreenHoldState | None, section: str) -> bool:
    if holds is None or section not in holds.timers:
        return False
    return holds.timers[section].demoted_at is not None


# =============================================================================
# ===================== CONSISTENCIA ==========================================
# =============================================================================

def _has_seven_day_streak(activity: list[datetime], now: datetime) -> bool:
    active_days = {local_day(ts, now) for ts in activity}
    today = local_day(now)
    return all(today - timedelta(days=i) in active_days for i in range(CONSISTENCY_WINDOW_DAYS))


def update_activity(consistency: SectionConsistency, now: datetime) -> SectionConsistency:
    """
    Se llama con cada log contado de la sección:
      - Pone a 0 los días inactivos y cancela el plazo de gracia
      - Mantiene el registro de actividad de los últimos 7 días (1 por día)
    """
    now = validate_timestamp(now, "now")
    consistency = consistency.model_copy(deep=True)
    consistency.last_activity_at = now
    consistency.consecutive_inactive_days = 0
    consistency.grace_deadline = None

    today = local_day(now)
    oldest = today - timedelta(days=CONSISTENCY_WINDOW_DAYS - 1)
    log = [ts for ts in consistency.weekly_activity_log if oldest <= local_day(ts, now) <= today]
    if not any(local_day(ts, now) == today for ts in log):
        log.append(now)

    consistency.weekly_activity_log = sorted(log)
    consistency.active_days_in_week = len(log)
    consistency.has_seven_day_streak = _has_seven_day_streak(log, now)
    return consistency


@dataclass
class MaintenanceResult:
    consistency: SectionConsistency
    warn: bool = False
    demote: bool = False
    skipped: bool = False


def run_maintenance_check(consistency: SectionConsistency, now: datetime) -> MaintenanceResult:
    """
    Barrido diario de una sección (como mucho una vez por día local).

      - consecutive_inactive_days = días completos desde la última actividad
      - Justo 2 días y sin plazo → plazo = mañana a las 12:00 → AVISO
      - Plazo ya vencido → DEGRADAR y borrar el plazo
    """
    now = validate_timestamp(now, "now")
    today = local_day(now)
    if consistency.last_maintenance_day == today:
        return MaintenanceResult(consistency, skipped=True)

    consistency = consistency.model_copy(deep=True)
    consistency.last_maintenance_day = today
    result = MaintenanceResult(consistency)

    if consistency.last_activity_at is None:
        return result

    inactive_days = max(0, (now - consistency.last_activity_at) // ONE_DAY)
    consistency.consecutive_inactive_days = inactive_days

    if inactive_days == GRACE_WARNING_INACTIVE_DAYS and consistency.grace_deadline is None:
        consistency.grace_deadline = local_time_on(today + ONE_DAY, GRACE_DEADLINE_HOUR, now)
        result.warn = True
        logger.info(f"⚠️ {consistency.section}: 2 días sin actividad, plazo hasta "
                    f"{consistency.grace_deadline.isoformat()}")
    elif consistency.grace_deadline is not None and now >= consistency.grace_deadline:
        consistency.grace_deadline = None
        result.demote = True
        logger.info(f"⬇️ {consistency.section}: plazo de gracia vencido")

    return result


def check_green_consistency(consistency: SectionConsistency) -> dict:
    """¿Cumple la sección los requisitos de constancia para seguir en verde?"""
    meets = (
        consistency.active_days_in_week >= CONSISTENCY_MIN_ACTIVE_DAYS
        and consistency.has_seven_day_streak
        and consistency.consecutive_inactive_days < GRACE_MAX_INACTIVE_DAYS
    )
    return {
        "meets_requirements": meets,
        "active_days_in_week": consistency.active_days_in_week,
        "has_seven_day_streak": consistency.has_seven_day_streak,
        "consecutive_inactive_days": consistency.consecutive_inactive_days,
        "grace_deadline": consistency.grace_deadline,
    }


@dataclass
class HoldSnapshot:
    section: str
    has_active_hold: bool
    current_duration: timedelta
    milestones_crossed: list[str] = field(default_factory=list)
    next_milestone: str | None = None
    time_to_next_milestone: timedelta | None = None


def hold_snapshot(holds: GreenHoldState, section: str, now: datetime) -> HoldSnapshot:
    active = has_active_hold(holds, section)
    duration = current_hold_duration(holds, section, now)
    snapshot = HoldSnapshot(section=section, has_active_hold=active, current_duration=duration)
    if active:
        snapshot.milestones_crossed = milestones_crossed(duration)
        upcoming = next_milestone(duration)
        if upcoming:
            snapshot.next_milestone = upcoming["id"]
            snapshot.time_to_next_milestone = upcoming["duration"] - duration
    return snapshot
