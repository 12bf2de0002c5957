"""
=============================================================================
PROGRESSION.PY — Progresión por Sección (logs y códigos únicos)
=============================================================================
Cada sección sube de color contando LOGS válidos y CÓDIGOS distintos:

  🔴 red    → punto de partida
  🟠 orange → ≥2 logs y ≥1 código
  🟡 yellow → ≥6 logs y ≥2 códigos
  🟢 green  → ≥12 logs y ≥3 códigos

Una vez alcanzado el verde, ya no basta con "haber llegado": hay que
MANTENERLO. El verde se conserva solo si:
  - Hay un log en los últimos 3 días
  - La racha es de 7 días o más
  - Hay ≥16 logs válidos en los últimos 28 días (≈4 días por semana)
Si falla cualquiera → baja a amarillo.

Racha (streak):
  - Primer log → racha = 1
  - Log al día siguiente → racha +1
  - Log el mismo día → sin cambios
  - Hueco de 2+ días → racha = 1
  - Log con fecha anterior (backfill) → no toca la racha
"""

import logging
from datetime import datetime, timedelta

from clock import local_day
from constants import (
    COLOR_RANK, COLORS_DESCENDING, GREEN_MIN_STREAK_DAYS, GREEN_RECENT_LOG_WINDOW,
    GREEN_ROLLING_MIN_LOGS, GREEN_ROLLING_WINDOW, GUARDRAILS, Color,
)
from errors import validate_identifier, validate_timestamp
from schemas import CodeLog, SectionProgress

logger = logging.getLogger("cheatcodes.progression")


def default_section_progress(section: str) -> SectionProgress:
    return SectionProgress(section=section)


# =============================================================================
# ===================== COLOR =================================================
# =============================================================================

def climbing_color(total_logs: int, unique_count: int) -> Color:
    """Color por umbrales de subida (sin reglas de mantenimiento)"""
    for color in COLORS_DESCENDING:
        min_logs, min_unique = GUARDRAILS[color]
        if total_logs >= min_logs and unique_count >= min_unique:
            return color
    return Color.red


def is_green_maintained(progress: SectionProgress, now: datetime) -> bool:
    """¿Se cumplen las 3 reglas de mantenimiento del verde?"""
    if not progress.green_first_achieved_at:
        return False

    if not progress.last_log_at or progress.last_log_at < now - GREEN_RECENT_LOG_WINDOW:
        return False

    if progress.streak_days < GREEN_MIN_STREAK_DAYS:
        return False

    return recent_valid_logs(progress, now) >= GREEN_ROLLING_MIN_LOGS


def calculate_color(progress: SectionProgress, now: datetime) -> Color:
    """Color actual: mantenimiento si ya fue verde, umbrales de subida si no"""
    if progress.green_first_achieved_at:
        return Color.green if is_green_maintained(progress, now) else Color.yellow
    return climbing_color(progress.total_logs, len(progress.unique_technique_ids))


# =============================================================================
# ===================== RACHA =================================================
# =============================================================================

def _update_streak(progress: SectionProgress, timestamp: datetime, now: datetime):
    log_day = local_day(timestamp, now)

    if progress.last_streak_day is None:
        progress.streak_days = 1
        progress.last_streak_day = log_day
        return

    gap = (log_day - progress.last_streak_day).days
    if gap == 1:
        progress.streak_days += 1
        progress.last_streak_day = log_day
    elif gap >= 2:
        progress.streak_days = 1
        progress.last_streak_day = log_day
    # gap == 0 → mismo día; gap < 0 → backfill. Ninguno toca la racha.


# =============================================================================
# ===================== REGISTRAR UN LOG ======================================
# =============================================================================

def record_log(progress: SectionProgress, log: CodeLog, now: datetime | None = None) -> SectionProgress:
    """
    Añade un log a la sección y recalcula su color.
    `now` es el momento de evaluación (por defecto, la fecha del log).
    """
    validate_identifier(log.technique_id, "technique_id")
    validate_timestamp(log.timestamp, "log.timestamp")
    now = validate_timestamp(now, "now") if now is not None else log.timestamp

    progress = progress.model_copy(deep=True)
    progress.log_history.append(log)
    # Solo cuenta la ventana móvil de 28 días; lo anterior se descarta
    oldest = now - GREEN_ROLLING_WINDOW
    progress.log_history = [entry for entry in progress.log_history if entry.timestamp >= oldest]

    if log.is_valid:
        progress.total_logs += 1
        progress.unique_technique_ids.add(log.technique_id)
        if progress.last_log_at is None or log.timestamp > progress.last_log_at:
            progress.last_log_at = log.timestamp
        _update_streak(progress, log.timestamp, now)

    new_color = calculate_color(progress, now)
    if new_color == Color.green and not progress.green_first_achieved_at:
        progress.green_first_achieved_at = log.timestamp
        logger.info(f"Sección {progress.section} alcanza el verde por primera vez")

    progress.color = new_color
    return progress


def recompute_color(progress: SectionProgress, now: datetime) -> SectionProgress:
    """Recalcula el color sin log nuevo (barridos diarios de mantenimiento)"""
    now = validate_timestamp(now, "now")
    color = calculate_color(progress, now)
    if color == progress.color:
        return progress
    progress = progress.model_copy(deep=True)
    progress.color = color
    return progress


# =============================================================================
# ===================== OBJETIVOS =============================================
# =============================================================================

def next_progression_target(progress: SectionProgress) -> dict | None:
    """Cuánto falta para el siguiente color. None si ya es verde."""
    if progress.color == Color.green:
        return None
    ranked = sorted(GUARDRAILS, key=lambda c: COLOR_RANK[c])
    next_color = ranked[COLOR_RANK[progress.color] + 1]
    min_logs, min_unique = GUARDRAILS[next_color]
    return {
        "next_color": next_color,
        "logs_needed": max(0, min_logs - progress.total_logs),
        "codes_needed": max(0, min_unique - len(progress.unique_technique_ids)),
    }


def overall_color(progresses: list[SectionProgress]) -> Color:
    """
    Color global de las secciones.
    Verde SOLO si las 5 son verdes; si no, media ponderada (nunca verde).
    """
    if progresses and all(p.color == Color.green for p in progresses):
        return Color.green
    if not progresses:
        return Color.red
    average = sum(COLOR_RANK[p.color] for p in progresses) / len(progresses)
    if average >= 2.5:
        return Color.yellow
    if average >= 0.5:
        return Color.orange
    return Color.red


def recent_valid_logs(progress: SectionProgress, now: datetime,
                      window: timedelta = GREEN_ROLLING_WINDOW) -> int:
    start = now - window
    return sum(1 for log in progress.log_history if log.is_valid and log.timestamp >= start)
