"""
=============================================================================
DAILY_CAP.PY — Tope Diario de Logs por Sección
=============================================================================
Máximo 3 logs CONTADOS por sección y día (hora local).
El 4º log del día se descarta ANTES de llegar a Power/Progression:
no suma poder, no cuenta para los guardarraíles y no reinicia el decay.

El contador se reinicia cuando cambia el día de calendario local.
"""

import logging
from datetime import datetime

from constants import DAILY_CAP_PER_SECTION, SECTIONS
from errors import validate_section, validate_timestamp
from schemas import DailyCapTracker

logger = logging.getLogger("cheatcodes.daily_cap")


def tracker_for_day(tracker: DailyCapTracker, now: datetime) -> DailyCapTracker:
    """Devuelve el tracker de HOY (uno nuevo a cero si cambió el día)"""
    today = now.date()
    if tracker.day == today:
        return tracker.model_copy(deep=True)
    return DailyCapTracker(day=today, section_counts={s: 0 for s in SECTIONS})


def remaining_logs(tracker: DailyCapTracker, section: str, now: datetime) -> int:
    section = validate_section(section)
    today = tracker_for_day(tracker, validate_timestamp(now, "now"))
    return max(0, DAILY_CAP_PER_SECTION - today.section_counts.get(section, 0))


def is_at_cap(tracker: DailyCapTracker, section: str, now: datetime) -> bool:
    return remaining_logs(tracker, section, now) == 0


def register_log(tracker: DailyCapTracker, section: str,
                 now: datetime) -> tuple[DailyCapTracker, bool, int]:
    """
    Intenta contar un log en la sección.
    Retorna (tracker_nuevo, ¿cuenta?, logs_restantes_hoy).
    """
    section = validate_section(section)
    now = validate_timestamp(now, "now")
    tracker = tracker_for_day(tracker, now)

    count = tracker.section_counts.get(section, 0)
    if count >= DAILY_CAP_PER_SECTION:
        logger.debug(f"Tope diario alcanzado en {section}")
        return tracker, False, 0

    tracker.section_counts[section] = count + 1
    return tracker, True, DAILY_CAP_PER_SECTION - (count + 1)
