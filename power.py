"""
=============================================================================
POWER.PY — Sistema de Poder de los Cheat Codes
=============================================================================
Cada código tiene un "poder" de 0 a 100 que:
  - SUBE cada vez que el usuario lo usa (curva decreciente)
  - BAJA si pasa más de 72h sin usarse (decaimiento por medianoches)

Curva de crecimiento (según el número del siguiente log):
  Logs 1-3   → +20
  Logs 4-6   → +10
  Logs 7-10  → +5
  Logs 11+   → +2 o +3 (al azar, para que la curva no sea 100% predecible)

Modificadores (excluyentes, en este orden):
  1. Bonus de código nuevo → +10 el primer log, +5 el segundo
  2. Luna de miel → x1.25 (primeros 7 días de cuenta y <10 logs en la sección)

Todas las funciones son PURAS: reciben el estado y devuelven uno nuevo.
"""

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta

from clock import midnights_between
from constants import (
    DECAY_DANGER_WINDOW, DECAY_INACTIVITY_THRESHOLD, DECAY_PER_MIDNIGHT,
    FRESH_BONUS, FRESH_BONUS_LOGS, GROWTH_CURVE, HONEYMOON_DURATION,
    HONEYMOON_MULTIPLIER, HONEYMOON_SECTION_LOG_LIMIT, LATE_GAIN_CHOICES,
    MAX_POWER, MIN_POWER, SCORE_THRESHOLDS, COLORS_DESCENDING, USAGE_LOG_MAX_ENTRIES,
    Color, GainKind, round_half_up,
)
from errors import (
    CorruptState, InvalidInput, validate_identifier, validate_section,
    validate_timestamp,
)
from schemas import PowerProfile, TechniquePower, UsageEntry

logger = logging.getLogger("cheatcodes.power")


@dataclass
class PowerGain:
    """Resultado de record_use()"""
    profile: PowerProfile
    amount_gained: int
    kind: GainKind


# =============================================================================
# ===================== CURVA DE CRECIMIENTO ==================================
# =============================================================================

def base_gain(total_logs: int, rng=None) -> int:
    """Ganancia base para el SIGUIENTE log (total_logs + 1)"""
    log_number = total_logs + 1
    for first, last, gain in GROWTH_CURVE:
        if first <= log_number <= last:
            return gain
    rng = rng or random
    low, high = LATE_GAIN_CHOICES
    return high if rng.random() > 0.5 else low


def section_log_count(profile: PowerProfile, section: str) -> int:
    """Suma de logs de todos los códigos de una sección"""
    return sum(t.total_logs for t in profile.techniques.values() if t.section == section)


def is_honeymoon_active(profile: PowerProfile, section: str, now: datetime) -> bool:
    """
    ¿Aplica la luna de miel en esta sección?
      - La cuenta no ha cerrado la luna de miel
      - La cuenta tiene menos de 7 días
      - La sección lleva menos de 10 logs (contados ANTES del log actual)
    """
    if profile.honeymoon_ended:
        return False
    if now - profile.account_created_at >= HONEYMOON_DURATION:
        return False
    return section_log_count(profile, section) < HONEYMOON_SECTION_LOG_LIMIT


def calculate_gain(technique: TechniquePower, profile: PowerProfile,
                   now: datetime, rng=None) -> tuple[int, GainKind]:
    """Ganancia total del próximo log y de qué tipo es"""
    gain = base_gain(technique.total_logs, rng)

    if technique.fresh_bonus_used < FRESH_BONUS_LOGS:
        return gain + FRESH_BONUS[technique.fresh_bonus_used], GainKind.fresh_bonus

    if is_honeymoon_active(profile, technique.section, now):
        return round_half_up(gain * HONEYMOON_MULTIPLIER), GainKind.honeymoon

    return gain, GainKind.normal


def new_technique(technique_id: str, name: str, section: str, now: datetime) -> TechniquePower:
    return TechniquePower(
        id=technique_id,
        name=name,
        section=section,
        created_at=now,
        last_used_at=now,
        last_decay_checkpoint=now,
    )


# =============================================================================
# ===================== REGISTRAR UN USO ======================================
# =============================================================================

def record_use(profile: PowerProfile, technique_id: str, name: str, section: str,
               now: datetime, rng=None) -> PowerGain:
    """
    Registra un uso de un código y devuelve el perfil actualizado.

    Efectos:
      - Crea el código si es la primera vez
      - Suma la ganancia (tope 100)
      - Actualiza total_logs, last_used_at, historial y checkpoint de decay
      - Cierra la luna de miel si la cuenta ya tiene 7 días o más
    """
    section = validate_section(section)
    now = validate_timestamp(now, "now")
    validate_identifier(technique_id, "technique_id")

    profile = profile.model_copy(deep=True)

    technique = profile.techniques.get(technique_id)
    if technique is None:
        validate_identifier(name, "name")
        technique = new_technique(technique_id, name, section, now)
        profile.techniques[technique_id] = technique
        logger.debug(f"Nuevo código {technique_id!r} en {section}")
    elif technique.id != technique_id:
        raise CorruptState(f"Clave {technique_id!r} apunta al código {technique.id!r}")
    elif technique.section != section:
        raise InvalidInput(
            f"El código {technique_id!r} pertenece a {technique.section}, no a {section}"
        )

    gain, kind = calculate_gain(technique, profile, now, rng)

    technique.power_percentage = min(MAX_POWER, technique.power_percentage + gain)
    technique.total_logs += 1
    technique.last_used_at = now
    technique.last_decay_checkpoint = now
    if kind == GainKind.fresh_bonus:
        technique.fresh_bonus_used += 1
    technique.usage_log.append(UsageEntry(timestamp=now, amount_gained=gain, kind=kind))
    technique.usage_log = technique.usage_log[-USAGE_LOG_MAX_ENTRIES:]

    profile.total_logs_all_sections += 1
    profile.last_updated = now

    if not profile.honeymoon_ended and now - profile.account_created_at >= HONEYMOON_DURATION:
        profile.honeymoon_ended = True
        profile.honeymoon_ended_at = now
        logger.info("Luna de miel terminada")

    return PowerGain(profile=profile, amount_gained=gain, kind=kind)


# =============================================================================
# ===================== DECAIMIENTO ===========================================
# =============================================================================
# Tras 72h sin usar un código, pierde 5 puntos por cada medianoche local
# cruzada. El checkpoint evita restar dos veces lo mismo.

def apply_decay(power: TechniquePower, section_floor: int | None, now: datetime) -> TechniquePower:
    """
    Aplica el decaimiento a un código.

    - Sin efecto si no han pasado 72h desde el último uso
    - Cuenta medianoches entre max(último uso + 72h, checkpoint) y now
    - Nunca baja del suelo de la sección (ni de 0) ni sube el valor actual
    - Avanza el checkpoint a `now` → llamarla dos veces no resta el doble
    """
    now = validate_timestamp(now, "now")
    if now - power.last_used_at < DECAY_INACTIVITY_THRESHOLD:
        return power

    decay_start = power.last_used_at + DECAY_INACTIVITY_THRESHOLD
    if power.last_decay_checkpoint and power.last_decay_checkpoint > decay_start:
        decay_start = power.last_decay_checkpoint

    boundaries = midnights_between(decay_start, now)
    floor = max(MIN_POWER, section_floor or 0)
    current = power.power_percentage
    new_value = min(current, max(floor, current - DECAY_PER_MIDNIGHT * boundaries))

    decayed = power.model_copy(deep=True)
    decayed.power_percentage = new_value
    decayed.last_decay_checkpoint = now
    if new_value != current:
        logger.debug(f"Decay {power.id!r}: {current} → {new_value} ({boundaries} medianoches)")
    return decayed


def apply_decay_to_profile(profile: PowerProfile, now: datetime,
                           floors: dict[str, int] | None = None,
                           skip: set[str] | None = None) -> PowerProfile:
    """Aplica decay a todos los códigos (menos los de `skip`, ej: archivados)"""
    floors = floors or {}
    skip = skip or set()
    profile = profile.model_copy(deep=True)
    for technique_id, technique in profile.techniques.items():
        if technique_id in skip:
            continue
        profile.techniques[technique_id] = apply_decay(
            technique, floors.get(technique.section, 0), now
        )
    return profile


def decay_warning(power: TechniquePower, now: datetime) -> dict:
    """
    Estado de aviso de decaimiento de un código:
      - is_decaying → ya está perdiendo poder
      - is_in_danger → le quedan 12h o menos para empezar a decaer
    """
    inactive = now - power.last_used_at
    time_until_decay = max(timedelta(0), DECAY_INACTIVITY_THRESHOLD - inactive)
    return {
        "is_decaying": inactive >= DECAY_INACTIVITY_THRESHOLD,
        "is_in_danger": timedelta(0) < time_until_decay <= DECAY_DANGER_WINDOW,
        "time_until_decay": time_until_decay,
        "hours_inactive": int(inactive.total_seconds() // 3600),
    }


# =============================================================================
# ===================== CONSULTAS =============================================
# =============================================================================

def section_techniques(profile: PowerProfile, section: str) -> list[TechniquePower]:
    """Códigos de una sección, del más potente al menos"""
    return sorted(
        (t for t in profile.techniques.values() if t.section == section),
        key=lambda t: t.power_percentage,
        reverse=True,
    )


def section_average_power(profile: PowerProfile, section: str) -> int:
    techniques = section_techniques(profile, section)
    if not techniques:
        return 0
    return round_half_up(sum(t.power_percentage for t in techniques) / len(techniques))


def power_color(power_percentage: int) -> Color:
    for color in COLORS_DESCENDING:
        if power_percentage >= SCORE_THRESHOLDS[color]:
            return color
    return Color.red


def next_power_milestone(power_percentage: int) -> dict | None:
    """Siguiente umbral de color (o 100 = maestría). None si ya está al 100"""
    if power_percentage >= MAX_POWER:
        return None
    for color in reversed(COLORS_DESCENDING[:-1]):
        target = SCORE_THRESHOLDS[color]
        if power_percentage < target:
            return {"target": target, "color": color, "name": color.value.capitalize()}
    return {"target": MAX_POWER, "color": Color.green, "name": "Mastery"}
