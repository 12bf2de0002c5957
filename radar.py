"""
=============================================================================
RADAR.PY — Puntuación de Secciones y Radar
=============================================================================
Aquí se juntan las piezas:

  Power (poder de cada código) + Progression (logs y códigos únicos)
    → SectionScore (puntuación y color de cada sección)
    → RadarState (media de las 5 secciones + ¿radar completo en verde?)

Color de una sección:
  1. Puntuación = media del poder de sus códigos NO archivados
  2. Color "posible" por puntuación: ≥75 verde, ≥50 amarillo, ≥25 naranja
  3. Cada color exige un guardarraíl (logs, códigos únicos):
       naranja (2,1) · amarillo (6,2) · verde (12,3)
  4. Color final = el MÁS ALTO que cumple puntuación Y guardarraíl

Ejemplo: puntuación 90 con solo 5 logs → no llega a amarillo (pide 6)
         → naranja (si tiene ≥2 logs y ≥1 código).

apply_use_and_rescore() es el flujo completo de "el usuario ha usado un
código": tope diario → poder → progresión → recálculo → green hold → eventos.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from constants import (
    COLOR_RANK, COLORS_DESCENDING, GUARDRAILS, SCORE_THRESHOLDS, SECTIONS, Color,
    GainKind, round_half_up,
)
from daily_cap import register_log
from errors import (
    CorruptState, validate_identifier, validate_section, validate_timestamp,
)
from green_hold import (
    HoldSnapshot, collect_new_milestones, has_active_hold, hold_snapshot, is_demoted,
    run_maintenance_check, set_demoted, start_hold, stop_hold, update_activity,
)
from notifier import (
    COLOR_CHANGED, DAILY_CAP_REACHED, DEMOTION_FORCED, FULL_RADAR_ACHIEVED,
    GRACE_WARNING, HOLD_STARTED, HOLD_STOPPED, MILESTONE_CROSSED, EngineEvent,
)
from power import apply_decay_to_profile, record_use
from progression import record_log, recompute_color
from schemas import (
    CodeLog, GreenHoldRecord, GreenHoldState, PowerProfile, RadarState,
    SectionInventory, SectionProgress, SectionScore, UserState,
)
from slots import archived_ids

logger = logging.getLogger("cheatcodes.radar")


# =============================================================================
# ===================== COLOR DE UNA SECCIÓN ==================================
# =============================================================================

def guardrail_met(color: Color, total_logs: int, unique_used: int) -> bool:
    min_logs, min_unique = GUARDRAILS[color]
    return total_logs >= min_logs and unique_used >= min_unique


def score_color(score: int) -> Color:
    """Color que correspondería SOLO por la puntuación"""
    for color in COLORS_DESCENDING:
        if score >= SCORE_THRESHOLDS[color]:
            return color
    return Color.red


def eligible_color(score: int, total_logs: int, unique_used: int) -> Color:
    """El color más alto que cumple puntuación y guardarraíl"""
    for color in COLORS_DESCENDING:
        if score >= SCORE_THRESHOLDS[color] and guardrail_met(color, total_logs, unique_used):
            return color
    return Color.red


def score_section(section: str, power_profile: PowerProfile, progress: SectionProgress,
                  inventory: SectionInventory | None = None,
                  demoted: bool = False) -> SectionScore:
    """
    Puntuación y color de una sección.
    `demoted=True` → la sección fue degradada por el mantenimiento y no puede
    pasar de amarillo hasta su siguiente log contado.
    """
    section = validate_section(section)
    archived = {t.id for t in inventory.archived_techniques} if inventory else set()
    active = [
        t for t in power_profile.techniques.values()
        if t.section == section and t.id not in archived
    ]

    score = 0
    if active:
        score = round_half_up(sum(t.power_percentage for t in active) / len(active))

    total_logs = progress.total_logs if progress else 0
    unique_used = len(progress.unique_technique_ids) if progress else 0

    color = eligible_color(score, total_logs, unique_used)
    if demoted and COLOR_RANK[color] > COLOR_RANK[Color.yellow]:
        color = Color.yellow

    return SectionScore(
        section=section,
        score=score,
        color=color,
        active_count=len(active),
        total_valid_logs=total_logs,
        unique_used=unique_used,
        is_fully_qualified=score_color(score) == color,
    )


def score_radar(power_profile: PowerProfile, progress: dict[str, SectionProgress],
                inventories: dict[str, SectionInventory] | None = None,
                holds: GreenHoldState | None = None) -> RadarState:
    """Las 5 secciones + media. Radar verde SOLO si las 5 son verdes."""
    inventories = inventories or {}
    scores = {
        section: score_section(
            section, power_profile, progress.get(section), inventories.get(section),
            demoted=is_demoted(holds, section),
        )
        for section in SECTIONS
    }
    radar_score = round_half_up(sum(s.score for s in scores.values()) / len(SECTIONS))
    return RadarState(
        radar_score=radar_score,
        is_full_radar_green=all(s.color == Color.green for s in scores.values()),
        section_scores=scores,
    )


def radar_for_state(state: UserState) -> RadarState:
    return score_radar(state.power, state.progress, state.inventories, state.holds)


def next_section_target(section_score: SectionScore) -> dict | None:
    """Qué le falta a la sección para el siguiente color. None si es verde."""
    if section_score.color == Color.green:
        return None

    rank = COLOR_RANK[section_score.color] + 1
    next_color = next(c for c, r in COLOR_RANK.items() if r == rank)
    min_logs, min_unique = GUARDRAILS[next_color]
    return {
        "next_color": next_color,
        "score_needed": max(0, SCORE_THRESHOLDS[next_color] - section_score.score),
        "logs_needed": max(0, min_logs - section_score.total_valid_logs),
        "codes_needed": max(0, min_unique - section_score.unique_used),
    }


# =============================================================================
# ===================== VALIDACIÓN DEL ESTADO =================================
# =============================================================================

def validate_state(state: UserState) -> UserState:
    """Si al estado le faltan piezas o no cuadra → CorruptState (sin adivinar)"""
    if state is None:
        raise CorruptState("Estado de usuario ausente")
    for name in ("progress", "consistency", "inventories"):
        missing = set(SECTIONS) - set(getattr(state, name))
        if missing:
            raise CorruptState(f"{name}: faltan secciones {sorted(missing)}")
    missing = set(SECTIONS) - set(state.holds.timers)
    if missing:
        raise CorruptState(f"holds: faltan secciones {sorted(missing)}")
    for key, technique in state.power.techniques.items():
        if key != technique.id:
            raise CorruptState(f"Código guardado bajo {key!r} pero su id es {technique.id!r}")
        if technique.section not in SECTIONS:
            raise CorruptState(f"Código {key!r} con sección desconocida {technique.section!r}")
    return state


# =============================================================================
# ===================== GREEN HOLD SEGÚN EL COLOR =============================
# =============================================================================

@dataclass
class HoldChange:
    started: bool = False
    stopped: GreenHoldRecord | None = None
    milestones: list[str] = field(default_factory=list)


def _sync_hold(state: UserState, section: str, color: Color, now: datetime,
               events: list[EngineEvent]) -> HoldChange:
    """Arranca/para el cronómetro según el color final y anota los eventos"""
    change = HoldChange()
    held = has_active_hold(state.holds, section)

    if color == Color.green and not held:
        state.holds = start_hold(state.holds, section, now)
        progress = state.progress[section]
        if progress.green_first_achieved_at is None:
            progress = progress.model_copy(deep=True)
            progress.green_first_achieved_at = now
            state.progress[section] = progress
        change.started = True
        events.append(EngineEvent(HOLD_STARTED, now, section))
    elif color != Color.green and held:
        state.holds, record = stop_hold(state.holds, section, now)
        change.stopped = record
        events.append(EngineEvent(HOLD_STOPPED, now, section, {
            "duration": record.duration,
            "achieved_milestones": list(record.achieved_milestones),
        }))

    state.holds, change.milestones = collect_new_milestones(state.holds, section, now)
    for milestone in change.milestones:
        events.append(EngineEvent(MILESTONE_CROSSED, now, section, {"milestone": milestone}))
    return change


def _radar_events(before: RadarState, after: RadarState, now: datetime,
                  events: list[EngineEvent]):
    for section in SECTIONS:
        old = before.section_scores[section].color
        new = after.section_scores[section].color
        if old != new:
            events.append(EngineEvent(COLOR_CHANGED, now, section, {"old": old, "new": new}))
    if after.is_full_radar_green and not before.is_full_radar_green:
        events.append(EngineEvent(FULL_RADAR_ACHIEVED, now, None, {"radar_score": after.radar_score}))


# =============================================================================
# ===================== FLUJO COMPLETO DE UN USO ==============================
# =============================================================================

@dataclass
class UseOutcome:
    state: UserState
    radar: RadarState
    counted: bool
    remaining_daily_logs: int
    color_before: Color
    color_after: Color
    section_changed: bool = False
    radar_changed: bool = False
    amount_gained: int = 0
    kind: GainKind | None = None
    hold_started: bool = False
    hold_stopped: GreenHoldRecord | None = None
    milestones_crossed: list[str] = field(default_factory=list)
    events: list[EngineEvent] = field(default_factory=list)


def apply_use_and_rescore(state: UserState, technique_id: str, name: str, section: str,
                          now: datetime, rng=None) -> UseOutcome:
    """
    El usuario ha usado un código. Pasos:
      1. Tope diario → si se pasa, NO se toca poder, progresión ni decay
      2. Power: sumar poder y reiniciar el checkpoint de decay
      3. Progression: contar el log (racha, color de progresión)
      4. Consistencia: registrar actividad; quitar una degradación forzada
      5. Recalcular antes/después → green hold, hitos y eventos
    """
    section = validate_section(section)
    now = validate_timestamp(now, "now")
    validate_identifier(technique_id, "technique_id")
    validate_state(state)

    radar_before = radar_for_state(state)
    before = radar_before.section_scores[section]

    new_state = state.model_copy(deep=True)
    new_state.daily_cap, counted, remaining = register_log(state.daily_cap, section, now)
    events: list[EngineEvent] = []

    if not counted:
        events.append(EngineEvent(DAILY_CAP_REACHED, now, section, {"technique_id": technique_id}))
        return UseOutcome(
            state=new_state,
            radar=radar_before,
            counted=False,
            remaining_daily_logs=0,
            color_before=before.color,
            color_after=before.color,
            events=events,
        )

    gain = record_use(new_state.power, technique_id, name, section, now, rng)
    new_state.power = gain.profile
    technique_name = gain.profile.techniques[technique_id].name

    new_state.progress[section] = record_log(
        new_state.progress[section],
        CodeLog(technique_id=technique_id, technique_name=technique_name, timestamp=now),
        now,
    )
    new_state.consistency[section] = update_activity(new_state.consistency[section], now)
    if is_demoted(new_state.holds, section):
        new_state.holds = set_demoted(new_state.holds, section, None)

    radar_after = radar_for_state(new_state)
    after = radar_after.section_scores[section]

    hold = _sync_hold(new_state, section, after.color, now, events)
    _radar_events(radar_before, radar_after, now, events)

    return UseOutcome(
        state=new_state,
        radar=radar_after,
        counted=True,
        remaining_daily_logs=remaining,
        color_before=before.color,
        color_after=after.color,
        section_changed=before.color != after.color or before.score != after.score,
        radar_changed=(radar_before.radar_score != radar_after.radar_score
                       or radar_before.is_full_radar_green != radar_after.is_full_radar_green),
        amount_gained=gain.amount_gained,
        kind=gain.kind,
        hold_started=hold.started,
        hold_stopped=hold.stopped,
        milestones_crossed=hold.milestones,
        events=events,
    )


# =============================================================================
# ===================== CAMBIOS DE SLOTS ======================================
# =============================================================================

@dataclass
class SweepOutcome:
    state: UserState
    radar: RadarState
    events: list[EngineEvent] = field(default_factory=list)
    warned: list[str] = field(default_factory=list)
    demoted: list[str] = field(default_factory=list)


def rescore_after_slot_change(state: UserState, section: str, inventory: SectionInventory,
                              now: datetime, profile: PowerProfile | None = None) -> SweepOutcome:
    """
    Archivar, reactivar o fusionar cambia el conjunto activo (o el poder)
    de una sección sin ser un log. Se aplica el inventario/perfil nuevo,
    se recalcula la sección y el green hold sigue al color resultante.
    """
    section = validate_section(section)
    now = validate_timestamp(now, "now")
    validate_state(state)

    radar_before = radar_for_state(state)
    new_state = state.model_copy(deep=True)
    new_state.inventories[section] = inventory.model_copy(deep=True)
    if profile is not None:
        new_state.power = profile.model_copy(deep=True)
    radar_after = radar_for_state(new_state)

    events: list[EngineEvent] = []
    _sync_hold(new_state, section, radar_after.section_scores[section].color, now, events)
    _radar_events(radar_before, radar_after, now, events)
    return SweepOutcome(state=new_state, radar=radar_after, events=events)


# =============================================================================
# ===================== DECAY DEL ESTADO COMPLETO =============================
# =============================================================================

def decay_floor(color: Color) -> int:
    """
    Suelo de decay de una sección = umbral del color inmediatamente inferior.
    Así un barrido nunca hace caer una sección más de un color de golpe.
    """
    rank = COLOR_RANK[color]
    if rank <= COLOR_RANK[Color.orange]:
        return 0
    lower = next(c for c, r in COLOR_RANK.items() if r == rank - 1)
    return SCORE_THRESHOLDS[lower]


def apply_decay_to_state(state: UserState, now: datetime) -> SweepOutcome:
    """
    Aplica el decay a todos los códigos activos (los archivados no decaen)
    y sincroniza el green hold con los colores resultantes.
    """
    now = validate_timestamp(now, "now")
    validate_state(state)

    radar_before = radar_for_state(state)
    floors = {s: decay_floor(radar_before.section_scores[s].color) for s in SECTIONS}

    new_state = state.model_copy(deep=True)
    new_state.power = apply_decay_to_profile(
        state.power, now, floors=floors, skip=archived_ids(state.inventories)
    )
    radar_after = radar_for_state(new_state)

    events: list[EngineEvent] = []
    for section in SECTIONS:
        _sync_hold(new_state, section, radar_after.section_scores[section].color, now, events)
    _radar_events(radar_before, radar_after, now, events)
    return SweepOutcome(state=new_state, radar=radar_after, events=events)


# =============================================================================
# ===================== MANTENIMIENTO DEL VERDE ===============================
# =============================================================================

def force_section_demotion(state: UserState, section: str,
                           now: datetime) -> tuple[UserState, GreenHoldRecord | None]:
    """
    Degradación forzada (plazo de gracia vencido):
      - Cierra el hold
      - La sección queda limitada a amarillo hasta su próximo log contado
      - El color de progresión baja a amarillo (green_first_achieved_at se queda)
    """
    section = validate_section(section)
    now = validate_timestamp(now, "now")
    state = state.model_copy(deep=True)
    state.holds, record = stop_hold(state.holds, section, now)
    state.holds = set_demoted(state.holds, section, now)
    progress = state.progress[section]
    if progress.color == Color.green:
        progress.color = Color.yellow
    logger.info(f"Sección {section} degradada")
    return state, record


def run_green_maintenance(state: UserState, now: datetime) -> SweepOutcome:
    """
    Barrido diario: primero el green hold sigue al color actual de cada
    sección; luego, en las que siguen en verde, comprueba la inactividad,
    avisa a los 2 días y degrada cuando vence el plazo. También recalcula el
    color de progresión de todas las secciones y anuncia hitos nuevos.
    """
    now = validate_timestamp(now, "now")
    validate_state(state)

    radar_before = radar_for_state(state)
    new_state = state.model_copy(deep=True)
    events: list[EngineEvent] = []
    warned, demoted = [], []

    for section in SECTIONS:
        new_state.progress[section] = recompute_color(new_state.progress[section], now)
    current = radar_for_state(new_state)

    for section in SECTIONS:
        color = current.section_scores[section].color
        if color != Color.green or not has_active_hold(new_state.holds, section):
            _sync_hold(new_state, section, color, now, events)
            continue

        check = run_maintenance_check(new_state.consistency[section], now)
        new_state.consistency[section] = check.consistency
        if check.warn:
            warned.append(section)
            events.append(EngineEvent(GRACE_WARNING, now, section, {
                "deadline": check.consistency.grace_deadline,
                "inactive_days": check.consistency.consecutive_inactive_days,
            }))
        if check.demote:
            demoted.append(section)
            new_state, record = force_section_demotion(new_state, section, now)
            events.append(EngineEvent(DEMOTION_FORCED, now, section, {}))
            if record is not None:
                events.append(EngineEvent(HOLD_STOPPED, now, section, {
                    "duration": record.duration,
                    "achieved_milestones": list(record.achieved_milestones),
                }))
            continue

        new_state.holds, crossed = collect_new_milestones(new_state.holds, section, now)
        for milestone in crossed:
            events.append(EngineEvent(MILESTONE_CROSSED, now, section, {"milestone": milestone}))

    radar_after = radar_for_state(new_state)
    _radar_events(radar_before, radar_after, now, events)
    return SweepOutcome(state=new_state, radar=radar_after, events=events,
                        warned=warned, demoted=demoted)


def hold_status(state: UserState, section: str, now: datetime) -> HoldSnapshot:
    section = validate_section(section)
    return hold_snapshot(state.holds, section, validate_timestamp(now, "now"))
