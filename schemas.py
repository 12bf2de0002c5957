"""
=============================================================================
SCHEMAS.PY — Esquemas de Datos (Pydantic)
=============================================================================
Dos familias de esquemas viven aquí:

  1. ESTADO DEL MOTOR → los "registros" que el motor recibe y devuelve
     (perfil de poder, progreso por sección, green hold, consistencia,
     inventario de slots, tope diario). El Store los guarda como JSON.
  2. API → lo que aceptan y devuelven los endpoints (XxxRequest / XxxResponse).

¿Por qué Pydantic para el estado?
  - Valida al cargar: si el JSON guardado está roto → CorruptState
  - Serializa fechas, sets y enums sin código extra
  - model_copy(deep=True) nos da copias para no mutar lo que nos pasan
"""

from datetime import date, datetime, timedelta
from typing import Literal, Optional

from pydantic import BaseModel, Field

from constants import SECTIONS, Color, GainKind


# =============================================================================
# ===================== POWER =================================================
# =============================================================================

class UsageEntry(BaseModel):
    """Una ganancia de poder en el historial de un código"""
    timestamp: datetime
    amount_gained: int
    kind: GainKind


class TechniquePower(BaseModel):
    id: str
    name: str
    section: str
    power_percentage: int = Field(default=0, ge=0, le=100)
    total_logs: int = Field(default=0, ge=0)
    created_at: datetime
    last_used_at: datetime
    usage_log: list[UsageEntry] = []
    fresh_bonus_used: int = Field(default=0, ge=0, le=2)
    last_decay_checkpoint: Optional[datetime] = None


class PowerProfile(BaseModel):
    techniques: dict[str, TechniquePower] = {}
    account_created_at: datetime
    total_logs_all_sections: int = 0
    honeymoon_ended: bool = False
    honeymoon_ended_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None


# =============================================================================
# ===================== PROGRESSION ===========================================
# =============================================================================

class CodeLog(BaseModel):
    """Un uso de un código tal y como lo ve la progresión de la sección"""
    technique_id: str
    technique_name: Optional[str] = None
    timestamp: datetime
    is_valid: bool = True


class SectionProgress(BaseModel):
    section: str
    color: Color = Color.red
    total_logs: int = 0
    unique_technique_ids: set[str] = set()
    log_history: list[CodeLog] = []
    last_log_at: Optional[datetime] = None
    green_first_achieved_at: Optional[datetime] = None
    # green_first_achieved_at → NUNCA se borra, aunque la sección baje de color
    streak_days: int = 0
    last_streak_day: Optional[date] = None


# =============================================================================
# ===================== SCORES (DERIVADOS, NO SE GUARDAN) =====================
# =============================================================================

class SectionScore(BaseModel):
    section: str
    score: int
    color: Color
    active_count: int
    total_valid_logs: int
    unique_used: int
    is_fully_qualified: bool


class RadarState(BaseModel):
    radar_score: int
    is_full_radar_green: bool
    section_scores: dict[str, SectionScore]


# =============================================================================
# ===================== GREEN HOLD Y CONSISTENCIA =============================
# =============================================================================

class GreenHoldTimer(BaseModel):
    section: str
    started_at: Optional[datetime] = None
    is_active: bool = False
    announced_milestones: list[str] = []
    demoted_at: Optional[datetime] = None
    # demoted_at → degradación forzada por el mantenimiento; se limpia con el
    # siguiente log contado de la sección


class GreenHoldRecord(BaseModel):
    section: str
    started_at: datetime
    ended_at: datetime
    duration: timedelta
    achieved_milestones: list[str] = []


class GreenHoldState(BaseModel):
    timers: dict[str, GreenHoldTimer]
    longest_holds: dict[str, GreenHoldRecord] = {}
    all_time_records: list[GreenHoldRecord] = []


class SectionConsistency(BaseModel):
    section: str
    last_activity_at: Optional[datetime] = None
    consecutive_inactive_days: int = 0
    grace_deadline: Optional[datetime] = None
    weekly_activity_log: list[datetime] = []
    active_days_in_week: int = 0
    has_seven_day_streak: bool = False
    last_maintenance_day: Optional[date] = None


# =============================================================================
# ===================== SLOTS =================================================
# =============================================================================

class ManagedTechnique(BaseModel):
    """
    Identidad + estado de slot de un código.
    Los números (poder, logs, último uso) viven en el PowerProfile.
    """
    id: str
    name: str
    section: str
    created_at: datetime
    status: Literal["active", "archived"] = "active"
    archived_at: Optional[datetime] = None
    reactivated_at: Optional[datetime] = None
    duplicate_ids: list[str] = []
    refinements: list[str] = []


class SectionInventory(BaseModel):
    section: str
    active_techniques: list[ManagedTechnique] = []
    archived_techniques: list[ManagedTechnique] = []
    total_created: int = 0
    total_archived: int = 0
    last_created_at: Optional[datetime] = None


# =============================================================================
# ===================== TOPE DIARIO ===========================================
# =============================================================================

class DailyCapTracker(BaseModel):
    day: Optional[date] = None
    section_counts: dict[str, int] = {}


# =============================================================================
# ===================== ESTADO COMPLETO DEL USUARIO ===========================
# =============================================================================

STATE_SCHEMA_VERSION = 2


class UserState(BaseModel):
    """Todo lo que el Store carga/guarda de un usuario"""
    schema_version: int = STATE_SCHEMA_VERSION
    power: PowerProfile
    progress: dict[str, SectionProgress]
    holds: GreenHoldState
    consistency: dict[str, SectionConsistency]
    inventories: dict[str, SectionInventory]
    daily_cap: DailyCapTracker = DailyCapTracker()


def default_user_state(now: datetime) -> UserState:
    """
    Estado vacío para un usuario nuevo (cuando no hay nada guardado).
    La cuenta "nace" en `now` → arranca la luna de miel.
    """
    return UserState(
        power=PowerProfile(account_created_at=now, last_updated=now),
        progress={s: SectionProgress(section=s) for s in SECTIONS},
        holds=GreenHoldState(timers={s: GreenHoldTimer(section=s) for s in SECTIONS}),
        consistency={s: SectionConsistency(section=s) for s in SECTIONS},
        inventories={s: SectionInventory(section=s) for s in SECTIONS},
        daily_cap=DailyCapTracker(day=now.date(), section_counts={s: 0 for s in SECTIONS}),
    )


# =============================================================================
# ===================== API: PETICIONES =======================================
# =============================================================================

class UserCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    timezone: Optional[str] = None


class UserResponse(BaseModel):
    id: int
    name: str
    timezone: str
    created_at: datetime
    model_config = {"from_attributes": True}


class TechniqueCreate(BaseModel):
    id: str = Field(min_length=1, max_length=100)
    name: str = Field(min_length=1, max_length=200)
    section: str
    force: bool = False
    # force → crear aunque haya uno muy parecido (el usuario ya lo ha decidido)


class TechniqueMerge(BaseModel):
    source_name: str = Field(min_length=1, max_length=200)


# =============================================================================
# ===================== API: RESPUESTAS =======================================
# =============================================================================

class TechniqueView(BaseModel):
    id: str
    name: str
    section: str
    status: str
    power_percentage: int
    total_logs: int
    last_used_at: Optional[datetime] = None


class HoldStatus(BaseModel):
    section: str
    has_active_hold: bool
    current_duration: timedelta
    milestones_crossed: list[str]
    next_milestone: Optional[str] = None
    time_to_next_milestone: Optional[timedelta] = None


class SectionTarget(BaseModel):
    next_color: Color
    score_needed: int
    logs_needed: int
    codes_needed: int


class SectionDetail(BaseModel):
    score: SectionScore
    progress_color: Color
    streak_days: int
    next_target: Optional[SectionTarget] = None
    hold: HoldStatus
    remaining_daily_logs: int
    techniques: list[TechniqueView]


class EngineEventResponse(BaseModel):
    kind: str
    section: Optional[str] = None
    at: datetime
    data: dict = {}


class UseResponse(BaseModel):
    counted: bool
    remaining_daily_logs: int
    amount_gained: int = 0
    kind: Optional[GainKind] = None
    color_before: Color
    color_after: Color
    section_changed: bool
    radar_changed: bool
    milestones_crossed: list[str] = []
    radar: RadarState
    events: list[EngineEventResponse] = []


class SlotResult(BaseModel):
    """Resultado etiquetado de crear/archivar/reactivar/fusionar"""
    outcome: str
    technique: Optional[TechniqueView] = None
    merge_candidate: Optional[TechniqueView] = None
    similar: list[TechniqueView] = []
    candidates: list[TechniqueView] = []
    events: list[EngineEventResponse] = []
