"""
=============================================================================
MAIN.PY — La API de Cheat Codes
=============================================================================
Endpoints REST sobre el motor de progresión.

Organización:
  1. HEALTH      → Estado de la API y constantes del motor
  2. USERS       → Alta de usuarios
  3. RADAR       → Radar completo y detalle de una sección
  4. CODES       → Crear, usar, archivar, reactivar y fusionar códigos
  5. MAINTENANCE → Lanzar a mano los barridos de decay y verde

Cada petición sigue el mismo patrón:
  cargar estado (Store) → función del motor → guardar estado → notificar
"""

import logging
import os
import traceback
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime
from typing import Optional

import pytz
from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from clock import DEFAULT_TIMEZONE, SystemClock
from constants import SECTIONS, constants_surface
from daily_cap import remaining_logs
from database import get_db, init_db
from errors import CorruptState, InvalidInput, validate_section
from maintenance import run_decay_job, run_green_hold_job, user_now
from models import User
from notifier import LoggingNotifier
from radar import (
    apply_use_and_rescore, hold_status, next_section_target, radar_for_state,
    rescore_after_slot_change,
)
from schemas import (
    EngineEventResponse, HoldStatus, RadarState, SectionDetail, SectionTarget,
    SlotResult, TechniqueCreate, TechniqueMerge, TechniqueView, UseResponse,
    UserCreate, UserResponse, UserState, default_user_state,
)
from slots import (
    archive_technique, create_technique, find_technique, merge_technique,
    reactivate_technique,
)
from store import SqlStore

# ─────────────────────────────────────────────────────────────────────────────
# LOGGING
# ─────────────────────────────────────────────────────────────────────────────

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s"
)
logger = logging.getLogger("cheatcodes.api")

SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "0") == "1"
MAINTENANCE_SECRET = os.getenv("MAINTENANCE_SECRET")


# ─────────────────────────────────────────────────────────────────────────────
# LIFESPAN (Arranque y apagado)
# ─────────────────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Arrancando Cheat Codes...")
    init_db()
    logger.info("✅ Base de datos inicializada")

    if SCHEDULER_ENABLED:
        from scheduler import create_scheduler, start_scheduler
        create_scheduler()
        start_scheduler()
    else:
        logger.info("Scheduler desactivado (SCHEDULER_ENABLED != 1)")

    yield

    if SCHEDULER_ENABLED:
        from scheduler import stop_scheduler
        stop_scheduler()
    logger.info("👋 Apagado completo")


# ─────────────────────────────────────────────────────────────────────────────
# APLICACIÓN FASTAPI
# ─────────────────────────────────────────────────────────────────────────────

app = FastAPI(
    title="Cheat Codes API",
    description="Motor de progresión, poder y decaimiento de cheat codes",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─────────────────────────────────────────────────────────────────────────────
# ERRORES
# ─────────────────────────────────────────────────────────────────────────────
# InvalidInput → 422, CorruptState → 409, cualquier otra cosa → 500 con detalle

@app.exception_handler(InvalidInput)
async def invalid_input_handler(request: Request, exc: InvalidInput):
    return JSONResponse(status_code=422, content={"detail": str(exc), "type": "InvalidInput"})


@app.exception_handler(CorruptState)
async def corrupt_state_handler(request: Request, exc: CorruptState):
    logger.error(f"❌ Estado corrupto en {request.url}: {exc}")
    return JSONResponse(status_code=409, content={"detail": str(exc), "type": "CorruptState"})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Captura errores no manejados y devuelve detalles útiles"""
    logger.error(f"❌ Error no manejado en {request.url}: {exc}\n{traceback.format_exc()}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": str(exc),
            "type": type(exc).__name__,
            "path": str(request.url),
        }
    )


# ─────────────────────────────────────────────────────────────────────────────
# DEPENDENCIAS
# ─────────────────────────────────────────────────────────────────────────────

def get_clock():
    """Reloj de la API (los tests lo sustituyen por un FixedClock)"""
    return SystemClock()


def get_notifier():
    return LoggingNotifier()


def get_rng():
    """Fuente de azar para la ganancia de los logs 11+ (None → random)"""
    return None


def _get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Usuario no encontrado")
    return user


def _load(db: Session, user_id: int, clock) -> tuple[SqlStore, datetime, UserState]:
    user = _get_user(db, user_id)
    store = SqlStore(db)
    now = user_now(clock, user)
    return store, now, store.load_state(user_id, now)


def _locate(state: UserState, code_id: str) -> Optional[str]:
    """Sección en la que vive un código (inventario primero, luego poder)"""
    for section in SECTIONS:
        if find_technique(state.inventories[section], code_id):
            return section
    power = state.power.techniques.get(code_id)
    return power.section if power else None


def _require_section(state: UserState, code_id: str) -> str:
    section = _locate(state, code_id)
    if section is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Código no encontrado")
    return section


def _view(state: UserState, technique) -> Optional[TechniqueView]:
    if technique is None:
        return None
    power = state.power.techniques.get(technique.id)
    return TechniqueView(
        id=technique.id,
        name=technique.name,
        section=technique.section,
        status=getattr(technique, "status", "active"),
        power_percentage=power.power_percentage if power else 0,
        total_logs=power.total_logs if power else 0,
        last_used_at=power.last_used_at if power else None,
    )


def _technique_views(state: UserState, section: Optional[str] = None) -> list[TechniqueView]:
    sections = SECTIONS if section is None else [section]
    views, seen = [], set()
    for s in sections:
        inventory = state.inventories[s]
        for technique in inventory.active_techniques + inventory.archived_techniques:
            seen.add(technique.id)
            views.append(_view(state, technique))
    # Códigos con poder pero sin ficha en el inventario → cuentan como activos
    for technique in state.power.techniques.values():
        if technique.id not in seen and technique.section in sections:
            views.append(_view(state, technique))
    return views


def _slot_result(state: UserState, outcome, events=()) -> SlotResult:
    return SlotResult(
        outcome=outcome.outcome,
        technique=_view(state, outcome.technique),
        merge_candidate=_view(state, outcome.merge_candidate),
        similar=[_view(state, t) for t in outcome.similar],
        candidates=[_view(state, t) for t in outcome.candidates],
        events=[EngineEventResponse(**e.to_dict()) for e in events],
    )


def _apply_slot_outcome(store: SqlStore, user_id: int, state: UserState, section: str,
                        outcome, now: datetime, notifier) -> SlotResult:
    """
    Si la operación se hizo: recalcula la sección (y su green hold),
    guarda el estado y notifica los eventos.
    """
    if not (outcome.ok and outcome.inventory is not None):
        return _slot_result(state, outcome)
    sweep = rescore_after_slot_change(state, section, outcome.inventory, now, outcome.profile)
    store.save_state(user_id, sweep.state)
    notifier.notify(user_id, sweep.events)
    return _slot_result(sweep.state, outcome, sweep.events)


# =============================================================================
# ===================== SECCIÓN 1: HEALTH =====================================
# =============================================================================

@app.get("/", tags=["Health"])
def health_check():
    """Verifica que la API está viva"""
    return {
        "status": "ok",
        "app": "Cheat Codes",
        "version": "1.0.0",
        "timestamp": datetime.utcnow().isoformat()
    }


@app.get("/constants", tags=["Health"])
def get_constants():
    """Umbrales, curva de poder, hitos... (para pintar leyendas en la web)"""
    return constants_surface()


# =============================================================================
# ===================== SECCIÓN 2: USERS ======================================
# =============================================================================

@app.post("/users", response_model=UserResponse, status_code=201, tags=["Users"])
def create_user(data: UserCreate, db: Session = Depends(get_db), clock=Depends(get_clock)):
    """Crea un usuario con su estado vacío. Su luna de miel empieza ahora."""
    timezone = data.timezone or DEFAULT_TIMEZONE
    try:
        tz = pytz.timezone(timezone)
    except pytz.UnknownTimeZoneError:
        raise InvalidInput(f"Zona horaria desconocida: {timezone!r}")

    now = clock.now().astimezone(tz)
    user = User(name=data.name, timezone=timezone, created_at=now.astimezone(pytz.utc).replace(tzinfo=None))
    db.add(user)
    db.commit()
    db.refresh(user)

    SqlStore(db).save_state(user.id, default_user_state(now))
    logger.info(f"👤 Nuevo usuario: {user.name} ({timezone})")
    return user


# =============================================================================
# ===================== SECCIÓN 3: RADAR ======================================
# =============================================================================

@app.get("/users/{user_id}/radar", response_model=RadarState, tags=["Radar"])
def get_radar(user_id: int, db: Session = Depends(get_db), clock=Depends(get_clock)):
    _, _, state = _load(db, user_id, clock)
    return radar_for_state(state)


@app.get("/users/{user_id}/sections/{section}", response_model=SectionDetail, tags=["Radar"])
def get_section(user_id: int, section: str, db: Session = Depends(get_db),
                clock=Depends(get_clock)):
    """
    Detalle de una sección:
      - Puntuación y color (con lo que falta para el siguiente)
      - Color de progresión y racha
      - Green hold en curso
      - Logs que quedan hoy y sus códigos
    """
    section = validate_section(section)
    _, now, state = _load(db, user_id, clock)
    score = radar_for_state(state).section_scores[section]
    progress = state.progress[section]
    target = next_section_target(score)

    return SectionDetail(
        score=score,
        progress_color=progress.color,
        streak_days=progress.streak_days,
        next_target=SectionTarget(**target) if target else None,
        hold=HoldStatus(**asdict(hold_status(state, section, now))),
        remaining_daily_logs=remaining_logs(state.daily_cap, section, now),
        techniques=_technique_views(state, section),
    )


# =============================================================================
# ===================== SECCIÓN 4: CODES ======================================
# =============================================================================

@app.get("/users/{user_id}/codes", response_model=list[TechniqueView], tags=["Codes"])
def list_codes(user_id: int, section: Optional[str] = None, db: Session = Depends(get_db),
               clock=Depends(get_clock)):
    _, _, state = _load(db, user_id, clock)
    return _technique_views(state, validate_section(section) if section else None)


@app.post("/users/{user_id}/codes", response_model=SlotResult, tags=["Codes"])
def create_code(user_id: int, data: TechniqueCreate, db: Session = Depends(get_db),
                clock=Depends(get_clock), notifier=Depends(get_notifier)):
    """
    Crea un código nuevo en una sección.
    Resultados posibles: created, suggest_merge, capacity_full, already_exists.
    """
    section = validate_section(data.section)
    store, now, state = _load(db, user_id, clock)
    other = _locate(state, data.id)
    if other is not None and other != section:
        raise InvalidInput(f"El código {data.id!r} ya existe en {other}")

    outcome = create_technique(state.inventories[section], state.power, data.id, data.name,
                               now, force=data.force)
    return _apply_slot_outcome(store, user_id, state, section, outcome, now, notifier)


@app.post("/users/{user_id}/codes/{code_id}/use", response_model=UseResponse, tags=["Codes"])
def use_code(user_id: int, code_id: str, db: Session = Depends(get_db),
             clock=Depends(get_clock), notifier=Depends(get_notifier), rng=Depends(get_rng)):
    """
    El usuario ha usado un código.

    Flujo:
      1. Localizar el código (un código archivado hay que reactivarlo antes)
      2. Motor: tope diario → poder → progresión → radar → green hold
      3. Guardar estado + historial de usos
      4. Notificar los eventos
    """
    store, now, state = _load(db, user_id, clock)
    section = _require_section(state, code_id)
    managed = find_technique(state.inventories[section], code_id)
    if managed is not None and managed.status == "archived":
        raise InvalidInput(f"El código {code_id!r} está archivado; reactívalo para usarlo")
    name = managed.name if managed else state.power.techniques[code_id].name

    outcome = apply_use_and_rescore(state, code_id, name, section, now, rng)

    store.record_usage(user_id, code_id, section, now, outcome.counted, outcome.amount_gained)
    store.save_state(user_id, outcome.state)
    notifier.notify(user_id, outcome.events)

    return UseResponse(
        counted=outcome.counted,
        remaining_daily_logs=outcome.remaining_daily_logs,
        amount_gained=outcome.amount_gained,
        kind=outcome.kind,
        color_before=outcome.color_before,
        color_after=outcome.color_after,
        section_changed=outcome.section_changed,
        radar_changed=outcome.radar_changed,
        milestones_crossed=outcome.milestones_crossed,
        radar=outcome.radar,
        events=[EngineEventResponse(**e.to_dict()) for e in outcome.events],
    )


@app.post("/users/{user_id}/codes/{code_id}/archive", response_model=SlotResult, tags=["Codes"])
def archive_code(user_id: int, code_id: str, db: Session = Depends(get_db),
                 clock=Depends(get_clock), notifier=Depends(get_notifier)):
    store, now, state = _load(db, user_id, clock)
    section = _require_section(state, code_id)
    outcome = archive_technique(state.inventories[section], code_id, now)
    return _apply_slot_outcome(store, user_id, state, section, outcome, now, notifier)


@app.post("/users/{user_id}/codes/{code_id}/reactivate", response_model=SlotResult, tags=["Codes"])
def reactivate_code(user_id: int, code_id: str, db: Session = Depends(get_db),
                    clock=Depends(get_clock), notifier=Depends(get_notifier)):
    """Vuelve a activar un código archivado (si hay hueco en la sección)"""
    store, now, state = _load(db, user_id, clock)
    section = _require_section(state, code_id)
    outcome = reactivate_technique(state.inventories[section], state.power, code_id, now)
    return _apply_slot_outcome(store, user_id, state, section, outcome, now, notifier)


@app.post("/users/{user_id}/codes/{code_id}/merge", response_model=SlotResult, tags=["Codes"])
def merge_code(user_id: int, code_id: str, data: TechniqueMerge, db: Session = Depends(get_db),
               clock=Depends(get_clock), notifier=Depends(get_notifier)):
    """Fusiona un código "casi igual" en este: +5 de poder y un bonus recuperado"""
    store, now, state = _load(db, user_id, clock)
    section = _require_section(state, code_id)
    outcome = merge_technique(state.inventories[section], state.power, code_id,
                              data.source_name, now)
    return _apply_slot_outcome(store, user_id, state, section, outcome, now, notifier)


# =============================================================================
# ===================== SECCIÓN 5: MAINTENANCE ================================
# =============================================================================

@app.post("/maintenance", tags=["Maintenance"])
def run_maintenance(job: str = "all", authorization: Optional[str] = Header(default=None),
                    db: Session = Depends(get_db), clock=Depends(get_clock),
                    notifier=Depends(get_notifier)):
    """
    Lanza los barridos a mano (cron externo, pruebas...).
    job: "decay", "green_hold" o "all".
    Si MAINTENANCE_SECRET está definido, exige "Authorization: Bearer <secret>".
    """
    if MAINTENANCE_SECRET and authorization != f"Bearer {MAINTENANCE_SECRET}":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No autorizado")
    if job not in ("decay", "green_hold", "all"):
        raise InvalidInput(f"Trabajo desconocido: {job!r}")

    result = {}
    if job in ("decay", "all"):
        result["decay"] = run_decay_job(db, clock, notifier)
    if job in ("green_hold", "all"):
        result["green_hold"] = run_green_hold_job(db, clock, notifier)
    return result
