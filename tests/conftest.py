"""
Pytest configuration and fixtures

Todas las fechas son de Europe/Madrid (pytz) para que "día local" y
"medianoche" signifiquen lo mismo que en producción.
La BD de los tests es SQLite en memoria (StaticPool → una sola conexión).
"""
from datetime import datetime

import pytest
import pytz
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import main
from clock import FixedClock
from constants import SECTIONS, Section
from database import Base, get_db
from notifier import CollectingNotifier
from radar import apply_use_and_rescore, rescore_after_slot_change
from schemas import (
    SectionInventory, SectionProgress, TechniquePower, UserState, default_user_state,
)
from slots import create_technique

MADRID = pytz.timezone("Europe/Madrid")

PRE = Section.pre_game.value
IN = Section.in_game.value


def local(*args) -> datetime:
    """Fecha local de Madrid con zona horaria (pytz.localize)"""
    return MADRID.localize(datetime(*args))


# Lunes 8 de enero de 2024, 09:00 (lejos de cambios de hora)
T0 = local(2024, 1, 8, 9, 0)


class PinnedRng:
    """Sustituto de random para fijar la ganancia de los logs 11+"""

    def __init__(self, value: float):
        self.value = value

    def random(self) -> float:
        return self.value


HIGH_RNG = PinnedRng(0.9)   # → +3
LOW_RNG = PinnedRng(0.1)    # → +2


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def state() -> UserState:
    return default_user_state(T0)


def technique(technique_id: str, section: str = PRE, power: int = 0, logs: int = 0,
              last_used: datetime = T0, fresh_used: int = 2) -> TechniquePower:
    return TechniquePower(
        id=technique_id,
        name=f"Code {technique_id}",
        section=section,
        power_percentage=power,
        total_logs=logs,
        created_at=T0,
        last_used_at=last_used,
        fresh_bonus_used=fresh_used,
        last_decay_checkpoint=last_used,
    )


def build_state(powers: dict[str, int], section: str = PRE, logs: int = 12,
                unique: set[str] | None = None, technique_logs: int = 4,
                base: UserState | None = None) -> UserState:
    """
    Estado con códigos de poder conocido en una sección y un progreso dado.
    Por defecto: 12 logs y todos los códigos usados (guardarraíl de verde).
    """
    state = (base or default_user_state(T0)).model_copy(deep=True)
    for technique_id, power in powers.items():
        state.power.techniques[technique_id] = technique(
            technique_id, section, power, logs=technique_logs
        )
    state.progress[section] = SectionProgress(
        section=section,
        total_logs=logs,
        unique_technique_ids=unique if unique is not None else set(powers),
        last_log_at=T0,
    )
    return state


def all_green_state(except_section: str | None = None) -> UserState:
    """Las 5 secciones en verde (menos `except_section`, que se queda en 11 logs)"""
    state = default_user_state(T0)
    for section in SECTIONS:
        prefix = section.lower().replace(" ", "-")
        powers = {f"{prefix}-{i}": 80 for i in range(3)}
        logs = 11 if section == except_section else 12
        state = build_state(powers, section, logs=logs, base=state)
    return state


def held_green_state() -> UserState:
    """Pre-Game en verde con hold activo desde T0: a=100, b=60, c=70 (media 77), 12 logs"""
    state = build_state({"a": 100, "b": 60, "c": 70}, logs=11)
    outcome = apply_use_and_rescore(state, "a", "Code a", PRE, T0)
    inventory = create_technique(SectionInventory(section=PRE), outcome.state.power,
                                 "a", "Code a", T0).inventory
    return rescore_after_slot_change(outcome.state, PRE, inventory, T0).state


# ─────────────────────────────────────────────────────────────────────────────
# BASE DE DATOS Y API
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def db_engine():
    import models  # noqa: F401
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FixedClock(T0)


@pytest.fixture
def notifier():
    return CollectingNotifier()


@pytest.fixture
def client(db_engine, clock, notifier):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)

    def override_get_db():
        db = Session()
        try:
            yield db
        finally:
            db.close()

    main.app.dependency_overrides[get_db] = override_get_db
    main.app.dependency_overrides[main.get_clock] = lambda: clock
    main.app.dependency_overrides[main.get_notifier] = lambda: notifier
    main.app.dependency_overrides[main.get_rng] = lambda: HIGH_RNG
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()
