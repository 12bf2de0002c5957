"""
=============================================================================
MODELS.PY — Tablas de la Base de Datos
=============================================================================
  USER
  ├── engine_state   (1 fila: todo el estado del motor como JSON)
  └── usage_events[] (historial de usos, contados o descartados)

¿Por qué un JSON y no una tabla por cosa?
El motor trabaja con el estado COMPLETO del usuario (poder, progreso,
holds, inventario...) y lo devuelve entero. Guardarlo en una fila hace que
cargar y guardar sea una sola transacción.
"""

from datetime import datetime

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, ForeignKey, Integer, String,
)
from sqlalchemy.orm import relationship

from database import Base


def utcnow():
    return datetime.utcnow()


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    timezone = Column(String(50), default="Europe/Madrid", nullable=False)
    # timezone → "hora local" del usuario (medianoches del decay, tope diario...)
    created_at = Column(DateTime, default=utcnow)

    # ── Relaciones ──
    engine_state = relationship(
        "EngineState", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    usage_events = relationship("UsageEvent", back_populates="user", cascade="all, delete-orphan")


class EngineState(Base):
    """El UserState serializado (ver schemas.UserState)"""
    __tablename__ = "engine_states"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False, index=True)
    payload = Column(JSON, nullable=False)
    schema_version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="engine_state")


class UsageEvent(Base):
    """Cada vez que el usuario usa un código (también los descartados por el tope)"""
    __tablename__ = "usage_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    technique_id = Column(String(100), nullable=False)
    section = Column(String(20), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    counted = Column(Boolean, default=True)
    amount_gained = Column(Integer, default=0)

    user = relationship("User", back_populates="usage_events")
