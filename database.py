"""
=============================================================================
DATABASE.PY — Conexión a la Base de Datos
=============================================================================
Local: SQLite (archivo cheatcodes.db).
Producción: PostgreSQL, si existe la variable DATABASE_URL.

La BD solo guarda usuarios, el estado del motor (un JSON por usuario) y el
historial de usos. Toda la lógica vive en los módulos del motor.

Dos formas de abrir sesión:
  get_db()        → dependencia de FastAPI (una sesión por petición)
  session_scope() → trabajos del scheduler: commit al salir, rollback si falla
"""

import logging
import os
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger("cheatcodes.database")

DEFAULT_DATABASE_URL = "sqlite:///./cheatcodes.db"


def normalize_database_url(url: str) -> str:
    """
    Los proveedores dan "postgres://" o "postgresql://", pero el driver
    instalado es psycopg (v3) → "postgresql+psycopg://".
    """
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def make_engine(url: str) -> Engine:
    """
    SQLite: sin comprobación de hilo (los endpoints síncronos corren en un pool).
    PostgreSQL: pool_pre_ping para descartar conexiones cortadas por el servidor.
    """
    url = normalize_database_url(url)
    if url.startswith("sqlite"):
        return create_engine(url, echo=False, connect_args={"check_same_thread": False})
    return create_engine(url, echo=False, pool_pre_ping=True)


# ─────────────────────────────────────────────────────────────────────────────
# CONEXIÓN
# ─────────────────────────────────────────────────────────────────────────────

DATABASE_URL = normalize_database_url(os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL))

engine = make_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """
    Dependencia de FastAPI: abre una sesión por petición y la cierra al final.

      @app.get("/algo")
      def endpoint(db: Session = Depends(get_db)):
          ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(factory=None):
    """
    Sesión para trabajos fuera de una petición:

      with session_scope() as db:
          run_decay_job(db, clock)
    """
    db: Session = (factory or SessionLocal)()
    try:
        yield db
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Transacción deshecha: {e}")
        raise
    finally:
        db.close()


def init_db(bind=None):
    """Crea las tablas que falten (se llama al arrancar)"""
    import models  # noqa: F401  registra las tablas en Base.metadata
    Base.metadata.create_all(bind=bind or engine)
