"""
=============================================================================
ERRORS.PY — Errores del Motor
=============================================================================
Solo hay DOS tipos de error "de verdad":

  InvalidInput → la entrada está mal (sección desconocida, fecha sin zona
                 horaria, id vacío...). Se corrige reintentando bien.
  CorruptState → el estado guardado está roto (faltan secciones, claves
                 que no cuadran). El motor NO intenta adivinar.

Ojo: "slot lleno", "sugerencia de fusión" o "tope diario alcanzado" NO son
errores. Son resultados normales que el llamador debe mirar.

La API traduce:
  InvalidInput → 422
  CorruptState → 409
"""

from datetime import datetime

from constants import SECTIONS


class EngineError(Exception):
    """Base de todos los errores del motor"""


class InvalidInput(EngineError, ValueError):
    """Entrada inválida o fuera de rango"""


class CorruptState(EngineError):
    """Estado persistido corrupto o incompleto"""


def validate_section(section) -> str:
    """Devuelve el nombre canónico de la sección o lanza InvalidInput"""
    value = getattr(section, "value", section)
    if value not in SECTIONS:
        raise InvalidInput(f"Sección desconocida: {section!r}")
    return value


def validate_timestamp(value, field: str = "timestamp") -> datetime:
    """Las fechas deben ser datetime CON zona horaria (la hora local importa)"""
    if not isinstance(value, datetime):
        raise InvalidInput(f"{field} no es un datetime: {value!r}")
    if value.tzinfo is None or value.utcoffset() is None:
        raise InvalidInput(f"{field} no tiene zona horaria: {value.isoformat()}")
    return value


def validate_identifier(value, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"{field} vacío o inválido: {value!r}")
    return value
