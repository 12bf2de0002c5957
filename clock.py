"""
=============================================================================
CLOCK.PY — Reloj y Utilidades de Hora Local
=============================================================================
El motor NUNCA lee la hora del sistema por su cuenta: siempre recibe `now`.
Este módulo ofrece:
  - SystemClock → reloj real en la zona horaria del usuario (pytz)
  - FixedClock  → reloj congelado para tests y re-ejecuciones de historial
  - Helpers de "día local": medianoches cruzadas, mediodía del día N...

Regla de oro: la "hora local" es la zona horaria del `now` que nos pasan.
Todas las fechas guardadas se convierten a esa zona antes de comparar días.
"""

import os
from datetime import date, datetime, time, timedelta

import pytz

DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "Europe/Madrid")


class SystemClock:
    """Reloj real. Cada usuario puede tener su propia zona horaria."""

    def __init__(self, timezone: str = DEFAULT_TIMEZONE):
        self.tz = pytz.timezone(timezone)

    def now(self) -> datetime:
        return datetime.now(self.tz)


class FixedClock:
    """Reloj que solo avanza cuando se lo pedimos (tests, replays)"""

    def __init__(self, at: datetime):
        self.at = at

    def now(self) -> datetime:
        return self.at

    def advance(self, **kwargs) -> datetime:
        self.at = self.at + timedelta(**kwargs)
        return self.at


def to_local(value: datetime, reference: datetime) -> datetime:
    """Convierte `value` a la zona horaria de `reference`"""
    return value.astimezone(reference.tzinfo)


def local_day(value: datetime, reference: datetime | None = None) -> date:
    """Día de calendario de `value` visto desde la zona de `reference`"""
    if reference is None:
        return value.date()
    return to_local(value, reference).date()


def midnights_between(start: datetime, end: datetime) -> int:
    """
    Cuántas medianoches locales hay en el intervalo (start, end].
    Si start es justo medianoche, esa no cuenta (ya estaba "cruzada").
    La zona horaria de referencia es la de `end`.
    """
    if end <= start:
        return 0
    return max(0, (local_day(end) - local_day(start, end)).days)


def local_time_on(day: date, hour: int, reference: datetime) -> datetime:
    """Fecha+hora local (ej: día 3 a las 12:00) en la zona de `reference`"""
    naive = datetime.combine(day, time(hour=hour))
    tz = reference.tzinfo
    if hasattr(tz, "localize"):
        # pytz necesita localize() para aplicar bien el horario de verano
        return tz.localize(naive)
    return naive.replace(tzinfo=tz)
