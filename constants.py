"""
=============================================================================
CONSTANTS.PY — Constantes del Motor de Progresión
=============================================================================
Todas las cifras "mágicas" del sistema viven aquí:
  - Las 5 secciones fijas
  - Los 4 colores (rojo → naranja → amarillo → verde)
  - Curva de crecimiento del poder, bonus y decaimiento
  - Umbrales de color y guardarraíles (logs mínimos / códigos únicos)
  - Ventanas de mantenimiento del verde e hitos del Green Hold
  - Límites de slots y tope diario

No son configurables por el usuario. La API las expone en GET /constants
para que la web pueda pintar leyendas y barras de progreso.
"""

import enum
import math
from datetime import timedelta


# =============================================================================
# ===================== SECCIONES Y COLORES ===================================
# =============================================================================

class Section(str, enum.Enum):
    """Las 5 áreas de vida en las que se agrupan los cheat codes"""
    pre_game = "Pre-Game"
    in_game = "In-Game"
    post_game = "Post-Game"
    off_court = "Off Court"
    locker_room = "Locker Room"


SECTIONS = [s.value for s in Section]


class Color(str, enum.Enum):
    """Color de madurez de una sección (de peor a mejor)"""
    red = "red"
    orange = "orange"
    yellow = "yellow"
    green = "green"


# Orden numérico de los colores (para comparar "más alto / más bajo")
COLOR_RANK = {
    Color.red: 0,
    Color.orange: 1,
    Color.yellow: 2,
    Color.green: 3,
}

COLOR_HEX = {
    Color.red: "#FF0000",
    Color.orange: "#FFA500",
    Color.yellow: "#FFFF00",
    Color.green: "#00FF00",
}


class GainKind(str, enum.Enum):
    """Tipo de ganancia registrada en el historial de un código"""
    normal = "normal"
    fresh_bonus = "fresh_bonus"
    honeymoon = "honeymoon"


# =============================================================================
# ===================== POWER (CURVA DE CRECIMIENTO) ==========================
# =============================================================================
# (log_desde, log_hasta, ganancia). El log 11 en adelante gana 2 o 3 al azar.

GROWTH_CURVE = [
    (1, 3, 20),    # Logs 1-3 → +20
    (4, 6, 10),    # Logs 4-6 → +10
    (7, 10, 5),    # Logs 7-10 → +5
]
LATE_GAIN_CHOICES = (2, 3)  # Log 11+ → +2 o +3

MAX_POWER = 100
MIN_POWER = 0

FRESH_BONUS = (10, 5)  # Primer log +10, segundo log +5
FRESH_BONUS_LOGS = len(FRESH_BONUS)

HONEYMOON_MULTIPLIER = 1.25
HONEYMOON_DURATION = timedelta(days=7)
HONEYMOON_SECTION_LOG_LIMIT = 10  # Por sección

MERGE_POWER_BOOST = 5

USAGE_LOG_MAX_ENTRIES = 50  # Historial de usos que se guarda por código


# =============================================================================
# ===================== DECAY (DECAIMIENTO) ===================================
# =============================================================================

DECAY_INACTIVITY_THRESHOLD = timedelta(hours=72)
DECAY_PER_MIDNIGHT = 5  # Puntos porcentuales por cada medianoche cruzada
DECAY_DANGER_WINDOW = timedelta(hours=12)  # Aviso 12h antes de empezar a decaer


# =============================================================================
# ===================== UMBRALES DE COLOR =====================================
# =============================================================================

# Puntuación mínima (media de poder) para cada color
SCORE_THRESHOLDS = {
    Color.green: 75,
    Color.yellow: 50,
    Color.orange: 25,
    Color.red: 0,
}

# Guardarraíles: (logs válidos mínimos, códigos únicos mínimos)
GUARDRAILS = {
    Color.green: (12, 3),
    Color.yellow: (6, 2),
    Color.orange: (2, 1),
    Color.red: (0, 0),
}

# Colores ordenados de mayor a menor (para buscar "el más alto que cumple")
COLORS_DESCENDING = [Color.green, Color.yellow, Color.orange, Color.red]


# =============================================================================
# ===================== MANTENIMIENTO DEL VERDE ===============================
# =============================================================================

GREEN_RECENT_LOG_WINDOW = timedelta(days=3)
GREEN_MIN_STREAK_DAYS = 7
GREEN_ROLLING_WINDOW = timedelta(days=28)
GREEN_ROLLING_MIN_LOGS = 16  # ≈ 4 días por semana

CONSISTENCY_WINDOW_DAYS = 7
CONSISTENCY_MIN_ACTIVE_DAYS = 4
GRACE_WARNING_INACTIVE_DAYS = 2
GRACE_MAX_INACTIVE_DAYS = 3
GRACE_DEADLINE_HOUR = 12  # Día 3 a las 12:00 hora local


# =============================================================================
# ===================== HITOS DEL GREEN HOLD ==================================
# =============================================================================

GREEN_HOLD_MILESTONES = [
    {"id": "first_green", "name": "First Green", "duration": timedelta(0), "icon": "🟢"},
    {"id": "three_days", "name": "3-Day Hold", "duration": timedelta(days=3), "icon": "🔥"},
    {"id": "seven_days", "name": "Week Strong", "duration": timedelta(days=7), "icon": "💪"},
    {"id": "fourteen_days", "name": "2-Week Streak", "duration": timedelta(days=14), "icon": "⭐"},
    {"id": "thirty_days", "name": "Monthly Master", "duration": timedelta(days=30), "icon": "👑"},
    {"id": "sixty_days", "name": "60-Day Elite", "duration": timedelta(days=60), "icon": "🏆"},
    {"id": "ninety_days", "name": "90-Day Legend", "duration": timedelta(days=90), "icon": "💎"},
]


# =============================================================================
# ===================== SLOTS Y TOPE DIARIO ===================================
# =============================================================================

MAX_ACTIVE_PER_SECTION = 7
ARCHIVE_CANDIDATES_COUNT = 3

MERGE_SIMILARITY = 0.7    # > 0.7 → sugerir fusionar
REFINE_SIMILARITY = 0.3   # (0.3, 0.7] → sugerir refinar
MIN_WORD_LENGTH = 3       # Las palabras de 2 letras o menos no cuentan

DAILY_CAP_PER_SECTION = 3


def round_half_up(value: float) -> int:
    """Redondeo 'de toda la vida' (2.5 → 3), no el redondeo bancario de round()"""
    return int(math.floor(value + 0.5))


def constants_surface() -> dict:
    """Todas las constantes en un dict serializable (para GET /constants)"""
    return {
        "sections": SECTIONS,
        "colors": [c.value for c in Color],
        "color_hex": {c.value: h for c, h in COLOR_HEX.items()},
        "growth_curve": [
            {"from_log": lo, "to_log": hi, "gain": gain} for lo, hi, gain in GROWTH_CURVE
        ] + [{"from_log": 11, "to_log": None, "gain": list(LATE_GAIN_CHOICES)}],
        "fresh_bonus": list(FRESH_BONUS),
        "honeymoon": {
            "multiplier": HONEYMOON_MULTIPLIER,
            "days": HONEYMOON_DURATION.days,
            "section_log_limit": HONEYMOON_SECTION_LOG_LIMIT,
        },
        "decay": {
            "inactivity_hours": int(DECAY_INACTIVITY_THRESHOLD.total_seconds() // 3600),
            "per_midnight": DECAY_PER_MIDNIGHT,
        },
        "score_thresholds": {c.value: v for c, v in SCORE_THRESHOLDS.items()},
        "guardrails": {
            c.value: {"logs": logs, "unique": unique} for c, (logs, unique) in GUARDRAILS.items()
        },
        "green_maintenance": {
            "recent_log_days": GREEN_RECENT_LOG_WINDOW.days,
            "min_streak_days": GREEN_MIN_STREAK_DAYS,
            "rolling_days": GREEN_ROLLING_WINDOW.days,
            "rolling_min_logs": GREEN_ROLLING_MIN_LOGS,
        },
        "milestones": [
            {"id": m["id"], "name": m["name"], "days": m["duration"].days, "icon": m["icon"]}
            for m in GREEN_HOLD_MILESTONES
        ],
        "max_active_per_section": MAX_ACTIVE_PER_SECTION,
        "daily_cap_per_section": DAILY_CAP_PER_SECTION,
    }
