"""
=============================================================================
SLOTS.PY — Gestión de Slots de Cheat Codes
=============================================================================
Cada sección tiene como máximo 7 códigos ACTIVOS. El resto van a la
biblioteca (archivados) y no cuentan para la puntuación de la sección.

Antes de crear un código nuevo comprobamos si ya existe uno parecido:
  similitud > 0.7        → sugerir FUSIONAR (reforzar el existente)
  similitud (0.3, 0.7]   → sugerir REFINAR (no bloquea la creación)
  similitud ≤ 0.3        → crear sin más (si hay hueco)

Si la sección está llena → resultado "capacity_full" con 3 candidatos a
archivar (los usados hace más tiempo y, a igualdad, los de menos poder).

Nada de esto lanza excepciones: todo son resultados etiquetados (SlotOutcome)
que el llamador debe mirar.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime

from constants import (
    ARCHIVE_CANDIDATES_COUNT, FRESH_BONUS_LOGS, MAX_ACTIVE_PER_SECTION, MAX_POWER,
    MERGE_POWER_BOOST, MERGE_SIMILARITY, MIN_WORD_LENGTH, REFINE_SIMILARITY,
)
from errors import (
    InvalidInput, validate_identifier, validate_section, validate_timestamp,
)
from schemas import ManagedTechnique, PowerProfile, SectionInventory

logger = logging.getLogger("cheatcodes.slots")

# Resultados posibles
ALLOW = "allow"
CREATED = "created"
SUGGEST_MERGE = "suggest_merge"
SUGGEST_REFINE = "suggest_refine"
CAPACITY_FULL = "capacity_full"
ARCHIVED = "archived"
REACTIVATED = "reactivated"
MERGED = "merged"
NOT_FOUND = "not_found"
ALREADY_EXISTS = "already_exists"


@dataclass
class SlotOutcome:
    outcome: str
    inventory: SectionInventory | None = None
    technique: ManagedTechnique | None = None
    merge_candidate: ManagedTechnique | None = None
    similar: list[ManagedTechnique] = field(default_factory=list)
    candidates: list[ManagedTechnique] = field(default_factory=list)
    profile: PowerProfile | None = None

    @property
    def ok(self) -> bool:
        return self.outcome in (ALLOW, CREATED, SUGGEST_REFINE, ARCHIVED, REACTIVATED, MERGED)


# =============================================================================
# ===================== SIMILITUD DE NOMBRES ==================================
# =============================================================================

def _words(name: str) -> list[str]:
    normalized = re.sub(r"[^a-z0-9\s]", "", name.lower())
    return [w for w in normalized.split() if len(w) >= MIN_WORD_LENGTH]


def name_similarity(name1: str, name2: str) -> float:
    """
    Similitud entre dos nombres: palabras en común / máx(palabras).
    Ej: "Free Throw Reset" vs "Free Throw Routine" → 2/3 ≈ 0.67
    """
    if re.sub(r"[^a-z0-9\s]", "", name1.lower()).strip() == \
            re.sub(r"[^a-z0-9\s]", "", name2.lower()).strip():
        return 1.0
    words1, words2 = _words(name1), _words(name2)
    if not words1 or not words2:
        return 0.0
    common = [w for w in words1 if w in words2]
    return len(common) / max(len(words1), len(words2))


def find_similar(inventory: SectionInventory, name: str) -> list[ManagedTechnique]:
    """Códigos (activos o archivados) con similitud > 0.3"""
    return [
        t for t in inventory.active_techniques + inventory.archived_techniques
        if name_similarity(name, t.name) > REFINE_SIMILARITY
    ]


def archive_candidates(inventory: SectionInventory, profile: PowerProfile) -> list[ManagedTechnique]:
    """Los 3 activos que menos se echarían de menos"""

    def sort_key(technique: ManagedTechnique):
        power = profile.techniques.get(technique.id)
        if power is None:
            return (technique.created_at, 0)
        return (power.last_used_at, power.power_percentage)

    return sorted(inventory.active_techniques, key=sort_key)[:ARCHIVE_CANDIDATES_COUNT]


# =============================================================================
# ===================== CONSULTAS =============================================
# =============================================================================

def find_technique(inventory: SectionInventory, technique_id: str) -> ManagedTechnique | None:
    for technique in inventory.active_techniques + inventory.archived_techniques:
        if technique.id == technique_id:
            return technique
    return None


def is_archived(inventories: dict[str, SectionInventory], technique_id: str) -> bool:
    """Un código no registrado en ningún inventario cuenta como activo"""
    for inventory in inventories.values():
        for technique in inventory.archived_techniques:
            if technique.id == technique_id:
                return True
    return False


def archived_ids(inventories: dict[str, SectionInventory]) -> set[str]:
    return {t.id for inv in inventories.values() for t in inv.archived_techniques}


def can_add_active(inventory: SectionInventory) -> bool:
    return len(inventory.active_techniques) < MAX_ACTIVE_PER_SECTION


def section_stats(inventory: SectionInventory) -> dict:
    active = len(inventory.active_techniques)
    return {
        "active_count": active,
        "archived_count": len(inventory.archived_techniques),
        "total_created": inventory.total_created,
        "can_add_more": active < MAX_ACTIVE_PER_SECTION,
        "slots_remaining": max(0, MAX_ACTIVE_PER_SECTION - active),
    }


# =============================================================================
# ===================== CREAR =================================================
# =============================================================================

def check_creation(inventory: SectionInventory, profile: PowerProfile, name: str) -> SlotOutcome:
    """
    Guía para crear un código nuevo (no modifica nada).
    Orden: fusión → capacidad → refinar → permitir.
    """
    validate_identifier(name, "name")
    similar = find_similar(inventory, name)
    merge_candidate = next(
        (t for t in similar if name_similarity(name, t.name) > MERGE_SIMILARITY), None
    )

    if merge_candidate:
        return SlotOutcome(SUGGEST_MERGE, inventory=inventory,
                           merge_candidate=merge_candidate, similar=similar)

    if not can_add_active(inventory):
        return SlotOutcome(CAPACITY_FULL, inventory=inventory, similar=similar,
                           candidates=archive_candidates(inventory, profile))

    if similar:
        return SlotOutcome(SUGGEST_REFINE, inventory=inventory, similar=similar)

    return SlotOutcome(ALLOW, inventory=inventory)


def create_technique(inventory: SectionInventory, profile: PowerProfile, technique_id: str,
                     name: str, now: datetime, force: bool = False) -> SlotOutcome:
    """
    Crea un código activo en la sección.
    `force=True` salta la sugerencia de fusión (pero NUNCA el límite de 7).
    """
    validate_identifier(technique_id, "technique_id")
    now = validate_timestamp(now, "now")
    section = validate_section(inventory.section)

    existing = find_technique(inventory, technique_id)
    if existing is not None:
        return SlotOutcome(ALREADY_EXISTS, inventory=inventory, technique=existing)

    power = profile.techniques.get(technique_id)
    if power is not None and power.section != section:
        raise InvalidInput(f"El código {technique_id!r} ya existe en {power.section}")

    guidance = check_creation(inventory, profile, name)
    if guidance.outcome == SUGGEST_MERGE and not force:
        return guidance
    if not can_add_active(inventory):
        return SlotOutcome(CAPACITY_FULL, inventory=inventory, similar=guidance.similar,
                           candidates=archive_candidates(inventory, profile))

    inventory = inventory.model_copy(deep=True)
    technique = ManagedTechnique(id=technique_id, name=name, section=section, created_at=now)
    inventory.active_techniques.append(technique)
    inventory.total_created += 1
    inventory.last_created_at = now
    logger.info(f"Código {technique_id!r} creado en {section}")
    return SlotOutcome(CREATED, inventory=inventory, technique=technique, similar=guidance.similar)


# =============================================================================
# ===================== ARCHIVAR / REACTIVAR ==================================
# =============================================================================

def archive_technique(inventory: SectionInventory, technique_id: str, now: datetime) -> SlotOutcome:
    now = validate_timestamp(now, "now")
    index = next(
        (i for i, t in enumerate(inventory.active_techniques) if t.id == technique_id), None
    )
    if index is None:
        return SlotOutcome(NOT_FOUND, inventory=inventory)

    inventory = inventory.model_copy(deep=True)
    technique = inventory.active_techniques.pop(index)
    technique.status = "archived"
    technique.archived_at = now
    inventory.archived_techniques.append(technique)
    inventory.total_archived += 1
    logger.info(f"Código {technique_id!r} archivado en {inventory.section}")
    return SlotOutcome(ARCHIVED, inventory=inventory, technique=technique)


def reactivate_technique(inventory: SectionInventory, profile: PowerProfile,
                         technique_id: str, now: datetime) -> SlotOutcome:
    now = validate_timestamp(now, "now")
    index = next(
        (i for i, t in enumerate(inventory.archived_techniques) if t.id == technique_id), None
    )
    if index is None:
        return SlotOutcome(NOT_FOUND, inventory=inventory)

    if not can_add_active(inventory):
        return SlotOutcome(CAPACITY_FULL, inventory=inventory,
                           technique=inventory.archived_techniques[index],
                           candidates=archive_candidates(inventory, profile))

    inventory = inventory.model_copy(deep=True)
    technique = inventory.archived_techniques.pop(index)
    technique.status = "active"
    technique.archived_at = None
    technique.reactivated_at = now
    inventory.active_techniques.append(technique)
    inventory.total_archived = max(0, inventory.total_archived - 1)

    # Archivado no decae: el tiempo en el archivo no cuenta para el decay
    profile = profile.model_copy(deep=True)
    power = profile.techniques.get(technique_id)
    if power is not None:
        power.last_decay_checkpoint = now

    logger.info(f"Código {technique_id!r} reactivado en {inventory.section}")
    return SlotOutcome(REACTIVATED, inventory=inventory, technique=technique, profile=profile)


# =============================================================================
# ===================== FUSIONAR ==============================================
# =============================================================================

def merge_technique(inventory: SectionInventory, profile: PowerProfile, target_id: str,
                    source_name: str, now: datetime) -> SlotOutcome:
    """
    "Fusiona" un código nuevo en uno existente en vez de crearlo:
      - El existente gana +5 de poder (tope 100)
      - Recupera un uso del bonus de código nuevo
      - Se anota el duplicado y el nombre fusionado
    """
    now = validate_timestamp(now, "now")
    validate_identifier(source_name, "source_name")
    target = find_technique(inventory, target_id)
    if target is None:
        return SlotOutcome(NOT_FOUND, inventory=inventory)

    inventory = inventory.model_copy(deep=True)
    profile = profile.model_copy(deep=True)
    target = find_technique(inventory, target_id)
    target.duplicate_ids.append(f"merged_{int(now.timestamp() * 1000)}")
    target.refinements.append(f"Merged: {source_name}")

    power = profile.techniques.get(target_id)
    if power is not None:
        power.power_percentage = min(MAX_POWER, power.power_percentage + MERGE_POWER_BOOST)
        power.fresh_bonus_used = max(0, min(FRESH_BONUS_LOGS, power.fresh_bonus_used) - 1)
        profile.last_updated = now

    logger.info(f"{source_name!r} fusionado en {target_id!r}")
    return SlotOutcome(MERGED, inventory=inventory, technique=target, profile=profile)


# =============================================================================
# ===================== MIGRACIÓN (AL CARGAR) =================================
# =============================================================================

def migrate_legacy_record(record: dict) -> dict:
    """
    Registros antiguos llevaban a la vez `isActive` y `archived` (y fechas
    duplicadas `archiveTimestamp`/`archivedAt`). Aquí se convierten UNA vez
    al campo único `status`.
    """
    record = dict(record)
    if "status" not in record:
        archived = record.get("archived")
        is_active = record.get("isActive", record.get("is_active"))
        if archived is None:
            archived = is_active is False
        record["status"] = "archived" if archived else "active"

    archived_at = record.pop("archiveTimestamp", None) or record.pop("archivedAt", None)
    if archived_at is not None and not record.get("archived_at"):
        record["archived_at"] = archived_at
    reactivated_at = record.pop("reactivateTimestamp", None) or record.pop("reactivatedAt", None)
    if reactivated_at is not None and not record.get("reactivated_at"):
        record["reactivated_at"] = reactivated_at
    if "duplicateIds" in record:
        record["duplicate_ids"] = record.pop("duplicateIds") or []

    for legacy in ("archived", "isActive", "is_active", "archiveTimestamp", "archivedAt",
                   "reactivateTimestamp", "reactivatedAt"):
        record.pop(legacy, None)
    if record["status"] == "active":
        record["archived_at"] = None
    return record


def migrate_inventory(raw: dict) -> dict:
    """Migra un inventario crudo y recoloca cada código según su status"""
    raw = dict(raw)
    techniques = [
        migrate_legacy_record(t)
        for t in raw.get("active_techniques", []) + raw.get("archived_techniques", [])
    ]
    raw["active_techniques"] = [t for t in techniques if t["status"] == "active"]
    raw["archived_techniques"] = [t for t in techniques if t["status"] == "archived"]
    return raw
