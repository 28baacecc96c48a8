"""
Checklist catalog and the reference records checklists point at.

Definitions are validated here, at creation/update time, so the due-date
evaluator can assume well-formed recurrence fields (and degrade quietly when
an older record is not).
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError

from database import Database, NotFoundError
from recurrence import CUSTOM, LOOSE, known_periodicities, parse_time
from schemas import Category, Checklist, ChecklistType, Client, Location, User

logger = logging.getLogger(__name__)

CHECKLISTS = "checklists"
CLIENTS = "clients"
LOCATIONS = "locations"
CATEGORIES = "categories"
CHECKLIST_TYPES = "checklisttypes"
USERS = "users"


class CatalogError(ValueError):
    """Invalid definition; the message is user-facing."""


def qr_payload(checklist_id: str) -> str:
    """Text encoded in a checklist's QR code (the technician execution page)."""
    return f"/professional/{checklist_id}"


# ---------- Reference records ----------

def _same_name(a: Optional[str], b: Optional[str]) -> bool:
    return (a or "").strip().casefold() == (b or "").strip().casefold()


def _ensure_unique_name(
    db: Database,
    collection: str,
    name: str,
    message: str,
    exclude_id: Optional[str] = None,
    scope: Optional[Dict[str, Any]] = None,
) -> None:
    for doc in db.get_documents(collection, scope):
        if doc.get("id") != exclude_id and _same_name(doc.get("name"), name):
            raise CatalogError(message)


def _require(db: Database, collection: str, record_id: Optional[str], label: str) -> None:
    if record_id and db.get_document(collection, record_id) is None:
        raise NotFoundError(f"{label} not found")


def create_named(db: Database, collection: str, model: Type[BaseModel], data: Dict[str, Any], label: str) -> Dict[str, Any]:
    """Create a client, category or checklist type; names are unique, ignoring case."""
    _ensure_unique_name(db, collection, data.get("name"), f"{label} name already exists")
    return db.create_document(collection, model.model_validate(data))


def update_named(db: Database, collection: str, record_id: str, data: Dict[str, Any], label: str) -> Dict[str, Any]:
    if db.get_document(collection, record_id) is None:
        raise NotFoundError(f"{label} not found")
    if data.get("name"):
        _ensure_unique_name(db, collection, data["name"], f"{label} name already exists", exclude_id=record_id)
    return db.update_document(collection, record_id, data)


def create_client(db: Database, data: Dict[str, Any]) -> Dict[str, Any]:
    return create_named(db, CLIENTS, Client, data, "Client")


def create_category(db: Database, data: Dict[str, Any]) -> Dict[str, Any]:
    return create_named(db, CATEGORIES, Category, data, "Category")


def create_checklist_type(db: Database, data: Dict[str, Any]) -> Dict[str, Any]:
    return create_named(db, CHECKLIST_TYPES, ChecklistType, data, "Checklist type")


def create_location(db: Database, data: Dict[str, Any]) -> Dict[str, Any]:
    _require(db, CLIENTS, data.get("clientId"), "Client")
    _ensure_unique_name(
        db, LOCATIONS, data.get("name"),
        "A location with this name already exists for the selected client",
        scope={"clientId": data.get("clientId")},
    )
    return db.create_document(LOCATIONS, Location.model_validate(data))


def update_location(db: Database, record_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    existing = db.get_document(LOCATIONS, record_id)
    if existing is None:
        raise NotFoundError("Location not found")
    merged = {**existing, **data}
    _require(db, CLIENTS, data.get("clientId"), "Client")
    _ensure_unique_name(
        db, LOCATIONS, merged.get("name"),
        "A location with this name already exists for the selected client",
        exclude_id=record_id,
        scope={"clientId": merged.get("clientId")},
    )
    return db.update_document(LOCATIONS, record_id, data)


def find_user_by_username(db: Database, username: str) -> Optional[Dict[str, Any]]:
    users = db.get_documents(USERS, {"username": username}, limit=1)
    return users[0] if users else None


def create_user(db: Database, username: str, password_hash: str, name: str = "", is_admin: bool = False) -> Dict[str, Any]:
    if find_user_by_username(db, username):
        raise CatalogError("Username already exists")
    user = User(username=username, password=password_hash, name=name, is_admin=is_admin)
    return db.create_document(USERS, user)


def update_user(db: Database, record_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    existing = db.get_document(USERS, record_id)
    if existing is None:
        raise NotFoundError("User not found")
    username = data.get("username")
    if username and username != existing.get("username") and find_user_by_username(db, username):
        raise CatalogError("Username already exists")
    return db.update_document(USERS, record_id, data)


# ---------- Checklists ----------

def _normalize_items(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "id": item.get("id") or str(uuid.uuid4()),
            "description": item.get("description", ""),
            "requirePhoto": bool(item.get("requirePhoto", False)),
        }
        for item in items
    ]


def validate_checklist(db: Database, data: Dict[str, Any], existing: Optional[Dict[str, Any]] = None) -> None:
    """Raise CatalogError/NotFoundError unless the (merged) definition is valid."""
    _require(db, CLIENTS, data.get("clientId"), "Client")
    _require(db, LOCATIONS, data.get("locationId"), "Location")
    _require(db, CHECKLIST_TYPES, data.get("typeId"), "Checklist type")
    _require(db, USERS, data.get("assignedTo"), "User")

    if existing is None or "items" in data:
        items = data.get("items")
        if not isinstance(items, list) or not items:
            raise CatalogError("A checklist must have at least one item")

    merged = {**(existing or {}), **data}
    periodicity = merged.get("periodicity")
    if periodicity not in known_periodicities():
        raise CatalogError("Invalid periodicity")

    try:
        parsed = Checklist.model_validate({**merged, "id": merged.get("id") or "new", "items": []})
    except ValidationError as exc:
        raise CatalogError(f"Invalid checklist: {exc.errors()[0].get('msg')}") from exc

    if periodicity == CUSTOM and not parsed.custom_days:
        raise CatalogError("Custom periodicity requires specific days")
    if periodicity != LOOSE:
        if parse_time(merged.get("time")) is None:
            raise CatalogError("Recurring checklists require a time (HH:MM)")
        if parsed.validity is None:
            raise CatalogError("Recurring checklists require a validity date")


def create_checklist(db: Database, data: Dict[str, Any]) -> Checklist:
    validate_checklist(db, data)
    checklist_id = str(uuid.uuid4())
    record = {
        "id": checklist_id,
        "title": data.get("title", ""),
        "description": data.get("description") or "",
        "clientId": data.get("clientId"),
        "locationId": data.get("locationId"),
        "typeId": data.get("typeId"),
        "assignedTo": data.get("assignedTo") or None,
        "periodicity": data["periodicity"],
        "customDays": data.get("customDays") or [],
        "time": data.get("time") or None,
        "validity": data.get("validity") or None,
        "requirePhotos": bool(data.get("requirePhotos", False)),
        "items": _normalize_items(data["items"]),
        "active": True,
        "qrCode": qr_payload(checklist_id),
    }
    return Checklist.model_validate(db.create_document(CHECKLISTS, record))


def update_checklist(db: Database, checklist_id: str, data: Dict[str, Any]) -> Checklist:
    existing = db.get_document(CHECKLISTS, checklist_id)
    if existing is None:
        raise NotFoundError("Checklist not found")
    validate_checklist(db, data, existing)

    changes = dict(data)
    if "items" in changes:
        changes["items"] = _normalize_items(changes["items"])
    if "assignedTo" in changes:
        changes["assignedTo"] = changes["assignedTo"] or None
    return Checklist.model_validate(db.update_document(CHECKLISTS, checklist_id, changes))


def toggle_checklist(db: Database, checklist_id: str) -> Checklist:
    existing = db.get_document(CHECKLISTS, checklist_id)
    if existing is None:
        raise NotFoundError("Checklist not found")
    updated = db.update_document(CHECKLISTS, checklist_id, {"active": not existing.get("active", True)})
    return Checklist.model_validate(updated)


def load_checklists(db: Database, filter_dict: Optional[Dict[str, Any]] = None) -> List[Checklist]:
    checklists = []
    for doc in db.get_documents(CHECKLISTS, filter_dict):
        try:
            checklists.append(Checklist.model_validate(doc))
        except ValidationError:
            logger.warning("skipping malformed checklist record %r", doc.get("id"))
    return checklists


def get_checklist(db: Database, checklist_id: str) -> Optional[Checklist]:
    doc = db.get_document(CHECKLISTS, checklist_id)
    if not doc:
        return None
    try:
        return Checklist.model_validate(doc)
    except ValidationError:
        logger.warning("malformed checklist record %r", checklist_id)
        return None


def fetch_for_technician(db: Database, user_id: str) -> List[Checklist]:
    """Checklists assigned to the technician plus the loose pool (active or not)."""
    return [c for c in load_checklists(db) if c.assigned_to is None or c.assigned_to == user_id]
