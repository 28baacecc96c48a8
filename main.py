import logging
import os
import time
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Any

from fastapi import APIRouter, FastAPI, HTTPException, Depends, Header, Request, UploadFile, File, Form, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import Field
import jwt
from passlib.context import CryptContext

import catalog
from catalog import CatalogError
from config import Settings
from database import Database, NotFoundError
from due_dates import compute_professional_view, due_status, is_due, visible_to
from executions import ExecutionError, ExecutionLog
from logging_config import configure_logging
from schemas import Category, Checklist, ChecklistType, Client, DueStatus, Execution, Location, ProfessionalView, Record, UserOut

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

router = APIRouter()


# ---------- Helpers ----------

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def create_access_token(data: dict, settings: Settings, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algo)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request) -> Database:
    return request.app.state.db


def get_execution_log(db: Database = Depends(get_db)) -> ExecutionLog:
    return ExecutionLog(db)


def get_current_user(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
    db: Database = Depends(get_db),
) -> Dict[str, Any]:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    try:
        scheme, token = authorization.split(" ")
        if scheme.lower() != "bearer":
            raise ValueError("Invalid auth scheme")
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algo])
        user_id = payload.get("sub")
        if not user_id:
            raise ValueError("Invalid token")
    except (ValueError, jwt.PyJWTError) as e:
        raise HTTPException(status_code=401, detail=f"Invalid token: {str(e)}")
    user = db.get_document(catalog.USERS, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid token: User not found")
    return user


def require_admin(current_user: dict = Depends(get_current_user)) -> Dict[str, Any]:
    if not current_user.get("isAdmin"):
        raise HTTPException(status_code=403, detail="Access denied. Administrators only")
    return current_user


def _user_out(user: dict) -> UserOut:
    return UserOut.model_validate(user)


def _get_or_404(db: Database, collection: str, record_id: str, label: str) -> Dict[str, Any]:
    doc = db.get_document(collection, record_id)
    if not doc:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return doc


def _visible_checklist_or_404(db: Database, checklist_id: str, current_user: dict) -> Checklist:
    checklist = catalog.get_checklist(db, checklist_id)
    if checklist is None or not checklist.active:
        raise HTTPException(status_code=404, detail="Checklist not found")
    if not current_user.get("isAdmin") and checklist.assigned_to not in (None, current_user["id"]):
        raise HTTPException(status_code=403, detail="Checklist is assigned to another user")
    return checklist


def _ensure_default_admin(db: Database, settings: Settings) -> None:
    if db.get_documents(catalog.USERS, limit=1):
        return
    catalog.create_user(
        db,
        username=settings.default_admin_username,
        password_hash=hash_password(settings.default_admin_password),
        name=settings.default_admin_name,
        is_admin=True,
    )
    logger.info("default admin user created")


# ---------- Public Routes ----------

@router.get("/")
def root():
    return {"message": "Checklist tracker API running"}


@router.get("/test")
def test_database(db: Database = Depends(get_db)):
    try:
        return {"backend": "ok", "db": "ok", "collections": db.list_collection_names()}
    except OSError as e:
        logger.exception("data directory not readable")
        return {"backend": "ok", "db": f"error: {str(e)}"}


class LoginPayload(Record):
    username: Optional[str] = None
    password: Optional[str] = None


@router.post("/auth/login")
def login(payload: LoginPayload, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    if not payload.username or not payload.password:
        raise HTTPException(status_code=400, detail="Username and password are required")
    user = catalog.find_user_by_username(db, payload.username)
    if not user or not verify_password(payload.password, user.get("password", "")):
        logger.info("login failed for %s", payload.username)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = create_access_token({"sub": user["id"], "isAdmin": bool(user.get("isAdmin"))}, settings)
    return {
        "id": user["id"],
        "username": user["username"],
        "name": user.get("name", ""),
        "isAdmin": bool(user.get("isAdmin")),
        "token": token,
    }


# ---------- Users ----------

class UserIn(Record):
    username: str
    password: str
    name: str = ""
    is_admin: bool = False


class UserUpdate(Record):
    username: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None
    is_admin: Optional[bool] = None


@router.get("/users", response_model=List[UserOut])
def list_users(db: Database = Depends(get_db), _admin: dict = Depends(require_admin)):
    return [_user_out(u) for u in db.get_documents(catalog.USERS)]


@router.post("/users", response_model=UserOut, status_code=201)
def create_user(data: UserIn, db: Database = Depends(get_db), _admin: dict = Depends(require_admin)):
    try:
        user = catalog.create_user(db, data.username, hash_password(data.password), data.name, data.is_admin)
    except CatalogError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _user_out(user)


@router.get("/users/{user_id}", response_model=UserOut)
def get_user(user_id: str, db: Database = Depends(get_db), _admin: dict = Depends(require_admin)):
    return _user_out(_get_or_404(db, catalog.USERS, user_id, "User"))


@router.put("/users/{user_id}", response_model=UserOut)
def update_user(user_id: str, data: UserUpdate, db: Database = Depends(get_db), _admin: dict = Depends(require_admin)):
    _get_or_404(db, catalog.USERS, user_id, "User")
    changes = data.model_dump(by_alias=True, exclude_none=True)
    # Only re-hash when a new password is supplied
    if changes.get("password"):
        changes["password"] = hash_password(changes["password"])
    else:
        changes.pop("password", None)
    try:
        user = catalog.update_user(db, user_id, changes)
    except CatalogError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _user_out(user)


@router.delete("/users/{user_id}")
def delete_user(user_id: str, db: Database = Depends(get_db), _admin: dict = Depends(require_admin)):
    if not db.delete_document(catalog.USERS, user_id):
        raise HTTPException(status_code=404, detail="User not found")
    return {"message": "User deleted"}


# ---------- Clients, categories, checklist types ----------

class ClientIn(Record):
    name: str
    contact_person: str = ""
    phone: str = ""
    email: str = ""
    address: str = ""


class ClientUpdate(Record):
    name: Optional[str] = None
    contact_person: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None


class NamedIn(Record):
    name: str
    description: str = ""


class NamedUpdate(Record):
    name: Optional[str] = None
    description: Optional[str] = None


def _register_named_routes(path: str, collection: str, model, payload_in, payload_update, label: str) -> None:
    """CRUD routes for records identified by a unique name."""

    @router.get(f"/{path}", response_model=List[model], name=f"list_{path}")
    def list_records(db: Database = Depends(get_db), _user: dict = Depends(get_current_user)):
        return db.get_documents(collection)

    @router.post(f"/{path}", response_model=model, status_code=201, name=f"create_{path}")
    def create_record(data: payload_in, db: Database = Depends(get_db), _admin: dict = Depends(require_admin)):
        try:
            return catalog.create_named(db, collection, model, data.model_dump(by_alias=True), label)
        except CatalogError as e:
            raise HTTPException(status_code=400, detail=str(e))

    @router.get(f"/{path}/{{record_id}}", response_model=model, name=f"get_{path}")
    def get_record(record_id: str, db: Database = Depends(get_db), _user: dict = Depends(get_current_user)):
        return _get_or_404(db, collection, record_id, label)

    @router.put(f"/{path}/{{record_id}}", response_model=model, name=f"update_{path}")
    def update_record(record_id: str, data: payload_update, db: Database = Depends(get_db), _admin: dict = Depends(require_admin)):
        _get_or_404(db, collection, record_id, label)
        try:
            return catalog.update_named(db, collection, record_id, data.model_dump(by_alias=True, exclude_none=True), label)
        except CatalogError as e:
            raise HTTPException(status_code=400, detail=str(e))

    @router.delete(f"/{path}/{{record_id}}", name=f"delete_{path}")
    def delete_record(record_id: str, db: Database = Depends(get_db), _admin: dict = Depends(require_admin)):
        if not db.delete_document(collection, record_id):
            raise HTTPException(status_code=404, detail=f"{label} not found")
        return {"message": f"{label} deleted"}


_register_named_routes("clients", catalog.CLIENTS, Client, ClientIn, ClientUpdate, "Client")
_register_named_routes("categories", catalog.CATEGORIES, Category, NamedIn, NamedUpdate, "Category")
_register_named_routes("checklisttypes", catalog.CHECKLIST_TYPES, ChecklistType, NamedIn, NamedUpdate, "Checklist type")


# ---------- Locations ----------

class LocationIn(Record):
    name: str
    client_id: str
    address: str = ""
    description: str = ""


class LocationUpdate(Record):
    name: Optional[str] = None
    client_id: Optional[str] = None
    address: Optional[str] = None
    description: Optional[str] = None


@router.get("/locations", response_model=List[Location])
def list_locations(
    client_id: Optional[str] = Query(None, alias="clientId"),
    db: Database = Depends(get_db),
    _user: dict = Depends(get_current_user),
):
    return db.get_documents(catalog.LOCATIONS, {"clientId": client_id} if client_id else None)


@router.post("/locations", response_model=Location, status_code=201)
def create_location(data: LocationIn, db: Database = Depends(get_db), _admin: dict = Depends(require_admin)):
    try:
        return catalog.create_location(db, data.model_dump(by_alias=True))
    except (CatalogError, NotFoundError) as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/locations/{location_id}", response_model=Location)
def get_location(location_id: str, db: Database = Depends(get_db), _user: dict = Depends(get_current_user)):
    return _get_or_404(db, catalog.LOCATIONS, location_id, "Location")


@router.put("/locations/{location_id}", response_model=Location)
def update_location(location_id: str, data: LocationUpdate, db: Database = Depends(get_db), _admin: dict = Depends(require_admin)):
    _get_or_404(db, catalog.LOCATIONS, location_id, "Location")
    try:
        return catalog.update_location(db, location_id, data.model_dump(by_alias=True, exclude_none=True))
    except (CatalogError, NotFoundError) as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/locations/{location_id}")
def delete_location(location_id: str, db: Database = Depends(get_db), _admin: dict = Depends(require_admin)):
    if not db.delete_document(catalog.LOCATIONS, location_id):
        raise HTTPException(status_code=404, detail="Location not found")
    return {"message": "Location deleted"}


# ---------- Checklists ----------

class ChecklistItemIn(Record):
    id: Optional[str] = None
    description: str
    require_photo: bool = False


class ChecklistIn(Record):
    title: str
    description: str = ""
    client_id: str
    location_id: str
    type_id: str
    assigned_to: Optional[str] = None
    periodicity: str
    custom_days: List[int] = Field(default_factory=list)
    time: Optional[str] = None
    validity: Optional[str] = None
    require_photos: bool = False
    items: List[ChecklistItemIn]


class ChecklistUpdate(Record):
    title: Optional[str] = None
    description: Optional[str] = None
    client_id: Optional[str] = None
    location_id: Optional[str] = None
    type_id: Optional[str] = None
    assigned_to: Optional[str] = None
    periodicity: Optional[str] = None
    custom_days: Optional[List[int]] = None
    time: Optional[str] = None
    validity: Optional[str] = None
    require_photos: Optional[bool] = None
    items: Optional[List[ChecklistItemIn]] = None


@router.get("/checklists", response_model=List[Checklist])
def list_checklists(
    client_id: Optional[str] = Query(None, alias="clientId"),
    location_id: Optional[str] = Query(None, alias="locationId"),
    user_id: Optional[str] = Query(None, alias="userId"),
    db: Database = Depends(get_db),
    log: ExecutionLog = Depends(get_execution_log),
    settings: Settings = Depends(get_settings),
    current_user: dict = Depends(get_current_user),
):
    if client_id:
        checklists = catalog.load_checklists(db, {"clientId": client_id})
    elif location_id:
        checklists = catalog.load_checklists(db, {"locationId": location_id})
    elif user_id:
        checklists = catalog.fetch_for_technician(db, user_id)
    else:
        checklists = catalog.load_checklists(db)

    if current_user.get("isAdmin"):
        return checklists

    # Technicians only see what is due for them right now
    now = datetime.now(timezone.utc)
    history = log.for_user(current_user["id"])
    return [
        c for c in visible_to(checklists, current_user["id"])
        if is_due(c, current_user["id"], now, history, settings.tzinfo())
    ]


@router.post("/checklists", response_model=Checklist, status_code=201)
def create_checklist(data: ChecklistIn, db: Database = Depends(get_db), _admin: dict = Depends(require_admin)):
    try:
        return catalog.create_checklist(db, data.model_dump(by_alias=True))
    except (CatalogError, NotFoundError) as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/checklists/active-qrcodes")
def active_qrcodes(
    client_id: Optional[str] = Query(None, alias="clientId"),
    db: Database = Depends(get_db),
    _admin: dict = Depends(require_admin),
):
    checklists = catalog.load_checklists(db, {"clientId": client_id} if client_id else None)
    clients = db.get_documents(catalog.CLIENTS)
    client_names = {c["id"]: c.get("name") for c in clients}
    location_names = {loc["id"]: loc.get("name") for loc in db.get_documents(catalog.LOCATIONS)}
    return {
        "checklists": [
            {
                "id": c.id,
                "title": c.title,
                "clientId": c.client_id,
                "clientName": client_names.get(c.client_id, "Unknown client"),
                "locationId": c.location_id,
                "locationName": location_names.get(c.location_id, "Unknown location"),
                "qrCode": c.qr_code or catalog.qr_payload(c.id),
            }
            for c in checklists
            if c.active
        ],
        "clients": clients,
    }


@router.get("/checklists/{checklist_id}", response_model=Checklist)
def get_checklist(checklist_id: str, db: Database = Depends(get_db), current_user: dict = Depends(get_current_user)):
    if current_user.get("isAdmin"):
        checklist = catalog.get_checklist(db, checklist_id)
        if checklist is None:
            raise HTTPException(status_code=404, detail="Checklist not found")
        return checklist
    return _visible_checklist_or_404(db, checklist_id, current_user)


@router.put("/checklists/{checklist_id}", response_model=Checklist)
def update_checklist(checklist_id: str, data: ChecklistUpdate, db: Database = Depends(get_db), _admin: dict = Depends(require_admin)):
    _get_or_404(db, catalog.CHECKLISTS, checklist_id, "Checklist")
    try:
        return catalog.update_checklist(db, checklist_id, data.model_dump(by_alias=True, exclude_unset=True))
    except (CatalogError, NotFoundError) as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/checklists/{checklist_id}")
def delete_checklist(checklist_id: str, db: Database = Depends(get_db), _admin: dict = Depends(require_admin)):
    if not db.delete_document(catalog.CHECKLISTS, checklist_id):
        raise HTTPException(status_code=404, detail="Checklist not found")
    return {"message": "Checklist deleted"}


@router.patch("/checklists/{checklist_id}/toggle", response_model=Checklist)
def toggle_checklist(checklist_id: str, db: Database = Depends(get_db), _admin: dict = Depends(require_admin)):
    try:
        return catalog.toggle_checklist(db, checklist_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/checklists/{checklist_id}/due", response_model=DueStatus)
def checklist_due(
    checklist_id: str,
    db: Database = Depends(get_db),
    log: ExecutionLog = Depends(get_execution_log),
    settings: Settings = Depends(get_settings),
    current_user: dict = Depends(get_current_user),
):
    checklist = _visible_checklist_or_404(db, checklist_id, current_user)
    history = log.query(checklist_id=checklist.id, user_id=current_user["id"])
    return due_status(checklist, current_user["id"], datetime.now(timezone.utc), history, settings.tzinfo())


# ---------- Technician view ----------

@router.get("/professional/view", response_model=ProfessionalView)
def professional_view(
    db: Database = Depends(get_db),
    log: ExecutionLog = Depends(get_execution_log),
    settings: Settings = Depends(get_settings),
    current_user: dict = Depends(get_current_user),
):
    user_id = current_user["id"]
    return compute_professional_view(
        user_id,
        catalog.fetch_for_technician(db, user_id),
        log.for_user(user_id),
        datetime.now(timezone.utc),
        settings.tzinfo(),
    )


# ---------- Executions ----------

class ExecutionIn(Record):
    checklist_id: str
    completed_items: List[str] = Field(default_factory=list)
    photos: Dict[str, str] = Field(default_factory=dict)


@router.get("/executions", response_model=List[Execution])
def list_executions(
    checklist_id: Optional[str] = Query(None, alias="checklistId"),
    user_id: Optional[str] = Query(None, alias="userId"),
    log: ExecutionLog = Depends(get_execution_log),
    _admin: dict = Depends(require_admin),
):
    return log.query(checklist_id=checklist_id, user_id=user_id)


@router.post("/executions", status_code=201)
def submit_execution(
    data: ExecutionIn,
    db: Database = Depends(get_db),
    log: ExecutionLog = Depends(get_execution_log),
    settings: Settings = Depends(get_settings),
    current_user: dict = Depends(get_current_user),
):
    checklist = _visible_checklist_or_404(db, data.checklist_id, current_user)
    try:
        execution = log.append(
            checklist,
            current_user["id"],
            datetime.now(timezone.utc),
            completed_items=data.completed_items,
            photos=data.photos,
            tz=settings.tzinfo(),
        )
    except ExecutionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"message": "Execution recorded", "execution": execution.model_dump(by_alias=True, mode="json")}


# ---------- Uploads ----------

def _safe_name(value: str) -> str:
    return os.path.basename(value).replace(" ", "_")


@router.post("/uploads/photos")
async def upload_photo(
    photo: UploadFile = File(...),
    checklist_id: str = Form(..., alias="checklistId"),
    item_id: str = Form(..., alias="itemId"),
    settings: Settings = Depends(get_settings),
    _user: dict = Depends(get_current_user),
):
    contents = await photo.read(settings.max_upload_bytes + 1)
    if not contents:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if len(contents) > settings.max_upload_bytes:
        raise HTTPException(status_code=413, detail="File too large")

    os.makedirs(settings.upload_dir, exist_ok=True)
    ext = os.path.splitext(photo.filename or "")[1]
    file_name = f"{_safe_name(checklist_id)}_{_safe_name(item_id)}_{int(time.time() * 1000)}{ext}"
    with open(os.path.join(settings.upload_dir, file_name), "wb") as fh:
        fh.write(contents)

    return {
        "message": "File uploaded",
        "filePath": f"/uploads/{os.path.basename(os.path.normpath(settings.upload_dir))}/{file_name}",
    }


# ---------- App ----------

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="Facilities Checklist Tracker API")
    app.state.settings = settings
    app.state.db = Database(settings.data_dir)
    _ensure_default_admin(app.state.db, settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=port)
