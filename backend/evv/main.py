from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import models
from .auth import Caller, current_caller, require_admin, require_caregiver
from .config import settings
from .database import db_session, engine, get_db
from .errors import EVVError, ValidationError
from .middleware import RequestLogMiddleware
from .schemas import (
    AuthData,
    AuthEnvelope,
    CaregiverShiftCreateRequest,
    ClientListData,
    ClientListEnvelope,
    ClientRead,
    LoginRequest,
    RegisterRequest,
    RoleListData,
    RoleListEnvelope,
    RoleRead,
    ShiftCreateRequest,
    ShiftData,
    ShiftEnvelope,
    ShiftListData,
    ShiftListEnvelope,
    ShiftRead,
    ShiftUpdateRequest,
    UserRead,
    VisitData,
    VisitEnvelope,
    VisitListData,
    VisitListEnvelope,
    VisitLogRequest,
    VisitRead,
)
from .services import (
    authenticate_user,
    create_shift,
    delete_shift,
    ensure_roles,
    list_all_shifts,
    list_caregiver_shifts,
    list_clients,
    list_roles,
    register_user,
    update_shift,
)
from .visits import Location, list_shift_visits, record_end, record_start

logger = logging.getLogger(__name__)


models.Base.metadata.create_all(bind=engine)
with db_session() as session:
    ensure_roles(session)

app = FastAPI(title=settings.app_name)
app.add_middleware(RequestLogMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(EVVError)
async def handle_evv_error(request: Request, exc: EVVError) -> JSONResponse:
    logger.warning(
        "%s %s failed with %s: %s",
        request.method,
        request.url.path,
        exc.status_code,
        exc.message,
    )
    return JSONResponse(exc.to_body(), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "path": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": error.get("msg", "Invalid value"),
            "code": error.get("type"),
        }
        for error in exc.errors()
    ]
    return await handle_evv_error(request, ValidationError("Validation error", errors=errors))


@app.exception_handler(Exception)
async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"status": "error", "message": "Internal server error"}, status_code=500)


def _shift_list(shifts: list[models.Shift]) -> ShiftListEnvelope:
    return ShiftListEnvelope(data=ShiftListData(shifts=[ShiftRead.model_validate(shift) for shift in shifts]))


def _auth_envelope(user: models.User, token: str) -> AuthEnvelope:
    return AuthEnvelope(data=AuthData(token=token, user=UserRead.model_validate(user)))


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


# ----------------------------------------------------------------------
# Reference data
# ----------------------------------------------------------------------


@app.get("/roles", response_model=RoleListEnvelope)
def roles(db: Session = Depends(get_db)) -> RoleListEnvelope:
    return RoleListEnvelope(data=RoleListData(roles=[RoleRead.model_validate(role) for role in list_roles(db)]))


@app.get("/clients", response_model=ClientListEnvelope)
def clients(
    _caller: Caller = Depends(current_caller),
    db: Session = Depends(get_db),
) -> ClientListEnvelope:
    items = [ClientRead.model_validate(client) for client in list_clients(db)]
    return ClientListEnvelope(data=ClientListData(clients=items))


# ----------------------------------------------------------------------
# Authentication
# ----------------------------------------------------------------------


@app.post("/auth/register", response_model=AuthEnvelope, status_code=status.HTTP_201_CREATED)
def auth_register(payload: RegisterRequest, db: Session = Depends(get_db)) -> AuthEnvelope:
    user, token = register_user(
        db,
        payload.email,
        payload.password,
        payload.first_name,
        payload.last_name,
        payload.role_id,
    )
    return _auth_envelope(user, token)


@app.post("/auth/login", response_model=AuthEnvelope)
def auth_login(payload: LoginRequest, db: Session = Depends(get_db)) -> AuthEnvelope:
    user, token = authenticate_user(db, payload.email, payload.password)
    return _auth_envelope(user, token)


# ----------------------------------------------------------------------
# Visits
# ----------------------------------------------------------------------


@app.post("/visits/start", response_model=VisitEnvelope, status_code=status.HTTP_201_CREATED)
def visit_start(
    payload: VisitLogRequest,
    caller: Caller = Depends(require_caregiver),
    db: Session = Depends(get_db),
) -> VisitEnvelope:
    location = Location(latitude=payload.latitude, longitude=payload.longitude)
    visit = record_start(db, str(payload.shift_id), caller.id, location)
    return VisitEnvelope(data=VisitData(visit=VisitRead.model_validate(visit)))


@app.post("/visits/end", response_model=VisitEnvelope, status_code=status.HTTP_201_CREATED)
def visit_end(
    payload: VisitLogRequest,
    caller: Caller = Depends(require_caregiver),
    db: Session = Depends(get_db),
) -> VisitEnvelope:
    location = Location(latitude=payload.latitude, longitude=payload.longitude)
    visit = record_end(db, str(payload.shift_id), caller.id, location)
    return VisitEnvelope(data=VisitData(visit=VisitRead.model_validate(visit)))


@app.get("/visits/shift/{shift_id}", response_model=VisitListEnvelope)
def visit_list(
    shift_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    sort_order: str = Query(default="asc", alias="sortOrder", pattern="^(asc|desc)$"),
    caller: Caller = Depends(require_caregiver),
    db: Session = Depends(get_db),
) -> VisitListEnvelope:
    visits = list_shift_visits(
        db,
        shift_id,
        caller.id,
        skip=(page - 1) * limit,
        limit=limit,
        descending=sort_order == "desc",
    )
    return VisitListEnvelope(data=VisitListData(visits=[VisitRead.model_validate(v) for v in visits]))


# ----------------------------------------------------------------------
# Shifts
# ----------------------------------------------------------------------


@app.get("/caregiver/shifts", response_model=ShiftListEnvelope)
def caregiver_shifts(
    caller: Caller = Depends(require_caregiver),
    db: Session = Depends(get_db),
) -> ShiftListEnvelope:
    return _shift_list(list_caregiver_shifts(db, caller.id))


@app.post("/caregiver/shifts", response_model=ShiftEnvelope, status_code=status.HTTP_201_CREATED)
def caregiver_create_shift(
    payload: CaregiverShiftCreateRequest,
    caller: Caller = Depends(require_caregiver),
    db: Session = Depends(get_db),
) -> ShiftEnvelope:
    shift = create_shift(db, payload.date, payload.client_id, caller.id)
    return ShiftEnvelope(data=ShiftData(shift=ShiftRead.model_validate(shift)))


@app.get("/shifts/caregivers", response_model=ShiftListEnvelope)
def all_caregiver_shifts(
    _admin: Caller = Depends(require_admin),
    db: Session = Depends(get_db),
) -> ShiftListEnvelope:
    return _shift_list(list_all_shifts(db))


@app.post("/shifts", response_model=ShiftEnvelope, status_code=status.HTTP_201_CREATED)
def admin_create_shift(
    payload: ShiftCreateRequest,
    _admin: Caller = Depends(require_admin),
    db: Session = Depends(get_db),
) -> ShiftEnvelope:
    shift = create_shift(db, payload.date, payload.client_id, payload.caregiver_id)
    return ShiftEnvelope(data=ShiftData(shift=ShiftRead.model_validate(shift)))


@app.put("/shifts/{shift_id}", response_model=ShiftEnvelope)
def admin_update_shift(
    shift_id: str,
    payload: ShiftUpdateRequest,
    _admin: Caller = Depends(require_admin),
    db: Session = Depends(get_db),
) -> ShiftEnvelope:
    changes = payload.model_dump(exclude_unset=True)
    shift = update_shift(db, shift_id, changes)
    return ShiftEnvelope(data=ShiftData(shift=ShiftRead.model_validate(shift)))


@app.delete("/shifts/{shift_id}", status_code=status.HTTP_204_NO_CONTENT)
def admin_delete_shift(
    shift_id: str,
    _admin: Caller = Depends(require_admin),
    db: Session = Depends(get_db),
) -> Response:
    delete_shift(db, shift_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
