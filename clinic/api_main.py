from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from clinic import auth_service, services
from clinic.config import configure_logging
from clinic.exceptions import BadRequestError, EntityNotFoundError, RequestError, request_error_handler
from clinic.gate import AuthContext, optional_auth, require_auth, require_developer
from clinic.models import Gender, VisitorProfile
from clinic.reports import compose_progress_report
from clinic.schemas import (
    LoginIn,
    MedicalHistoryCreateIn,
    MedicalHistoryUpdateIn,
    PatientCreateIn,
    PatientUpdateIn,
    ProfileIn,
    RegisterIn,
    ResetPasswordIn,
    StaffCreateIn,
    StaffUpdateIn,
    VisitorCreateIn,
    VisitorUpdateIn,
)
from clinic.seed import seed_base

app = FastAPI(title="Clinic API", version="1.0.0")

app.add_exception_handler(RequestError, request_error_handler)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "http_code": 422,
            "code": "VALIDATION_ERROR",
            "message": "Invalid request",
            "details": jsonable_encoder(exc.errors()),
        },
    )


def ok(data: Any = None, message: str = "OK", **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"http_code": 200, "message": message}
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body


# Startup

@app.on_event("startup")
def startup() -> None:
    configure_logging()
    services.init_db()
    seed_base()


@app.get("/")
def root() -> str:
    return "Hello"


# =========================
# Accounts
# =========================

@app.post("/v1/user/create")
def create_user(payload: RegisterIn) -> dict[str, Any]:
    return ok(auth_service.create_account(payload.username, payload.password), "Account created")


@app.post("/v1/user/login")
def login(payload: LoginIn) -> dict[str, Any]:
    return ok(auth_service.login(payload.username, payload.password), "Login successful")


@app.get("/v1/user/self")
def self_data(ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    return ok(auth_service.get_account_flat(ctx.account_id))


@app.get("/v1/user/all")
def all_users(ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    return ok(auth_service.list_accounts())


@app.post("/v1/user/reset-password")
def reset_password(payload: ResetPasswordIn, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    user = auth_service.reset_own_password(ctx.account_id, payload.current_password, payload.new_password)
    return ok(user, "Password reset successfully")


@app.put("/v1/user/profile")
def update_profile(payload: ProfileIn, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    return ok(auth_service.update_own_profile(ctx.account_id, payload.username), "Profile updated successfully")


@app.delete("/v1/user/account")
def delete_account(ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    return ok(auth_service.deactivate_account(ctx.account_id), "Account deleted successfully")


# Developer maintenance (static secret, no identity)

@app.get("/v1/dev/accounts", dependencies=[Depends(require_developer)])
def dev_all_accounts() -> dict[str, Any]:
    return ok(auth_service.list_accounts(include_inactive=True))


@app.post("/v1/dev/accounts/{account_id}/restore", dependencies=[Depends(require_developer)])
def dev_restore_account(account_id: int) -> dict[str, Any]:
    return ok(auth_service.restore_account(account_id), "Account restored")


# =========================
# Staff
# =========================

@app.get("/v1/staff/active")
def active_staff() -> dict[str, Any]:
    # public: feeds the visitor sign-in form
    return ok(services.list_staff(active_only=True))


@app.get("/v1/staff/search")
def search_staff(query: str | None = None) -> dict[str, Any]:
    return ok(services.search_active_staff(query))


@app.post("/v1/staff/create")
def create_staff(payload: StaffCreateIn, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    return ok(services.create_staff(payload), "Staff created successfully")


@app.get("/v1/staff/all")
def all_staff(
    active_only: bool = True,
    search: str | None = None,
    ctx: AuthContext = Depends(require_auth),
) -> dict[str, Any]:
    return ok(services.list_staff(active_only=active_only, search=search))


@app.get("/v1/staff/{staff_id}")
def get_staff(staff_id: int, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    return ok(services.get_staff(staff_id))


@app.put("/v1/staff/{staff_id}")
def update_staff(staff_id: int, payload: StaffUpdateIn, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    return ok(services.update_staff(staff_id, payload), "Staff updated successfully")


@app.delete("/v1/staff/{staff_id}")
def delete_staff(staff_id: int, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    services.set_staff_active(staff_id, False)
    return ok(message="Staff deactivated successfully")


@app.post("/v1/staff/{staff_id}/reactivate")
def reactivate_staff(staff_id: int, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    return ok(services.set_staff_active(staff_id, True), "Staff reactivated successfully")


# =========================
# Patients
# =========================

@app.get("/v1/patient/stats")
def patient_stats(
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    ctx: AuthContext = Depends(require_auth),
) -> dict[str, Any]:
    return ok(services.patient_stats(date_from, date_to), "Patient statistics retrieved successfully")


@app.get("/v1/patient/validate/email")
def validate_email(
    email: str = Query(...),
    exclude_id: int | None = None,
    ctx: AuthContext = Depends(require_auth),
) -> dict[str, Any]:
    valid = services.is_patient_field_available("email", email, exclude_id)
    return ok(message="Email is available" if valid else "Email already exists", valid=valid)


@app.get("/v1/patient/validate/phone")
def validate_phone(
    phone: str = Query(...),
    exclude_id: int | None = None,
    ctx: AuthContext = Depends(require_auth),
) -> dict[str, Any]:
    valid = services.is_patient_field_available("phone", phone, exclude_id)
    return ok(message="Phone is available" if valid else "Phone already exists", valid=valid)


@app.post("/v1/patient/create")
def create_patient(payload: PatientCreateIn, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    return ok(services.create_patient(payload, created_by=ctx.account_id), "Patient created successfully")


@app.get("/v1/patient/all")
def all_patients(
    search: str | None = None,
    gender: Gender | None = None,
    time_range: str | None = None,
    ctx: AuthContext = Depends(require_auth),
) -> dict[str, Any]:
    date_from, date_to = services.time_range_bounds(time_range)
    patients = services.list_patients(search=search, gender=gender, date_from=date_from, date_to=date_to)
    return ok(patients, "Patients retrieved successfully")


@app.get("/v1/patient/search")
def search_patients(query: str | None = None, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    if not query:
        raise BadRequestError("Search query is required")
    patients = services.search_patients(query)
    return ok(patients, "Search results retrieved", count=len(patients))


def _patient_lookup(field: str, value: str | None, label: str) -> dict[str, Any]:
    if not value:
        raise BadRequestError(f"{label} is required")
    patient = services.find_patient_by(field, value)
    if patient is None:
        raise EntityNotFoundError("Patient", value)
    return ok(patient, "Patient retrieved successfully")


@app.get("/v1/patient/phone")
def patient_by_phone(phone: str | None = None, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    return _patient_lookup("phone", phone, "Phone number")


@app.get("/v1/patient/email")
def patient_by_email(email: str | None = None, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    return _patient_lookup("email", email, "Email")


@app.get("/v1/patient/code")
def patient_by_code(code: str | None = None, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    return _patient_lookup("patient_code", code, "Patient code")


@app.get("/v1/patient/recent")
def recent_patients(limit: int = 10, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    patients = services.recent_patients(ctx.account_id, limit=limit)
    return ok(patients, "Recent patients retrieved", count=len(patients))


@app.get("/v1/patient/{patient_id}")
def get_patient(patient_id: int, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    return ok(services.get_patient(patient_id), "Patient retrieved successfully")


@app.put("/v1/patient/{patient_id}")
def update_patient(
    patient_id: int, payload: PatientUpdateIn, ctx: AuthContext = Depends(require_auth)
) -> dict[str, Any]:
    return ok(services.update_patient(patient_id, payload), "Patient updated successfully")


@app.delete("/v1/patient/{patient_id}")
def delete_patient(patient_id: int, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    services.delete_patient(patient_id)
    return ok(message="Patient deleted successfully")


# =========================
# Medical history
# =========================

@app.post("/v1/medical-history/create")
def create_history(payload: MedicalHistoryCreateIn, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    return ok(services.create_medical_history(payload), "Medical history created successfully")


@app.get("/v1/medical-history/all")
def all_histories(
    patient_id: int | None = None,
    staff_id: int | None = None,
    service_type: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    search: str | None = None,
    limit: int | None = None,
    offset: int | None = None,
    sort_by: str | None = None,
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    ctx: AuthContext = Depends(require_auth),
) -> dict[str, Any]:
    histories = services.list_medical_histories(
        patient_id=patient_id,
        staff_id=staff_id,
        service_type=service_type,
        date_from=date_from,
        date_to=date_to,
        search=search,
        limit=limit,
        offset=offset,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return ok(histories, "Medical histories retrieved successfully", count=len(histories))


@app.get("/v1/medical-history/search")
def search_histories(query: str | None = None, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    if not query:
        raise BadRequestError("Search query is required")
    histories = services.search_medical_histories(query)
    return ok(histories, "Search results retrieved", count=len(histories))


@app.get("/v1/medical-history/recent")
def recent_histories(limit: int = 10, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    histories = services.recent_medical_histories(limit)
    return ok(histories, "Recent medical histories retrieved", count=len(histories))


@app.get("/v1/medical-history/upcoming")
def upcoming(days: int = 7, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    appointments = services.upcoming_appointments(days)
    return ok(appointments, "Upcoming appointments retrieved", count=len(appointments))


@app.get("/v1/medical-history/date-range")
def histories_by_date_range(
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    ctx: AuthContext = Depends(require_auth),
) -> dict[str, Any]:
    if start_date is None or end_date is None:
        raise BadRequestError("Start date and end date are required")
    histories = services.histories_between(start_date, end_date)
    return ok(histories, "Medical histories retrieved for date range", count=len(histories))


@app.get("/v1/medical-history/stats")
def history_stats(
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    ctx: AuthContext = Depends(require_auth),
) -> dict[str, Any]:
    return ok(services.medical_history_stats(date_from, date_to), "Medical history statistics retrieved successfully")


@app.get("/v1/medical-history/patient/{patient_id}")
def histories_by_patient(
    patient_id: int,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    service_type: str | None = None,
    staff_id: int | None = None,
    ctx: AuthContext = Depends(require_auth),
) -> dict[str, Any]:
    histories = services.list_medical_histories(
        patient_id=patient_id,
        staff_id=staff_id,
        service_type=service_type,
        date_from=date_from,
        date_to=date_to,
    )
    return ok(histories, "Medical histories retrieved successfully", count=len(histories))


@app.get("/v1/medical-history/progress-report/{patient_id}")
def progress_report(patient_id: int, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    report = compose_progress_report(patient_id)
    if report is None:
        raise EntityNotFoundError("Medical history for patient", patient_id)
    return ok(report, "Progress report generated")


@app.get("/v1/medical-history/{history_id}")
def get_history(history_id: int, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    return ok(services.get_medical_history(history_id), "Medical history retrieved successfully")


@app.put("/v1/medical-history/{history_id}")
def update_history(
    history_id: int, payload: MedicalHistoryUpdateIn, ctx: AuthContext = Depends(require_auth)
) -> dict[str, Any]:
    return ok(services.update_medical_history(history_id, payload), "Medical history updated successfully")


@app.delete("/v1/medical-history/{history_id}")
def delete_history(history_id: int, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    services.delete_medical_history(history_id)
    return ok(message="Medical history deleted successfully")


# =========================
# Visitors
# =========================

@app.post("/v1/visitor/create")
def create_visitor(payload: VisitorCreateIn, ctx: AuthContext = Depends(optional_auth)) -> dict[str, Any]:
    # front-desk kiosk works without login; a signed-in operator is recorded as filler
    return ok(services.create_visitor(payload, filled_by=ctx.username), "Visitor signed in")


@app.get("/v1/visitor/all")
def all_visitors(
    include_checked_out: bool = True,
    time_range: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    visitor_profile: VisitorProfile | None = None,
    search: str | None = None,
    ctx: AuthContext = Depends(require_auth),
) -> dict[str, Any]:
    start, end = services.time_range_bounds(time_range, date_from, date_to)
    visitors = services.list_visitors(
        include_checked_out=include_checked_out,
        date_from=start,
        date_to=end,
        visitor_profile=visitor_profile,
        search=search,
    )
    return ok(visitors, count=len(visitors))


@app.get("/v1/visitor/stats")
def visitor_stats(
    time_range: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    ctx: AuthContext = Depends(require_auth),
) -> dict[str, Any]:
    start, end = services.time_range_bounds(time_range, date_from, date_to)
    return ok(services.visitor_stats(start, end))


@app.get("/v1/visitor/phone")
def visitor_by_phone(phone: str | None = None, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    if not phone:
        raise BadRequestError("Phone number is required")
    visitor = services.latest_visitor_by_phone(phone)
    if visitor is None:
        raise EntityNotFoundError("Visitor", phone)
    return ok(visitor)


@app.get("/v1/visitor/search")
def search_visitors(query: str | None = None, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    if not query:
        raise BadRequestError("Search query is required")
    visitors = services.list_visitors(search=query)
    return ok(visitors, count=len(visitors))


@app.get("/v1/visitor/recent")
def recent_visitors(limit: int = 10, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    visitors = services.recent_on_site_visitors(limit)
    return ok(visitors, count=len(visitors))


@app.get("/v1/visitor/{visitor_id}")
def get_visitor(visitor_id: int, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    return ok(services.get_visitor(visitor_id))


@app.put("/v1/visitor/{visitor_id}")
def update_visitor(
    visitor_id: int, payload: VisitorUpdateIn, ctx: AuthContext = Depends(require_auth)
) -> dict[str, Any]:
    return ok(services.update_visitor(visitor_id, payload), "Visitor updated successfully")


@app.post("/v1/visitor/{visitor_id}/checkout")
def checkout_visitor(visitor_id: int, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    return ok(services.check_out_visitor(visitor_id), "Visitor checked out successfully")


@app.delete("/v1/visitor/{visitor_id}")
def delete_visitor(visitor_id: int, ctx: AuthContext = Depends(require_auth)) -> dict[str, Any]:
    services.delete_visitor(visitor_id)
    return ok(message="Visitor deleted successfully")
