from __future__ import annotations

import logging
import re
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.orm import selectinload

from clinic.auth_models import Account
from clinic.db import Base, db_session, engine
from clinic.exceptions import BadRequestError, EntityNotFoundError, require_fields
from clinic.models import Gender, MedicalHistory, Patient, Staff, Visitor, VisitorProfile
from clinic.schemas import (
    MedicalHistoryCreateIn,
    MedicalHistoryUpdateIn,
    PatientCreateIn,
    PatientUpdateIn,
    StaffCreateIn,
    StaffUpdateIn,
    VisitorCreateIn,
    VisitorUpdateIn,
)

logger = logging.getLogger("clinic.services")

PHONE_RE = re.compile(r"^[0-9+()-]+$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

PAIN_MIN, PAIN_MAX = 1, 10
HEIGHT_MAX_CM = 300
WEIGHT_MAX_KG = 500


# =========================
# Bootstrap DB
# =========================
def init_db() -> None:
    """Create missing tables."""
    Base.metadata.create_all(bind=engine)


# =========================
# Helpers
# =========================
def calc_age(date_of_birth: date | None, today: date | None = None) -> int | None:
    if date_of_birth is None:
        return None
    today = today or date.today()
    age = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age


def calc_bmi(height_cm: float | None, weight_kg: float | None) -> float | None:
    if not height_cm or not weight_kg:
        return None
    meters = height_cm / 100
    return round(weight_kg / (meters * meters), 1)


def time_range_bounds(
    time_range: str | None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    now: datetime | None = None,
) -> tuple[datetime | None, datetime | None]:
    """
    today / last7days / last30days relative to now; custom (or no range) uses
    the explicit bounds; all disables filtering.
    """
    now = now or datetime.utcnow()
    start_today = datetime.combine(now.date(), time.min)
    if time_range == "today":
        return start_today, start_today + timedelta(days=1)
    if time_range == "last7days":
        return start_today - timedelta(days=7), now
    if time_range == "last30days":
        return start_today - timedelta(days=30), now
    if time_range == "all":
        return None, None
    return date_from, date_to


def _check_phone(phone: str) -> None:
    if not PHONE_RE.match(phone):
        raise BadRequestError("Invalid phone number format", code="INVALID_PHONE")


def _check_pain(label: str, value: int | None) -> None:
    if value is not None and not (PAIN_MIN <= value <= PAIN_MAX):
        raise BadRequestError(f"{label} must be between {PAIN_MIN} and {PAIN_MAX}", code="PAIN_OUT_OF_RANGE")


def _naive_utc(value: datetime) -> datetime:
    # stored as naive UTC
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _apply_period(q, column, date_from: datetime | None, date_to: datetime | None):
    if date_from is not None:
        q = q.where(column >= date_from)
    if date_to is not None:
        q = q.where(column <= date_to)
    return q


# =========================
# Staff
# =========================
def staff_flat(st: Staff) -> dict:
    return {
        "id": st.id,
        "name": st.name,
        "phone_number": st.phone_number,
        "active": st.active,
        "account_id": st.account_id,
        "created_at": st.created_at,
        "modified_at": st.modified_at,
    }


def _staff_phone_taken(s, phone: str, exclude_id: int | None = None) -> bool:
    q = select(Staff.id).where(Staff.phone_number == phone)
    if exclude_id is not None:
        q = q.where(Staff.id != exclude_id)
    return s.execute(q.limit(1)).first() is not None


def _check_account_link(s, account_id: int | None, exclude_id: int | None = None) -> None:
    if account_id is None:
        return
    if s.get(Account, account_id) is None:
        raise BadRequestError(f"Account with ID {account_id} not found", code="ACCOUNT_NOT_FOUND")
    q = select(Staff.id).where(Staff.account_id == account_id)
    if exclude_id is not None:
        q = q.where(Staff.id != exclude_id)
    if s.execute(q.limit(1)).first() is not None:
        raise BadRequestError("Account is already linked to another staff member", code="ACCOUNT_ALREADY_LINKED")


def create_staff(data: StaffCreateIn) -> dict:
    require_fields("Staff", data.model_dump(), ["name", "phone_number"])
    _check_phone(data.phone_number)

    with db_session() as s:
        if _staff_phone_taken(s, data.phone_number):
            raise BadRequestError("Phone number already exists", code="PHONE_EXISTS")
        _check_account_link(s, data.account_id)
        st = Staff(
            name=data.name.strip(),
            phone_number=data.phone_number,
            active=data.active,
            account_id=data.account_id,
        )
        s.add(st)
        s.flush()
        return staff_flat(st)


def get_staff(staff_id: int) -> dict:
    with db_session() as s:
        st = s.get(Staff, staff_id)
        if st is None:
            raise EntityNotFoundError("Staff", staff_id)
        return staff_flat(st)


def list_staff(active_only: bool = True, search: str | None = None, limit: int | None = None) -> list[dict]:
    with db_session() as s:
        q = select(Staff)
        if active_only:
            q = q.where(Staff.active.is_(True))
        if search:
            like = f"%{search}%"
            q = q.where(or_(Staff.name.ilike(like), Staff.phone_number.ilike(like)))
        q = q.order_by(Staff.name.asc())
        if limit:
            q = q.limit(limit)
        return [staff_flat(st) for st in s.scalars(q)]


def search_active_staff(query: str | None) -> list[dict]:
    """Public dropdown search: every active member without a query, else top 20 matches."""
    if not query:
        return list_staff(active_only=True)
    return list_staff(active_only=True, search=query, limit=20)


def update_staff(staff_id: int, data: StaffUpdateIn) -> dict:
    changes = data.model_dump(exclude_unset=True)
    with db_session() as s:
        st = s.get(Staff, staff_id)
        if st is None:
            raise EntityNotFoundError("Staff", staff_id)

        phone = changes.get("phone_number")
        if phone:
            _check_phone(phone)
            if _staff_phone_taken(s, phone, exclude_id=staff_id):
                raise BadRequestError("Phone number already exists", code="PHONE_EXISTS")
        _check_account_link(s, changes.get("account_id"), exclude_id=staff_id)

        for key, value in changes.items():
            if key in ("name", "phone_number", "active") and value is None:
                continue
            setattr(st, key, value)
        st.modified_at = datetime.utcnow()
        return staff_flat(st)


def set_staff_active(staff_id: int, active: bool) -> dict:
    """Soft delete (active=False) or reactivation; staff rows are never removed."""
    with db_session() as s:
        st = s.get(Staff, staff_id)
        if st is None:
            raise EntityNotFoundError("Staff", staff_id)
        st.active = active
        st.modified_at = datetime.utcnow()
        return staff_flat(st)


# =========================
# Patients
# =========================
def patient_flat(p: Patient) -> dict:
    return {
        "id": p.id,
        "patient_code": p.patient_code,
        "name": p.name,
        "gender": p.gender.value,
        "age": calc_age(p.date_of_birth),
        "date_of_birth": p.date_of_birth,
        "phone": p.phone,
        "email": p.email,
        "address": p.address,
        "height": p.height,
        "weight": p.weight,
        "bmi": calc_bmi(p.height, p.weight),
        "allergies": p.allergies,
        "medical_notes": p.medical_notes,
        "created_by": p.created_by,
        "created_by_name": p.owner.username if p.owner else "-",
        "created_at": p.created_at,
        "updated_at": p.updated_at,
    }


def _patient_field_taken(s, column, value: str, exclude_id: int | None = None) -> bool:
    q = select(Patient.id).where(column == value)
    if exclude_id is not None:
        q = q.where(Patient.id != exclude_id)
    return s.execute(q.limit(1)).first() is not None


def _validate_patient_fields(s, fields: dict, exclude_id: int | None = None) -> None:
    email = fields.get("email")
    if email:
        if not EMAIL_RE.match(email):
            raise BadRequestError("Invalid email format", code="INVALID_EMAIL")
        if _patient_field_taken(s, Patient.email, email, exclude_id):
            raise BadRequestError("Email already exists", code="EMAIL_EXISTS")

    phone = fields.get("phone")
    if phone:
        _check_phone(phone)
        if _patient_field_taken(s, Patient.phone, phone, exclude_id):
            raise BadRequestError("Phone number already exists", code="PHONE_EXISTS")

    dob = fields.get("date_of_birth")
    if dob is not None and dob > date.today():
        raise BadRequestError("Date of birth cannot be in the future", code="INVALID_DATE_OF_BIRTH")

    height = fields.get("height")
    if height is not None and not (0 < height <= HEIGHT_MAX_CM):
        raise BadRequestError(f"Height must be between 1-{HEIGHT_MAX_CM} cm", code="INVALID_HEIGHT")

    weight = fields.get("weight")
    if weight is not None and not (0 < weight <= WEIGHT_MAX_KG):
        raise BadRequestError(f"Weight must be between 1-{WEIGHT_MAX_KG} kg", code="INVALID_WEIGHT")


def _next_patient_code(s) -> str:
    last_id = s.execute(select(func.max(Patient.id))).scalar() or 0
    n = last_id + 1
    while _patient_field_taken(s, Patient.patient_code, f"PAT-{n}"):
        n += 1
    return f"PAT-{n}"


def create_patient(data: PatientCreateIn, created_by: int | None = None) -> dict:
    fields = data.model_dump()
    require_fields("Patient", fields, ["name", "gender"])

    with db_session() as s:
        _validate_patient_fields(s, fields)

        code = (data.patient_code or "").strip()
        if code:
            if _patient_field_taken(s, Patient.patient_code, code):
                raise BadRequestError("Patient code already exists", code="PATIENT_CODE_EXISTS")
        else:
            code = _next_patient_code(s)

        fields.pop("patient_code")
        p = Patient(patient_code=code, created_by=created_by, **fields)
        p.name = p.name.strip()
        s.add(p)
        s.flush()
        s.refresh(p)
        logger.info("Patient %s created by account %s", p.patient_code, created_by)
        return patient_flat(p)


def _patient_query():
    return select(Patient).options(selectinload(Patient.owner))


def get_patient(patient_id: int) -> dict:
    with db_session() as s:
        p = s.scalars(_patient_query().where(Patient.id == patient_id)).first()
        if p is None:
            raise EntityNotFoundError("Patient", patient_id)
        return patient_flat(p)


def find_patient_by(field: str, value: str) -> dict | None:
    """Lookup by patient_code, phone or email; latest match wins for non-unique fields."""
    column = {"patient_code": Patient.patient_code, "phone": Patient.phone, "email": Patient.email}[field]
    with db_session() as s:
        p = s.scalars(_patient_query().where(column == value).order_by(Patient.id.desc())).first()
        return patient_flat(p) if p else None


def list_patients(
    search: str | None = None,
    gender: Gender | None = None,
    created_by: int | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int | None = None,
    offset: int | None = None,
) -> list[dict]:
    with db_session() as s:
        q = _patient_query()
        if search:
            like = f"%{search}%"
            q = q.where(
                or_(
                    Patient.name.ilike(like),
                    Patient.patient_code.ilike(like),
                    Patient.phone.ilike(like),
                    Patient.email.ilike(like),
                )
            )
        if gender is not None:
            q = q.where(Patient.gender == gender)
        if created_by is not None:
            q = q.where(Patient.created_by == created_by)
        q = _apply_period(q, Patient.created_at, date_from, date_to)
        q = q.order_by(Patient.id.desc())
        if limit:
            q = q.limit(limit)
        if offset:
            q = q.offset(offset)
        return [patient_flat(p) for p in s.scalars(q)]


def search_patients(term: str) -> list[dict]:
    return list_patients(search=term, limit=50)


def recent_patients(owner_id: int, limit: int = 10) -> list[dict]:
    # no role differentiation: every caller sees only the patients they created
    return list_patients(created_by=owner_id, limit=limit)


def update_patient(patient_id: int, data: PatientUpdateIn) -> dict:
    changes = data.model_dump(exclude_unset=True)
    with db_session() as s:
        p = s.get(Patient, patient_id)
        if p is None:
            raise EntityNotFoundError("Patient", patient_id)
        _validate_patient_fields(s, changes, exclude_id=patient_id)

        for key, value in changes.items():
            if key in ("name", "gender") and value is None:
                continue
            setattr(p, key, value)
        p.updated_at = datetime.utcnow()
        s.flush()
        s.refresh(p)
        return patient_flat(p)


def delete_patient(patient_id: int) -> None:
    with db_session() as s:
        p = s.get(Patient, patient_id)
        if p is None:
            raise EntityNotFoundError("Patient", patient_id)
        s.delete(p)


def is_patient_field_available(field: str, value: str, exclude_id: int | None = None) -> bool:
    column = {"phone": Patient.phone, "email": Patient.email}[field]
    with db_session() as s:
        return not _patient_field_taken(s, column, value, exclude_id)


def patient_stats(date_from: datetime | None = None, date_to: datetime | None = None) -> dict:
    with db_session() as s:
        base = _apply_period(select(Patient), Patient.created_at, date_from, date_to)
        patients = list(s.scalars(base.options(selectinload(Patient.owner)).order_by(Patient.id.desc())))

        by_gender: dict[str, int] = {}
        for p in patients:
            by_gender[p.gender.value] = by_gender.get(p.gender.value, 0) + 1

        ages = [calc_age(p.date_of_birth) for p in patients if p.date_of_birth]
        bmis = [p.weight / ((p.height / 100) ** 2) for p in patients if p.height and p.weight]

        return {
            "total_patients": len(patients),
            "patients_by_gender": [{"gender": g, "count": c} for g, c in sorted(by_gender.items())],
            "average_age": round(sum(ages) / len(ages)) if ages else None,
            "average_bmi": round(sum(bmis) / len(bmis), 1) if bmis else None,
            "recent_patients": [patient_flat(p) for p in patients[:10]],
        }


# =========================
# Medical history
# =========================
HISTORY_SORTABLE = {
    "id": MedicalHistory.id,
    "appointment_date": MedicalHistory.appointment_date,
    "created_at": MedicalHistory.created_at,
    "updated_at": MedicalHistory.updated_at,
    "service_type": MedicalHistory.service_type,
    "pain_before": MedicalHistory.pain_before,
    "pain_after": MedicalHistory.pain_after,
}


def history_flat(h: MedicalHistory) -> dict:
    return {
        "id": h.id,
        "patient_id": h.patient_id,
        "patient_name": h.patient.name if h.patient else "-",
        "patient_code": h.patient.patient_code if h.patient else "-",
        "appointment_date": h.appointment_date,
        "staff_id": h.staff_id,
        "staff_name": h.staff.name if h.staff else "-",
        "service_type": h.service_type,
        "area_concern": h.area_concern,
        "diagnosis_result": h.diagnosis_result,
        "pain_before": h.pain_before,
        "pain_after": h.pain_after,
        "pain_reduction": (
            h.pain_before - h.pain_after if h.pain_before is not None and h.pain_after is not None else None
        ),
        "range_of_motion_impact": h.range_of_motion_impact,
        "treatments": h.treatments,
        "exercise": h.exercise,
        "homework": h.homework,
        "recovery_tips": h.recovery_tips,
        "recommended_next_session": h.recommended_next_session,
        "additional_notes": h.additional_notes,
        "body_annotation": h.body_annotation,
        "created_at": h.created_at,
        "updated_at": h.updated_at,
    }


def _history_query():
    return select(MedicalHistory).options(
        selectinload(MedicalHistory.patient).selectinload(Patient.owner),
        selectinload(MedicalHistory.staff),
    )


def _validate_history_fields(s, fields: dict) -> None:
    staff_id = fields.get("staff_id")
    if staff_id is not None and s.get(Staff, staff_id) is None:
        raise BadRequestError("Staff not found", code="STAFF_NOT_FOUND")
    _check_pain("Pain before", fields.get("pain_before"))
    _check_pain("Pain after", fields.get("pain_after"))


def _checked_appointment_date(value: datetime, now: datetime | None = None) -> datetime:
    # at most one day in the past, counted from the start of today
    now = now or datetime.utcnow()
    earliest = datetime.combine(now.date(), time.min) - timedelta(days=1)
    appointment = _naive_utc(value)
    if appointment < earliest:
        raise BadRequestError(
            "Appointment date cannot be more than 1 day in the past", code="APPOINTMENT_IN_PAST"
        )
    return appointment


def create_medical_history(data: MedicalHistoryCreateIn, now: datetime | None = None) -> dict:
    fields = data.model_dump()
    require_fields("Medical History", fields, ["patient_id", "appointment_date"])

    appointment = _checked_appointment_date(data.appointment_date, now)

    with db_session() as s:
        if s.get(Patient, data.patient_id) is None:
            raise BadRequestError("Patient not found", code="PATIENT_NOT_FOUND")
        _validate_history_fields(s, fields)

        fields["appointment_date"] = appointment
        h = MedicalHistory(**fields)
        s.add(h)
        s.flush()
        h = s.scalars(_history_query().where(MedicalHistory.id == h.id)).one()
        return history_flat(h)


def get_medical_history(history_id: int) -> dict:
    with db_session() as s:
        h = s.scalars(_history_query().where(MedicalHistory.id == history_id)).first()
        if h is None:
            raise EntityNotFoundError("Medical History", history_id)
        return history_flat(h)


def list_medical_histories(
    patient_id: int | None = None,
    staff_id: int | None = None,
    service_type: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    search: str | None = None,
    limit: int | None = None,
    offset: int | None = None,
    sort_by: str | None = None,
    sort_order: str = "desc",
) -> list[dict]:
    with db_session() as s:
        q = _history_query()
        if patient_id is not None:
            q = q.where(MedicalHistory.patient_id == patient_id)
        if staff_id is not None:
            q = q.where(MedicalHistory.staff_id == staff_id)
        if service_type:
            q = q.where(MedicalHistory.service_type == service_type)
        if search:
            like = f"%{search}%"
            q = q.where(
                or_(
                    MedicalHistory.service_type.ilike(like),
                    MedicalHistory.area_concern.ilike(like),
                    MedicalHistory.diagnosis_result.ilike(like),
                    MedicalHistory.treatments.ilike(like),
                    MedicalHistory.exercise.ilike(like),
                    MedicalHistory.recovery_tips.ilike(like),
                    MedicalHistory.patient.has(Patient.name.ilike(like)),
                    MedicalHistory.patient.has(Patient.patient_code.ilike(like)),
                    MedicalHistory.staff.has(Staff.name.ilike(like)),
                )
            )
        q = _apply_period(q, MedicalHistory.appointment_date, date_from, date_to)

        if sort_by:
            column = HISTORY_SORTABLE.get(sort_by)
            if column is None:
                raise BadRequestError(f"Cannot sort by {sort_by}", code="INVALID_SORT")
            q = q.order_by(column.asc() if sort_order == "asc" else column.desc())
        else:
            q = q.order_by(MedicalHistory.appointment_date.desc(), MedicalHistory.id.desc())

        if limit:
            q = q.limit(limit)
        if offset:
            q = q.offset(offset)
        return [history_flat(h) for h in s.scalars(q)]


def search_medical_histories(term: str) -> list[dict]:
    return list_medical_histories(search=term, limit=50)


def recent_medical_histories(limit: int = 10) -> list[dict]:
    return list_medical_histories(limit=limit)


def histories_between(start: datetime, end: datetime) -> list[dict]:
    return list_medical_histories(date_from=start, date_to=end, sort_by="appointment_date", sort_order="asc")


def upcoming_appointments(days: int = 7, now: datetime | None = None) -> list[dict]:
    now = now or datetime.utcnow()
    return histories_between(now, now + timedelta(days=days))


def update_medical_history(history_id: int, data: MedicalHistoryUpdateIn, now: datetime | None = None) -> dict:
    changes = data.model_dump(exclude_unset=True)
    with db_session() as s:
        h = s.get(MedicalHistory, history_id)
        if h is None:
            raise EntityNotFoundError("Medical History", history_id)
        _validate_history_fields(s, changes)

        if changes.get("appointment_date") is not None:
            appointment = _naive_utc(changes["appointment_date"])
            if appointment != h.appointment_date:
                appointment = _checked_appointment_date(appointment, now)
            changes["appointment_date"] = appointment
        elif "appointment_date" in changes:
            changes.pop("appointment_date")

        for key, value in changes.items():
            setattr(h, key, value)
        h.updated_at = datetime.utcnow()
        s.flush()
        h = s.scalars(_history_query().where(MedicalHistory.id == history_id).execution_options(populate_existing=True)).one()
        return history_flat(h)


def delete_medical_history(history_id: int) -> None:
    with db_session() as s:
        h = s.get(MedicalHistory, history_id)
        if h is None:
            raise EntityNotFoundError("Medical History", history_id)
        s.delete(h)


def medical_history_stats(date_from: datetime | None = None, date_to: datetime | None = None) -> dict:
    with db_session() as s:
        where = _apply_period(select(MedicalHistory.id), MedicalHistory.appointment_date, date_from, date_to)
        ids = where.subquery()

        total = s.execute(select(func.count()).select_from(ids)).scalar_one()

        by_service = s.execute(
            select(MedicalHistory.service_type, func.count(MedicalHistory.id))
            .where(MedicalHistory.id.in_(select(ids.c.id)))
            .group_by(MedicalHistory.service_type)
            .order_by(MedicalHistory.service_type)
        ).all()

        avg_reduction = s.execute(
            select(func.avg(MedicalHistory.pain_before - MedicalHistory.pain_after)).where(
                MedicalHistory.id.in_(select(ids.c.id)),
                MedicalHistory.pain_before.is_not(None),
                MedicalHistory.pain_after.is_not(None),
            )
        ).scalar()

        recent = s.scalars(
            _apply_period(_history_query(), MedicalHistory.appointment_date, date_from, date_to)
            .order_by(MedicalHistory.appointment_date.desc())
            .limit(10)
        )

        return {
            "total_records": total,
            "records_by_service_type": [{"service_type": st, "count": c} for st, c in by_service],
            "average_pain_reduction": round(float(avg_reduction or 0), 2),
            "recent_records": [history_flat(h) for h in recent],
        }


# =========================
# Visitors
# =========================
def visitor_flat(v: Visitor) -> dict:
    return {
        "id": v.id,
        "visitor_name": v.visitor_name,
        "phone_number": v.phone_number,
        "visitor_profile": v.visitor_profile.value,
        "visitor_profile_other": v.visitor_profile_other,
        "staff_id": v.staff_id,
        "staff_name": v.staff.name if v.staff else "-",
        "filled_by": v.filled_by,
        "checked_out_at": v.checked_out_at,
        "on_site": v.checked_out_at is None,
        "created_at": v.created_at,
        "modified_at": v.modified_at,
    }


def _visitor_query():
    return select(Visitor).options(selectinload(Visitor.staff))


def _check_visitor_profile(profile: VisitorProfile, other: str | None) -> None:
    if profile == VisitorProfile.OTHER and not other:
        raise BadRequestError("visitor_profile_other is required when profile is Other", code="PROFILE_OTHER_REQUIRED")
    if profile != VisitorProfile.OTHER and other:
        raise BadRequestError(
            "visitor_profile_other should only be filled when profile is Other", code="PROFILE_OTHER_NOT_ALLOWED"
        )


def _active_staff(s, staff_id: int) -> Staff:
    st = s.get(Staff, staff_id)
    if st is None or not st.active:
        raise BadRequestError(f"Staff with ID {staff_id} not found or inactive", code="STAFF_NOT_FOUND")
    return st


def create_visitor(data: VisitorCreateIn, filled_by: str | None = None) -> dict:
    """
    Front-desk sign-in. `filled_by` falls back to the signed-in operator and
    then to the host staff member.
    """
    require_fields("Visitor", data.model_dump(), ["visitor_name", "phone_number", "visitor_profile", "staff_id"])
    _check_visitor_profile(data.visitor_profile, data.visitor_profile_other)
    _check_phone(data.phone_number)

    with db_session() as s:
        host = _active_staff(s, data.staff_id)
        v = Visitor(
            visitor_name=data.visitor_name.strip(),
            phone_number=data.phone_number,
            visitor_profile=data.visitor_profile,
            visitor_profile_other=data.visitor_profile_other,
            staff_id=host.id,
            filled_by=data.filled_by or filled_by or host.name,
        )
        s.add(v)
        s.flush()
        v.staff = host
        return visitor_flat(v)


def get_visitor(visitor_id: int) -> dict:
    with db_session() as s:
        v = s.scalars(_visitor_query().where(Visitor.id == visitor_id)).first()
        if v is None:
            raise EntityNotFoundError("Visitor", visitor_id)
        return visitor_flat(v)


def list_visitors(
    include_checked_out: bool = True,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    visitor_profile: VisitorProfile | None = None,
    search: str | None = None,
    limit: int | None = None,
) -> list[dict]:
    with db_session() as s:
        q = _apply_period(_visitor_query(), Visitor.created_at, date_from, date_to)
        if visitor_profile is not None:
            q = q.where(Visitor.visitor_profile == visitor_profile)
        if search:
            like = f"%{search}%"
            q = q.where(
                or_(Visitor.visitor_name.ilike(like), Visitor.phone_number.ilike(like), Visitor.filled_by.ilike(like))
            )
        if not include_checked_out:
            q = q.where(Visitor.checked_out_at.is_(None))
        q = q.order_by(Visitor.created_at.desc(), Visitor.id.desc())
        if limit:
            q = q.limit(limit)
        return [visitor_flat(v) for v in s.scalars(q)]


def recent_on_site_visitors(limit: int = 10) -> list[dict]:
    return list_visitors(include_checked_out=False, limit=limit)


def latest_visitor_by_phone(phone: str) -> dict | None:
    with db_session() as s:
        v = s.scalars(
            _visitor_query().where(Visitor.phone_number == phone).order_by(Visitor.created_at.desc(), Visitor.id.desc())
        ).first()
        return visitor_flat(v) if v else None


def update_visitor(visitor_id: int, data: VisitorUpdateIn) -> dict:
    changes = data.model_dump(exclude_unset=True)
    with db_session() as s:
        v = s.get(Visitor, visitor_id)
        if v is None:
            raise EntityNotFoundError("Visitor", visitor_id)

        profile = changes.get("visitor_profile") or v.visitor_profile
        if profile != VisitorProfile.OTHER and "visitor_profile_other" not in changes:
            # switching away from Other clears the free-text profile
            changes["visitor_profile_other"] = None
        other = changes.get("visitor_profile_other", v.visitor_profile_other)
        _check_visitor_profile(profile, other)

        if changes.get("phone_number"):
            _check_phone(changes["phone_number"])
        if changes.get("staff_id") is not None:
            _active_staff(s, changes["staff_id"])

        for key, value in changes.items():
            if value is None and key != "visitor_profile_other":
                continue
            setattr(v, key, value)
        v.modified_at = datetime.utcnow()
        s.flush()
        v = s.scalars(_visitor_query().where(Visitor.id == visitor_id).execution_options(populate_existing=True)).one()
        return visitor_flat(v)


def check_out_visitor(visitor_id: int) -> dict:
    """Set checked_out_at once; a second checkout is rejected."""
    with db_session() as s:
        v = s.scalars(_visitor_query().where(Visitor.id == visitor_id)).first()
        if v is None:
            raise EntityNotFoundError("Visitor", visitor_id)
        if v.checked_out_at is not None:
            raise BadRequestError("Visitor already checked out", code="ALREADY_CHECKED_OUT")
        now = datetime.utcnow()
        v.checked_out_at = now
        v.modified_at = now
        return visitor_flat(v)


def delete_visitor(visitor_id: int) -> None:
    with db_session() as s:
        v = s.get(Visitor, visitor_id)
        if v is None:
            raise EntityNotFoundError("Visitor", visitor_id)
        s.delete(v)


def visitor_stats(date_from: datetime | None = None, date_to: datetime | None = None) -> dict:
    with db_session() as s:
        visitors = list(s.scalars(_apply_period(_visitor_query(), Visitor.created_at, date_from, date_to)))

        by_profile: dict[str, int] = {}
        for v in visitors:
            by_profile[v.visitor_profile.value] = by_profile.get(v.visitor_profile.value, 0) + 1
        checked_out = sum(1 for v in visitors if v.checked_out_at is not None)

        on_site = s.scalars(
            _visitor_query()
            .where(Visitor.checked_out_at.is_(None))
            .order_by(Visitor.created_at.desc(), Visitor.id.desc())
            .limit(10)
        )

        return {
            "total_visitors": len(visitors),
            "visitors_by_profile": [{"visitor_profile": p, "count": c} for p, c in sorted(by_profile.items())],
            "checked_out_count": checked_out,
            "active_visitors": len(visitors) - checked_out,
            "recent_visitors": [visitor_flat(v) for v in on_site],
        }
