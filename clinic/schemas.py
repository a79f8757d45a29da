from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field

from clinic.models import Gender, VisitorProfile


# Account

class RegisterIn(BaseModel):
    username: str
    password: str


class LoginIn(BaseModel):
    username: str
    password: str


class ResetPasswordIn(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=1)


class ProfileIn(BaseModel):
    username: str


# Staff

class StaffCreateIn(BaseModel):
    name: str
    phone_number: str
    active: bool = True
    account_id: int | None = None


class StaffUpdateIn(BaseModel):
    name: str | None = None
    phone_number: str | None = None
    active: bool | None = None
    account_id: int | None = None


# Patient

class PatientCreateIn(BaseModel):
    name: str
    gender: Gender
    patient_code: str | None = None
    date_of_birth: date | None = None
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    height: float | None = None
    weight: float | None = None
    allergies: str | None = None
    medical_notes: str | None = None


class PatientUpdateIn(BaseModel):
    # no patient_code: it never changes once assigned
    name: str | None = None
    gender: Gender | None = None
    date_of_birth: date | None = None
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    height: float | None = None
    weight: float | None = None
    allergies: str | None = None
    medical_notes: str | None = None


# Medical history

class MedicalHistoryFields(BaseModel):
    staff_id: int | None = None
    service_type: str | None = None
    area_concern: str | None = None
    diagnosis_result: str | None = None
    pain_before: int | None = None
    pain_after: int | None = None
    range_of_motion_impact: str | None = None
    treatments: str | None = None
    exercise: str | None = None
    homework: str | None = None
    recovery_tips: str | None = None
    recommended_next_session: str | None = None
    additional_notes: str | None = None
    body_annotation: str | None = None


class MedicalHistoryCreateIn(MedicalHistoryFields):
    patient_id: int
    appointment_date: datetime


class MedicalHistoryUpdateIn(MedicalHistoryFields):
    appointment_date: datetime | None = None


# Visitor

class VisitorCreateIn(BaseModel):
    visitor_name: str
    phone_number: str
    visitor_profile: VisitorProfile
    visitor_profile_other: str | None = None
    staff_id: int
    filled_by: str | None = None


class VisitorUpdateIn(BaseModel):
    visitor_name: str | None = None
    phone_number: str | None = None
    visitor_profile: VisitorProfile | None = None
    visitor_profile_other: str | None = None
    staff_id: int | None = None
    filled_by: str | None = None
