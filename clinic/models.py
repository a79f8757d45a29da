from __future__ import annotations

import enum
from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, Enum, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic.auth_models import Account  # noqa: F401
from clinic.db import Base


class Gender(enum.Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"


class VisitorProfile(enum.Enum):
    PLAYER = "Player"
    VISITOR = "Visitor"
    OTHER = "Other"


class Staff(Base):
    __tablename__ = "staff"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # optional 1-1 link to a login account
    account_id: Mapped[int | None] = mapped_column(ForeignKey("accounts.id"), nullable=True, unique=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    modified_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    histories: Mapped[list["MedicalHistory"]] = relationship(back_populates="staff")
    visitors: Mapped[list["Visitor"]] = relationship(back_populates="staff")

    def __repr__(self) -> str:
        return f"Staff({self.name}, {self.phone_number})"


class Patient(Base):
    __tablename__ = "patients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    patient_code: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    gender: Mapped[Gender] = mapped_column(Enum(Gender), nullable=False)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    email: Mapped[str | None] = mapped_column(String(120), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    height: Mapped[float | None] = mapped_column(Float, nullable=True)  # cm
    weight: Mapped[float | None] = mapped_column(Float, nullable=True)  # kg
    allergies: Mapped[str | None] = mapped_column(Text, nullable=True)
    medical_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by: Mapped[int | None] = mapped_column(ForeignKey("accounts.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    owner: Mapped["Account"] = relationship()
    histories: Mapped[list["MedicalHistory"]] = relationship(back_populates="patient", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"Patient({self.patient_code} {self.name})"


class MedicalHistory(Base):
    __tablename__ = "medical_histories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    patient_id: Mapped[int] = mapped_column(ForeignKey("patients.id"), nullable=False)
    staff_id: Mapped[int | None] = mapped_column(ForeignKey("staff.id"), nullable=True)

    appointment_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    service_type: Mapped[str | None] = mapped_column(String(120), nullable=True)
    area_concern: Mapped[str | None] = mapped_column(Text, nullable=True)
    diagnosis_result: Mapped[str | None] = mapped_column(Text, nullable=True)
    pain_before: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 1..10
    pain_after: Mapped[int | None] = mapped_column(Integer, nullable=True)   # 1..10
    range_of_motion_impact: Mapped[str | None] = mapped_column(Text, nullable=True)
    treatments: Mapped[str | None] = mapped_column(Text, nullable=True)
    exercise: Mapped[str | None] = mapped_column(Text, nullable=True)
    homework: Mapped[str | None] = mapped_column(Text, nullable=True)
    recovery_tips: Mapped[str | None] = mapped_column(Text, nullable=True)
    recommended_next_session: Mapped[str | None] = mapped_column(Text, nullable=True)
    additional_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    body_annotation: Mapped[str | None] = mapped_column(Text, nullable=True)  # image URL

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    patient: Mapped["Patient"] = relationship(back_populates="histories")
    staff: Mapped["Staff"] = relationship(back_populates="histories")


class Visitor(Base):
    __tablename__ = "visitors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    visitor_name: Mapped[str] = mapped_column(String(120), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(30), nullable=False)
    visitor_profile: Mapped[VisitorProfile] = mapped_column(Enum(VisitorProfile), nullable=False)
    visitor_profile_other: Mapped[str | None] = mapped_column(String(120), nullable=True)

    staff_id: Mapped[int] = mapped_column(ForeignKey("staff.id"), nullable=False)
    filled_by: Mapped[str] = mapped_column(String(120), nullable=False)

    # NULL while the visitor is on site
    checked_out_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    modified_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    staff: Mapped["Staff"] = relationship(back_populates="visitors")
