from __future__ import annotations

from sqlalchemy import select

from clinic.db import db_session
from clinic.models import Staff


BASE_STAFF = [
    ("Front Desk", "0800-100"),
    ("Dr. Maya Hartono", "0800-101"),
    ("Rizal Pratama, PT", "0800-102"),
]


def seed_base() -> None:
    """
    Minimal data (idempotent): the staff members the visitor sign-in form
    needs to offer as hosts. Matches on phone number, which is unique.
    """
    with db_session() as s:
        for name, phone in BASE_STAFF:
            exists = s.execute(select(Staff).where(Staff.phone_number == phone)).scalar_one_or_none()
            if exists is None:
                s.add(Staff(name=name, phone_number=phone, active=True))
