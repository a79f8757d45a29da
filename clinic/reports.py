from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from clinic.config import image_fetch_workers
from clinic.db import db_session
from clinic.image_utils import fetch_image_as_base64, is_valid_image_url
from clinic.models import MedicalHistory, Patient
from clinic.services import history_flat, patient_flat

logger = logging.getLogger("clinic.reports")

Fetcher = Callable[[str], "str | None"]


def _load_sessions(patient_id: int) -> tuple[dict | None, list[dict]]:
    """History of a patient, earliest appointment first (id breaks ties)."""
    with db_session() as s:
        rows = list(
            s.scalars(
                select(MedicalHistory)
                .options(
                    selectinload(MedicalHistory.patient).selectinload(Patient.owner),
                    selectinload(MedicalHistory.staff),
                )
                .where(MedicalHistory.patient_id == patient_id)
                .order_by(MedicalHistory.appointment_date.asc(), MedicalHistory.id.asc())
            )
        )
        if not rows:
            return None, []
        return patient_flat(rows[0].patient), [history_flat(h) for h in rows]


def _compose_session(number: int, record: dict, fetch: Fetcher) -> dict:
    url = record.get("body_annotation")
    encoded = None

    if is_valid_image_url(url):
        logger.info("Fetching image for session %d: %s", number, url)
        try:
            encoded = fetch(url)
        except Exception:
            logger.exception("Image fetch crashed for session %d", number)
            encoded = None
        if encoded is None:
            logger.warning("Failed to convert image for session %d", number)

    return {
        **record,
        "session_number": number,
        "session_date": record["appointment_date"],
        "body_annotation_url": url,
        "body_annotation_base64": encoded,
    }


def compose_progress_report(
    patient_id: int,
    fetch: Fetcher | None = None,
    max_workers: int | None = None,
) -> dict | None:
    """
    Chronological progress report for one patient.

    Returns None when the patient has no history records: callers answer
    "not found" rather than an empty report. Attachments are fetched
    concurrently, one task per session; the session list keeps the
    chronological order and a failed fetch only nulls its own
    `body_annotation_base64`.
    """
    patient, records = _load_sessions(patient_id)
    if patient is None:
        return None

    fetch = fetch or fetch_image_as_base64
    workers = max(1, min(max_workers or image_fetch_workers() or len(records), len(records)))

    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(_compose_session, i + 1, r, fetch) for i, r in enumerate(records)]
        sessions = [f.result() for f in futures]

    logger.info("Progress report for patient %s: %d sessions", patient_id, len(sessions))

    return {
        "patient": patient,
        "total_sessions": len(sessions),
        "sessions": sessions,
    }
