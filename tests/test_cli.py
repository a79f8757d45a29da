from datetime import datetime

import pytest

from clinic import cli, services
from clinic.db import db_session
from clinic.models import MedicalHistory
from clinic.schemas import VisitorCreateIn


def test_init_seeds_staff(capsys):
    cli.main(["init"])
    cli.main(["list", "staff"])
    out = capsys.readouterr().out
    assert "Database initialised" in out
    assert "Front Desk" in out


def test_add_patient_and_list(capsys):
    cli.main(["add-patient", "--name", "Wati", "--gender", "FEMALE", "--phone", "0812-9"])
    cli.main(["list", "patients"])
    out = capsys.readouterr().out
    assert "Patient created: PAT-1" in out
    assert "Wati" in out


def test_service_errors_exit_nonzero(capsys):
    cli.main(["add-patient", "--name", "Wati", "--gender", "FEMALE", "--phone", "0812-9"])
    with pytest.raises(SystemExit) as exc:
        cli.main(["add-patient", "--name", "Wati 2", "--gender", "FEMALE", "--phone", "0812-9"])
    assert exc.value.code == 1
    assert "PHONE_EXISTS" in capsys.readouterr().out


def test_account_and_password_reset(capsys):
    cli.main(["create-account", "--username", "Frontdesk", "--password", "pw"])
    cli.main(["reset-password", "frontdesk", "--password", "pw2"])
    with pytest.raises(SystemExit) as exc:
        cli.main(["reset-password", "ghost", "--password", "x"])
    assert exc.value.code == 2
    out = capsys.readouterr().out
    assert "Account created: frontdesk" in out
    assert "password for 'frontdesk' updated" in out


def test_report_shortens_images(patient, monkeypatch, capsys):
    monkeypatch.setattr("clinic.reports.fetch_image_as_base64", lambda url: "data:image/png;base64," + "A" * 200)
    with db_session() as s:
        s.add(MedicalHistory(patient_id=patient["id"], appointment_date=datetime(2024, 1, 1),
                             body_annotation="https://img.example.com/x.png"))

    cli.main(["report", str(patient["id"])])
    out = capsys.readouterr().out
    assert '"total_sessions": 1' in out
    assert "A" * 100 not in out


def test_report_without_history(patient):
    with pytest.raises(SystemExit) as exc:
        cli.main(["report", str(patient["id"])])
    assert exc.value.code == 1


def test_checkout(staff, capsys):
    v = services.create_visitor(
        VisitorCreateIn(visitor_name="Eko", phone_number="0857-8", visitor_profile="Visitor", staff_id=staff["id"])
    )
    cli.main(["checkout", str(v["id"])])
    cli.main(["list", "visitors", "--all"])
    out = capsys.readouterr().out
    assert "Checked out: Eko" in out
    assert "left" in out
