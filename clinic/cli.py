from __future__ import annotations

import argparse
import json

from clinic import auth_service
from clinic.config import configure_logging
from clinic.db import engine
from clinic.exceptions import RequestError
from clinic.models import Gender
from clinic.reports import compose_progress_report
from clinic.schemas import PatientCreateIn
from clinic.seed import seed_base
from clinic.services import (
    check_out_visitor,
    create_patient,
    init_db,
    list_patients,
    list_staff,
    list_visitors,
)


def cmd_init(args: argparse.Namespace) -> None:
    init_db()
    seed_base()
    print("Database initialised and seeded.")


def cmd_list(args: argparse.Namespace) -> None:
    if args.entity == "staff":
        for st in list_staff(active_only=not args.all):
            print(f"{st['id']} | {st['name']} | {st['phone_number']} | {'active' if st['active'] else 'inactive'}")
    elif args.entity == "patients":
        for p in list_patients():
            print(f"{p['id']} | {p['patient_code']} | {p['name']} | {p['phone'] or '-'}")
    elif args.entity == "visitors":
        for v in list_visitors(include_checked_out=args.all):
            status = "on site" if v["on_site"] else f"left {v['checked_out_at']:%Y-%m-%d %H:%M}"
            print(f"{v['id']} | {v['visitor_name']} | host: {v['staff_name']} | {status}")


def cmd_add_patient(args: argparse.Namespace) -> None:
    p = create_patient(
        PatientCreateIn(
            name=args.name,
            gender=Gender(args.gender),
            phone=args.phone,
            email=args.email,
        )
    )
    print(f"Patient created: {p['patient_code']} (id {p['id']})")


def cmd_create_account(args: argparse.Namespace) -> None:
    a = auth_service.create_account(args.username, args.password)
    print(f"Account created: {a['username']} (id {a['id']})")


def cmd_reset_password(args: argparse.Namespace) -> None:
    if not auth_service.set_password(args.username, args.password):
        print(f"Account '{args.username}' not found.")
        raise SystemExit(2)
    print(f"OK: password for '{args.username}' updated.")


def cmd_report(args: argparse.Namespace) -> None:
    """Print the progress report; image payloads are shortened unless --full."""
    report = compose_progress_report(args.patient_id)
    if report is None:
        print("No medical history found for this patient.")
        raise SystemExit(1)

    if not args.full:
        for session in report["sessions"]:
            encoded = session["body_annotation_base64"]
            if encoded:
                session["body_annotation_base64"] = encoded[:48] + "..."
    print(json.dumps(report, indent=2, default=str))


def cmd_checkout(args: argparse.Namespace) -> None:
    v = check_out_visitor(args.visitor_id)
    print(f"Checked out: {v['visitor_name']} at {v['checked_out_at']:%Y-%m-%d %H:%M}")


def cmd_db_path(args: argparse.Namespace) -> None:
    print("ENGINE URL:", engine.url)
    print("DB FILE   :", engine.url.database)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="clinic", description="Clinic backend command line")
    sub = p.add_subparsers(required=True)

    p_init = sub.add_parser("init", help="Create tables and load seed data")
    p_init.set_defaults(func=cmd_init)

    p_list = sub.add_parser("list", help="List entities")
    p_list.add_argument("entity", choices=["staff", "patients", "visitors"])
    p_list.add_argument("--all", action="store_true", help="Include inactive staff / checked-out visitors")
    p_list.set_defaults(func=cmd_list)

    p_addp = sub.add_parser("add-patient", help="Create a patient")
    p_addp.add_argument("--name", required=True)
    p_addp.add_argument("--gender", required=True, choices=[g.value for g in Gender])
    p_addp.add_argument("--phone", default=None)
    p_addp.add_argument("--email", default=None)
    p_addp.set_defaults(func=cmd_add_patient)

    p_acc = sub.add_parser("create-account", help="Create a login account")
    p_acc.add_argument("--username", required=True)
    p_acc.add_argument("--password", required=True)
    p_acc.set_defaults(func=cmd_create_account)

    p_reset = sub.add_parser("reset-password", help="Set a new password for an account")
    p_reset.add_argument("username")
    p_reset.add_argument("--password", required=True)
    p_reset.set_defaults(func=cmd_reset_password)

    p_rep = sub.add_parser("report", help="Patient progress report as JSON")
    p_rep.add_argument("patient_id", type=int)
    p_rep.add_argument("--full", action="store_true", help="Do not shorten embedded images")
    p_rep.set_defaults(func=cmd_report)

    p_out = sub.add_parser("checkout", help="Check a visitor out")
    p_out.add_argument("visitor_id", type=int)
    p_out.set_defaults(func=cmd_checkout)

    p_db = sub.add_parser("db-path", help="Show the database in use")
    p_db.set_defaults(func=cmd_db_path)

    return p


def main(argv: list[str] | None = None) -> None:
    configure_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    init_db()  # tables always present
    try:
        args.func(args)
    except RequestError as e:
        print(f"Error [{e.code}]: {e.message}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
