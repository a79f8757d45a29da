"""
Clinic practice backend.

Layout:
- config.py       : environment settings (.env via python-dotenv) and logging setup
- db.py           : SQLAlchemy engine and sessions
- models.py       : ORM models for staff, patients, medical history, visitors
- auth_models.py  : Account table
- auth_security.py: password hashing, JWT tokens, credential verification
- auth_service.py : account use cases (signup, login, profile)
- gate.py         : FastAPI authorization dependencies
- exceptions.py   : typed request errors and their JSON rendering
- schemas.py      : pydantic request bodies
- services.py     : domain logic for staff, patients, medical history, visitors
- image_utils.py  : remote image fetch + data URI encoding
- reports.py      : patient progress report
- api_main.py     : FastAPI application
- seed.py         : base data
- cli.py          : command line front-desk tooling
"""
