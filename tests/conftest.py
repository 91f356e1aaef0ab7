"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database (tables created/dropped per test)
- Session-cookie minting for authenticated requests
- FastAPI TestClient with get_db overridden to the test session
- Small factories for users, entities, forms and submissions
"""
import json
import os
from datetime import datetime, timedelta
from typing import Generator

# Must be set before formdesk.core.config is imported.
os.environ["MYSQL_DSN"] = "sqlite+pysqlite:///:memory:"
os.environ["REDIS_URL"] = ""
os.environ["SECRET_KEY"] = "test-secret"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from formdesk.main import app
from formdesk.auth.deps import SESSION_COOKIE
from formdesk.core.security import issue_session
from formdesk.db.base import Base
from formdesk.db.session import engine, SessionLocal, get_db
from formdesk.db.models import (
    Entity,
    Form,
    FormField,
    FormResponse,
    FormSubmission,
    UniMapping,
    User,
)
from formdesk.db.models.user import Role


T0 = datetime(2025, 3, 1, 9, 0, 0)


# =============================================================================
# Database / client
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db: Session) -> Generator[TestClient, None, None]:
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def login_as(client: TestClient, user: User) -> TestClient:
    """Attach a signed session cookie for `user` to the client."""
    client.cookies.set(SESSION_COOKIE, issue_session(user.id))
    return client


# =============================================================================
# Factories
# =============================================================================

def make_user(db: Session, role: Role = Role.MEMBER, name: str | None = None) -> User:
    n = db.query(User).count() + 1
    user = User(
        name=name or f"{role.value.title()} {n}",
        email=f"{role.value}{n}@example.com",
        password_hash="not-a-real-hash",
        role=role,
        is_active=True,
    )
    db.add(user)
    db.commit()
    return user


def make_entity(db: Session, name: str, type: str = "local", entity_id: int | None = None) -> Entity:
    e = Entity(name=name, type=type)
    if entity_id is not None:
        e.entity_id = entity_id
    db.add(e)
    db.commit()
    return e


def make_form(db: Session, fields: list[tuple] | None = None, code: str = "signup") -> Form:
    """fields: (field_name, field_type[, options dict[, is_required]])"""
    fields = fields if fields is not None else [("name", "text"), ("phone", "phone"), ("email", "email")]
    form = Form(name=f"Form {code}", code=code)
    db.add(form)
    db.flush()
    for i, spec in enumerate(fields):
        name, ftype = spec[0], spec[1]
        options = spec[2] if len(spec) > 2 else None
        required = spec[3] if len(spec) > 3 else False
        db.add(
            FormField(
                form_id=form.id,
                field_name=name,
                field_label=name.title(),
                field_type=ftype,
                field_options=json.dumps(options) if options else None,
                is_required=required,
                sort_order=i,
            )
        )
    db.commit()
    db.refresh(form)
    return form


def field_id(form: Form, name: str) -> int:
    return next(f.id for f in form.fields if f.field_name == name)


def make_submission(
    db: Session,
    form: Form,
    values: dict[str, str | None],
    timestamp: datetime = T0,
    entity_id: int | None = None,
    duplicated: bool = False,
) -> FormSubmission:
    sub = FormSubmission(form_id=form.id, timestamp=timestamp, entity_id=entity_id, duplicated=duplicated)
    db.add(sub)
    db.flush()
    for name, value in values.items():
        db.add(FormResponse(submission_id=sub.id, field_id=field_id(form, name), value=value))
    db.commit()
    return sub


def hours(n: int) -> timedelta:
    return timedelta(hours=n)


# =============================================================================
# Common fixtures
# =============================================================================

@pytest.fixture
def admin(db: Session) -> User:
    return make_user(db, Role.ADMIN, name="Ada Admin")


@pytest.fixture
def lead(db: Session) -> User:
    return make_user(db, Role.LEAD, name="Lee Lead")


@pytest.fixture
def member(db: Session) -> User:
    return make_user(db, Role.MEMBER, name="Mo Member")


@pytest.fixture
def organic(db: Session) -> Entity:
    return make_entity(db, "organic", type="organic")


@pytest.fixture
def admin_client(client: TestClient, admin: User) -> TestClient:
    return login_as(client, admin)


@pytest.fixture
def uni_setup(db: Session) -> dict:
    """Two entities and a few university mappings."""
    hcm = make_entity(db, "AIESEC in HCM")
    hn = make_entity(db, "AIESEC in Hanoi")
    rows = [
        UniMapping(uni_name="Ho Chi Minh City - University X (English)", entity_id=hcm.entity_id),
        UniMapping(uni_name="Hanoi - Foreign Trade University", entity_id=hn.entity_id),
    ]
    db.add_all(rows)
    db.commit()
    return {"hcm": hcm, "hn": hn, "uni_x": rows[0], "ftu": rows[1]}
