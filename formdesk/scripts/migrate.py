from __future__ import annotations

import logging
import os
import subprocess
import time

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from formdesk.core.config import settings

logger = logging.getLogger("formdesk.migrate")


def wait_for_db(engine, timeout_s: int = 60) -> None:
    """Wait until the database is accepting connections."""
    start = time.time()
    delay = 1.0

    while True:
        try:
            with engine.begin() as conn:
                conn.execute(text("SELECT 1"))
            return
        except OperationalError as e:
            if time.time() - start > timeout_s:
                raise
            logger.info("database not ready (%s), retrying in %.1fs", e.__class__.__name__, delay)
            time.sleep(delay)
            delay = min(delay * 1.5, 5.0)


def run(cmd: list[str]) -> int:
    p = subprocess.run(cmd, check=False)
    return p.returncode


def seed(db: Session) -> None:
    """Default admin + the organic entity (both idempotent)."""
    from formdesk.core.allocation import get_organic_entity
    from formdesk.core.security import hash_password
    from formdesk.db.models.entity import Entity
    from formdesk.db.models.user import Role, User

    if settings.AUTO_CREATE_ADMIN:
        email = settings.DEFAULT_ADMIN_EMAIL.strip().lower()
        if db.query(User).filter(User.email == email).first() is None:
            db.add(
                User(
                    name=settings.DEFAULT_ADMIN_NAME,
                    email=email,
                    password_hash=hash_password(settings.DEFAULT_ADMIN_PASSWORD),
                    role=Role.ADMIN,
                    is_active=True,
                )
            )
            logger.info("created default admin %s", email)

    if get_organic_entity(db) is None:
        db.add(Entity(name=settings.ORGANIC_ENTITY_NAME, type="organic"))
        logger.info("created organic entity")


def main() -> int:
    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    dsn = os.getenv("MYSQL_DSN") or settings.MYSQL_DSN
    engine = create_engine(dsn, pool_pre_ping=True)

    wait_for_db(engine, timeout_s=int(os.getenv("DB_WAIT_TIMEOUT", "90")))

    tables = set(inspect(engine).get_table_names())
    if "alembic_version" not in tables and "forms" in tables:
        # Existing schema without alembic tracking: stamp head
        rc = run(["alembic", "stamp", "head"])
    else:
        rc = run(["alembic", "upgrade", "head"])
    if rc != 0:
        logger.error("alembic exited with %s", rc)
        return rc

    from formdesk.db.session import SessionLocal

    db: Session = SessionLocal()
    try:
        seed(db)
        db.commit()
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
