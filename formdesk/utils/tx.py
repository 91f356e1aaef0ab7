from __future__ import annotations

import logging

from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session


def commit_or_500(db: Session, logger: logging.Logger, what: str) -> None:
    """Commit the request transaction; on DB error roll back and answer 500."""
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("%s failed", what)
        raise HTTPException(status_code=500, detail=f"Failed to {what}")


def rollback_500(db: Session, logger: logging.Logger, what: str) -> HTTPException:
    """For `except SQLAlchemyError:` blocks around multi-step work."""
    db.rollback()
    logger.exception("%s failed", what)
    return HTTPException(status_code=500, detail=f"Failed to {what}")
