# Overview: Row locking and commit handling for multi-row mutations.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError, InternalError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Products also carry version_id, so a lost update still fails at commit.
    """
    return query.with_for_update()


def commit_unit(action: str) -> None:
    """
    Commit the current unit of work or roll all of it back.

    - StaleDataError (optimistic lock lost) -> ConflictError
    - IntegrityError / other DB failures -> InternalError
    """
    try:
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        current_app.logger.warning("Concurrent update detected while trying to %s", action)
        raise ConflictError(f"Could not {action}: the record was modified concurrently, retry the request")
    except IntegrityError:
        db.session.rollback()
        current_app.logger.exception("Integrity failure while trying to %s", action)
        raise InternalError(f"Failed to {action}")
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Database failure while trying to %s", action)
        raise InternalError(f"Failed to {action}")
