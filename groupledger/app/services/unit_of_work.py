"""
services/unit_of_work.py — Transaction boundary for mutating requests.

Services only flush(). Routes wrap each mutating call in unit_of_work() so a
request either commits everything it flushed or nothing:

    with unit_of_work(db.session) as session:
        expense = expense_service.create_expense(group_id, g.user_id, data, session)

On a clean exit the session is committed. On any exception it is rolled
back and the exception propagates. Database failures (including a failed
commit) surface as PERSISTENCE_ERROR (503) so clients know to retry; the
original exception is chained, never shown to the client.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from groupledger.app.errors import AppError, ErrorCode

logger = logging.getLogger(__name__)


@contextmanager
def unit_of_work(session: Session) -> Iterator[Session]:
    try:
        yield session
        session.commit()
    except AppError as exc:
        session.rollback()
        logger.warning("Transaction rolled back: %s", exc.code)
        raise
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Transaction rolled back after database error: %s", exc)
        raise AppError(
            ErrorCode.PERSISTENCE_ERROR,
            "The change could not be saved. Please try again.",
            503,
        ) from exc
    except Exception:
        session.rollback()
        logger.error("Transaction rolled back after unexpected error", exc_info=True)
        raise
