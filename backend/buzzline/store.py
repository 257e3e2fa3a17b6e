"""Session store primitives used by the engine.

Two capabilities back every state change:

- ``atomic(label)`` wraps a unit of work in one transaction. It commits on
  success and rolls back on any exception. Database errors are logged and
  surfaced as ``StoreFailure``; they are never retried here.
- ``compare_and_swap(...)`` issues a single conditional ``UPDATE`` and
  returns the number of rows it touched. The condition is evaluated by the
  database as part of the write, so when several callers race on the same
  row at most one of them sees ``1``.
"""
from contextlib import contextmanager

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from buzzline import db
from buzzline.errors import StoreFailure


@contextmanager
def atomic(label):
    try:
        yield db.session
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error(f"[store-failure] op={label} error={exc}", exc_info=True)
        raise StoreFailure() from exc
    except Exception:
        db.session.rollback()
        raise


def compare_and_swap(model, key, expected=None, values=None, where=()):
    """Update the row identified by ``key`` only if ``expected`` still holds.

    ``key`` and ``expected`` map column names to values (``None`` compares as
    ``IS NULL``). ``where`` takes extra SQLAlchemy conditions. Returns the
    affected row count.
    """
    conditions = [getattr(model, name) == value for name, value in key.items()]
    conditions += [getattr(model, name) == value for name, value in (expected or {}).items()]
    conditions += list(where)
    stmt = (
        update(model)
        .where(*conditions)
        .values(**(values or {}))
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    return int(result.rowcount or 0)
