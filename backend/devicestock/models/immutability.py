"""
ORM-level immutability for audit rows.

ChangeRecord and ReturnRecord are append-only: once inserted they are
never updated or deleted. DailyStockSession rows are never deleted and
are frozen after close.

SQLAlchemy fires before_update / before_delete ahead of the SQL reaching
the database, so raising here aborts the flush and the enclosing unit of
work is rolled back by the caller.

Bulk UPDATE statements bypass these hooks; the daily stock service guards
its in-database increments with "closing_time IS NULL" instead.
"""

import logging

from sqlalchemy import event, inspect

from devicestock.errors import ImmutableRecordError

logger = logging.getLogger(__name__)


def _block(entity_type: str, target, operation: str, reason: str):
    logger.error(
        "immutability violation blocked: %s %s on %s",
        operation, entity_type, getattr(target, "id", None),
    )
    raise ImmutableRecordError(
        reason,
        entity_type=entity_type,
        entity_id=getattr(target, "id", None),
        operation=operation,
    )


def _check_change_record_update(mapper, connection, target):
    _block("ChangeRecord", target, "UPDATE", "Change history entries are immutable")


def _check_change_record_delete(mapper, connection, target):
    _block("ChangeRecord", target, "DELETE", "Change history entries cannot be deleted")


def _check_return_record_update(mapper, connection, target):
    _block("ReturnRecord", target, "UPDATE", "Return records are immutable")


def _check_return_record_delete(mapper, connection, target):
    _block("ReturnRecord", target, "DELETE", "Return records cannot be deleted")


def _was_closed(target) -> bool:
    hist = inspect(target).attrs.closing_time.history
    previous = list(hist.unchanged or ()) + list(hist.deleted or ())
    return any(value is not None for value in previous)


def _check_daily_session_update(mapper, connection, target):
    if _was_closed(target):
        _block("DailyStockSession", target, "UPDATE", "Closed daily stock sessions are frozen")


def _check_daily_session_delete(mapper, connection, target):
    _block("DailyStockSession", target, "DELETE", "Daily stock sessions are never deleted")


_LISTENERS = None


def _listener_table():
    from devicestock.models.documents import ChangeRecord, ReturnRecord
    from devicestock.models.daily_stock import DailyStockSession

    return (
        (ChangeRecord, "before_update", _check_change_record_update),
        (ChangeRecord, "before_delete", _check_change_record_delete),
        (ReturnRecord, "before_update", _check_return_record_update),
        (ReturnRecord, "before_delete", _check_return_record_delete),
        (DailyStockSession, "before_update", _check_daily_session_update),
        (DailyStockSession, "before_delete", _check_daily_session_delete),
    )


def register_immutability_listeners() -> None:
    """Install the listeners once; safe to call from every create_app()."""
    global _LISTENERS
    if _LISTENERS is None:
        _LISTENERS = _listener_table()
    for model, name, fn in _LISTENERS:
        if not event.contains(model, name, fn):
            event.listen(model, name, fn)
