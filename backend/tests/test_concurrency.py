"""
Concurrency safeguards: retry helper and racing writers on a file-backed database.
"""

import threading

import pytest
from sqlalchemy.orm.exc import StaleDataError

from devicestock import create_app
from devicestock.errors import StateConflict, ValidationError
from devicestock.extensions import db
from devicestock.identity import Actor
from devicestock.models import Company, DailyStockSession, StatusLog
from devicestock.services import daily_stock_service, lifecycle_service
from devicestock.services.concurrency import run_with_retry


# =============================================================================
# RETRY HELPER
# =============================================================================

def test_stale_data_becomes_state_conflict_after_retries(db_session):
    calls = []

    def _op():
        calls.append(1)
        raise StaleDataError("version mismatch")

    with pytest.raises(StateConflict) as exc_info:
        run_with_retry(_op, attempts=3, backoff_base=0)

    assert len(calls) == 3
    assert exc_info.value.action == "concurrent_update"


def test_retry_succeeds_after_one_stale_attempt(db_session):
    calls = []

    def _op():
        calls.append(1)
        if len(calls) == 1:
            raise StaleDataError("version mismatch")
        return "done"

    assert run_with_retry(_op, attempts=3, backoff_base=0) == "done"
    assert len(calls) == 2


def test_other_errors_are_not_retried(db_session):
    calls = []

    def _op():
        calls.append(1)
        raise ValidationError("bad input")

    with pytest.raises(ValidationError):
        run_with_retry(_op, attempts=3, backoff_base=0)
    assert len(calls) == 1


# =============================================================================
# RACING WRITERS
# =============================================================================

@pytest.fixture
def file_app(tmp_path):
    """Separate app on a SQLite file so threads get their own connections."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.db'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 15}},
        'CONCURRENCY_RETRY_ATTEMPTS': 6,
    })
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _seed(app):
    with app.app_context():
        company = Company(name="Race Devices", code="RACE", is_active=True)
        db.session.add(company)
        db.session.commit()
        actor = Actor(id=7, name="Racer", email=None, company_id=company.id)

        item = lifecycle_service.create_item(actor, {
            "serial_number": "RACE-1",
            "device_type": "PHONE",
            "brand": "Google",
            "model_name": "Pixel 8",
            "name": "Pixel 8 256GB",
            "color": "Obsidian",
            "condition": "New",
        })
        lifecycle_service.make_available(item.id, actor, 30000, 60000)
        daily_stock_service.open_day(company.id, actor)
        return actor, item.id


def test_concurrent_sales_sell_once(file_app):
    actor, item_id = _seed(file_app)
    barrier = threading.Barrier(2)
    results = []
    errors = []
    lock = threading.Lock()

    def worker(customer):
        with file_app.app_context():
            try:
                barrier.wait()
                lifecycle_service.mark_sold(item_id, actor, 60000, {"name": customer})
                with lock:
                    results.append("ok")
            except StateConflict:
                with lock:
                    results.append("conflict")
            except Exception as exc:
                with lock:
                    errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(name,)) for name in ("First", "Second")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert not errors
    assert sorted(results) == ["conflict", "ok"]

    with file_app.app_context():
        item = lifecycle_service.get_item(item_id, actor)
        assert item.status == "SOLD"
        session = db.session.query(DailyStockSession).filter_by(company_id=actor.company_id).one()
        assert session.sales == 1
        assert session.cash_flow_sales_cents == 60000
        sold_logs = db.session.query(StatusLog).filter_by(item_id=item_id, status="SOLD").count()
        assert sold_logs == 1


def test_concurrent_counters_do_not_lose_updates(file_app):
    actor, _ = _seed(file_app)
    errors = []
    lock = threading.Lock()

    def worker():
        with file_app.app_context():
            try:
                for _ in range(5):
                    run_with_retry(lambda: daily_stock_service.record_transaction(actor.company_id, "return"))
            except Exception as exc:
                with lock:
                    errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert not errors
    with file_app.app_context():
        session = daily_stock_service.get_open_session(actor.company_id)
        assert session.returns == 20
