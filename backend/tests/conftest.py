import itertools
import os
from datetime import date

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Avant tout import backend.* : le engine applicatif ne doit pas viser la DB de dev
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite://")
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)

from backend.app.db.base import Base  # noqa: E402
from backend.app.db.models import models_v1  # noqa: F401,E402
from backend.services import catalog, receiving  # noqa: E402
from backend.services.receiving import Delivery, DeliveryLine  # noqa: E402


def make_engine(url: str):
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    engine = create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)

    # pysqlite : BEGIN explicite, sinon les SAVEPOINT (begin_nested) ne sont pas fiables
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


@pytest.fixture(scope="function")
def db_engine():
    """Schéma neuf par test (in-memory SQLite par défaut)."""
    engine = make_engine(TEST_DATABASE_URL)
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False, autocommit=False)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Session:
    """
    Session DB isolée par test.

    Les services commit eux-mêmes (unit_of_work) : l'isolation vient du
    schéma recréé à chaque test, pas d'un rollback englobant.
    """
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory):
    from fastapi.testclient import TestClient

    from backend.app.api.deps import get_db
    from backend.app.main import app

    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ---------- master data ----------
@pytest.fixture
def supplier(db_session):
    return catalog.create_supplier(db_session, name="Dental Supply Co", contact_person="Sales desk")


@pytest.fixture
def make_item(db_session):
    counter = itertools.count(1)

    def _make(name: str | None = None, **kwargs):
        n = next(counter)
        return catalog.create_item(
            db_session,
            code=kwargs.pop("code", f"ITM-{n:03d}"),
            name=name or f"Item {n}",
            **kwargs,
        )

    return _make


@pytest.fixture
def item(make_item):
    return make_item("Lidocaine 2% cartridge", unit_of_measure="cartridge")


@pytest.fixture
def receive_stock(db_session):
    """Réception directe (sans PO) d'un lot ; renvoie le StockBatch."""

    def _receive(item, qty, batch_no="B-001", expiry_date=None, unit_cost=10, received_by="tester"):
        si = receiving.receive_delivery(
            db_session,
            Delivery(
                date_received=date.today(),
                received_by=received_by,
                lines=[
                    DeliveryLine(
                        item_id=item.id,
                        batch_no=batch_no,
                        qty_received=qty,
                        unit_cost=unit_cost,
                        expiry_date=expiry_date,
                    )
                ],
            ),
        )
        return si.receipts[0].batch

    return _receive
