from __future__ import annotations

import argparse
import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from supportrelay.models import AgentRow, AnalyticsRow, CategoryRow, ChatThreadRow, CustomerRow
from supportrelay.models.session import (
    as_psycopg_url,
    as_sqlalchemy_url,
    create_schema,
    get_engine,
)
from tools import init_db


@pytest.fixture
def engine(tmp_path):
    engine = get_engine(f"sqlite+pysqlite:///{tmp_path / 'relay.db'}", future=True)
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session
        session.rollback()


def test_create_schema_lists_relay_tables(engine):
    assert create_schema(engine) == [
        "admin_users",
        "agent_activity_log",
        "agents",
        "analytics",
        "categories",
        "chat_threads",
        "customers",
        "messages",
    ]


def test_url_helpers():
    assert as_sqlalchemy_url("postgresql://u@h/db") == "postgresql+psycopg://u@h/db"
    assert as_sqlalchemy_url("postgresql+psycopg://u@h/db") == "postgresql+psycopg://u@h/db"
    assert as_psycopg_url("postgresql+psycopg://u@h/db") == "postgresql://u@h/db"


def test_thread_defaults(session: Session) -> None:
    customer = CustomerRow(username="alice", site_origin="https://shop.example")
    category = CategoryRow(title="Billing")
    session.add_all([customer, category])
    session.flush()

    thread = ChatThreadRow(customer_id=customer.id, category_id=category.id)
    session.add(thread)
    session.flush()

    assert isinstance(thread.id, uuid.UUID)
    assert thread.status == "open"
    assert thread.channel == "website"
    assert thread.assigned_agent_id is None
    assert customer.metadata_ == {}


def test_agent_channel_id_is_unique(session: Session) -> None:
    session.add(AgentRow(name="Ann", channel_user_id="4242"))
    session.flush()
    session.add(AgentRow(name="Also Ann", channel_user_id="4242"))
    with pytest.raises(IntegrityError):
        session.flush()


def test_analytics_is_unique_per_customer_and_category(session: Session) -> None:
    customer = CustomerRow(username="bob")
    category = CategoryRow(title="Sales")
    session.add_all([customer, category])
    session.flush()
    session.add(AnalyticsRow(customer_id=customer.id, category_id=category.id))
    session.flush()
    session.add(AnalyticsRow(customer_id=customer.id, category_id=category.id))
    with pytest.raises(IntegrityError):
        session.flush()


def test_seed_is_idempotent(session: Session) -> None:
    assert init_db.seed(session, ["Billing", "Shipping"], [("Ann", "4242")]) == (2, 1)
    assert init_db.seed(session, ["Billing", "Returns"], [("Ann", "4242")]) == (1, 0)

    titles = session.execute(
        select(CategoryRow.title).order_by(CategoryRow.sort_order, CategoryRow.title)
    ).scalars().all()
    assert titles == ["Billing", "Returns", "Shipping"]
    assert session.scalar(select(func.count()).select_from(AgentRow)) == 1


def test_parse_agent_argument():
    assert init_db._parse_agent("Ann Agent:4242") == ("Ann Agent", "4242")
    with pytest.raises(argparse.ArgumentTypeError):
        init_db._parse_agent("no-separator")


def test_main_seeds_database(tmp_path):
    url = f"sqlite+pysqlite:///{tmp_path / 'cli.db'}"
    assert init_db.main(["--database-url", url, "--category", "Billing", "--agent", "Ann:1"]) == 0

    engine = get_engine(url)
    with Session(engine) as session:
        assert session.execute(select(AgentRow.name)).scalar_one() == "Ann"
    engine.dispose()


def test_main_requires_database_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setattr(init_db, "load_dotenv", lambda: None)
    assert init_db.main([]) == 1
