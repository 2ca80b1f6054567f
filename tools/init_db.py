"""Create the relay tables and optionally seed categories and agents.

Usage::

    python tools/init_db.py --category Billing --category Shipping \
        --agent "Alice:123456789"
"""

from __future__ import annotations

import argparse
import logging
import os
import sys

from dotenv import load_dotenv
from sqlalchemy import select
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session

from supportrelay.models import AgentRow, CategoryRow
from supportrelay.models.session import create_schema, get_engine

logger = logging.getLogger("tools.init_db")


def _safe_url(db_url: str) -> str:
    """Return ``db_url`` with any password redacted for logging."""

    parsed = make_url(db_url)
    if parsed.password is None:
        return db_url
    return parsed.set(password="***").render_as_string(hide_password=False)


def _parse_agent(value: str) -> tuple[str, str]:
    name, sep, channel_user_id = value.rpartition(":")
    if not sep or not name.strip() or not channel_user_id.strip():
        raise argparse.ArgumentTypeError(
            f"Agents are given as NAME:TELEGRAM_USER_ID, got '{value}'"
        )
    return name.strip(), channel_user_id.strip()


def seed(
    session: Session,
    categories: list[str],
    agents: list[tuple[str, str]],
) -> tuple[int, int]:
    """Insert missing categories and agents; returns how many were added."""

    added_categories = 0
    for position, title in enumerate(categories):
        exists = session.execute(
            select(CategoryRow).where(CategoryRow.title == title)
        ).scalar_one_or_none()
        if exists is None:
            session.add(CategoryRow(title=title, sort_order=position))
            added_categories += 1

    added_agents = 0
    for name, channel_user_id in agents:
        exists = session.execute(
            select(AgentRow).where(AgentRow.channel_user_id == channel_user_id)
        ).scalar_one_or_none()
        if exists is None:
            session.add(AgentRow(name=name, channel_user_id=channel_user_id))
            added_agents += 1
    session.commit()
    return added_categories, added_agents


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--database-url", default=None, help="Defaults to $DATABASE_URL")
    parser.add_argument(
        "--category", action="append", default=[], help="Category title to seed"
    )
    parser.add_argument(
        "--agent",
        action="append",
        default=[],
        type=_parse_agent,
        help="Agent to seed as NAME:TELEGRAM_USER_ID",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    args = build_parser().parse_args(argv)
    database_url = args.database_url or os.getenv("DATABASE_URL")
    if not database_url:
        logger.error("DATABASE_URL is not configured")
        return 1

    engine = get_engine(database_url)
    tables = create_schema(engine)
    logger.info("Schema ready on %s: %s", _safe_url(database_url), ", ".join(tables))
    with Session(engine) as session:
        added_categories, added_agents = seed(session, args.category, args.agent)
    logger.info("Seeded %d categories and %d agents", added_categories, added_agents)
    return 0


if __name__ == "__main__":
    sys.exit(main())
