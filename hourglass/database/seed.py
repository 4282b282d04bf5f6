"""
hourglass.database.seed — House Seeder
=======================================

Creates one ``houses`` row per configured house so the first point award
never has to race to create it.  Idempotent — existing rows (and their
totals) are never touched.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import Engine
from sqlalchemy.orm import Session

from hourglass.constants import DEFAULT_HOUSES
from hourglass.database.models import House

logger = logging.getLogger(__name__)


def seed_houses(engine: Engine, houses: Iterable[str] | None = None) -> int:
    """Insert missing house rows.  Returns the number inserted."""
    names = tuple(houses) if houses is not None else DEFAULT_HOUSES
    session = Session(engine)
    inserted = 0
    try:
        for name in names:
            if session.get(House, name) is None:
                session.add(House(name=name, monthly_points=0, all_time_points=0))
                inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded %d house rows.", inserted)
    return inserted
