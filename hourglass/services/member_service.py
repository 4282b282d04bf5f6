"""
hourglass.services.member_service — Member Rows
================================================

Members are created lazily on their first voice activity (or the first time
they set a timezone) and never deleted here.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from hourglass.database.models import House, Member

logger = logging.getLogger(__name__)


class MemberNotFoundError(LookupError):
    """An operation that needs an existing member was given an unknown id."""

    def __init__(self, member_id: int) -> None:
        self.member_id = member_id
        super().__init__(f"Member {member_id} does not exist")


def get_or_create_member(
    session: Session,
    member_id: int,
    display_name: str | None = None,
    *,
    house: str | None = None,
) -> Member:
    """Fetch or insert a Member row.

    ``display_name`` and ``house`` refresh the stored values when given;
    ``None`` leaves them alone.  A new member has no reset cursors yet; the
    first daily pass only tidies their counters and the first monthly pass
    only stamps the cursor.
    """
    if house:
        _ensure_house(session, house)
    member = session.get(Member, member_id)
    if member is None:
        member = Member(
            id=member_id,
            display_name=display_name or str(member_id),
            house=house or None,
        )
        session.add(member)
        session.flush()
        logger.info("Created member %s (%s)", member_id, member.display_name)
        return member
    if display_name and member.display_name != display_name:
        member.display_name = display_name
    if house and member.house != house:
        member.house = house
    return member


def _ensure_house(session: Session, name: str) -> None:
    if session.get(House, name) is None:
        session.add(House(name=name, monthly_points=0, all_time_points=0))
        session.flush()


def get_member_or_raise(
    session: Session, member_id: int, *, for_update: bool = False
) -> Member:
    """Load a member, optionally locking the row (``SELECT … FOR UPDATE``).

    Raises
    ------
    MemberNotFoundError
        If no such member exists.
    """
    stmt = select(Member).where(Member.id == member_id)
    if for_update:
        stmt = stmt.with_for_update()
    member = session.scalar(stmt)
    if member is None:
        raise MemberNotFoundError(member_id)
    return member


def lock_member(session: Session, member_id: int) -> Member | None:
    """Lock and return a member row, or ``None`` when it does not exist."""
    return session.scalar(
        select(Member).where(Member.id == member_id).with_for_update()
    )


def house_from_roles(role_names: Iterable[str], houses: Iterable[str]) -> str | None:
    """First configured house whose name matches one of the member's roles."""
    lowered = {name.casefold() for name in role_names}
    for house in houses:
        if house.casefold() in lowered:
            return house
    return None
