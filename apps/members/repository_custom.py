"""Member queries built directly with the query builder (dynamic filters)."""

from typing import List, Optional
from sqlmodel import select
from .models import Member, Team


class MemberRepositoryCustom:
    """
    Mixed into MemberRepository; relies on the host repository's ``session``.

    Use this for queries whose shape depends on the arguments, which a
    declared Finder cannot express.
    """

    session = None

    async def find_member_custom(
        self,
        username: Optional[str] = None,
        min_age: Optional[int] = None,
        team_name: Optional[str] = None,
    ) -> List[Member]:
        """Members matching every filter that is not None, ordered by id."""
        statement = select(Member)
        if username is not None:
            statement = statement.where(Member.username == username)
        if min_age is not None:
            statement = statement.where(Member.age >= min_age)
        if team_name is not None:
            statement = statement.join(Member.team).where(Team.name == team_name)
        statement = statement.order_by(Member.id)

        result = await self.session.exec(statement)
        return list(result.all())
