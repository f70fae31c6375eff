"""Members module repository implementations."""

from sqlalchemy import bindparam, func, update
from sqlalchemy.orm import contains_eager
from sqlmodel import select
from framework.repository.base import BaseRepository
from framework.query import (
    DeclaredQuery,
    EntityGraph,
    Finder,
    LockMode,
    ModifyingQuery,
    NativeQuery,
    Op,
    ResultMode,
)
from .models import Member, Team
from .repository_custom import MemberRepositoryCustom
from .schemas import MemberDto, MemberProjection, UsernameOnly, UsernameOnlyDto


class TeamRepository(BaseRepository[Team]):
    """Team repository."""

    def __init__(self, session):
        super().__init__(session, Team)

    find_by_name = Finder(Team).where("name").first()


class MemberRepository(MemberRepositoryCustom, BaseRepository[Member]):
    """Member repository."""

    # find_all / find_page / find_slice load each member's team in the same query
    entity_graph = EntityGraph(Member, "team")

    def __init__(self, session):
        super().__init__(session, Member)

    # --- derived finders ---------------------------------------------------

    find_by_username_and_age_greater_than = Finder(Member).where("username").where("age", Op.GT)

    find_top3_by = Finder(Member).top(3)

    find_by_team_name = Finder(Member).where("team.name").order_by("username")

    find_by_username_containing = Finder(Member).where("username", Op.CONTAINING, ignore_case=True)

    count_by_age = Finder(Member).where("age").count()

    exists_by_username = Finder(Member).where("username").exists()

    find_page_by = Finder(Member).paged()

    find_slice_by = Finder(Member).sliced()

    # --- literal queries ---------------------------------------------------

    find_by_username = DeclaredQuery(name="Member.find_by_username")

    find_user = DeclaredQuery(
        select(Member).where(
            Member.username == bindparam("username"),
            Member.age == bindparam("age"),
        )
    )

    find_usernames = DeclaredQuery(select(Member.username).order_by(Member.id))

    find_member_dto_list = DeclaredQuery(
        select(Member.id, Member.username, Team.name.label("team_name")).join(Member.team),
        projection=MemberDto,
    )

    # The count skips the team join: counting never needs it
    find_page_by_age = DeclaredQuery(
        select(Member).outerjoin(Member.team).where(Member.age == bindparam("age")),
        count_query=select(func.count(Member.id)).where(Member.age == bindparam("age")),
        mode=ResultMode.PAGE,
    )

    find_member_with_team = DeclaredQuery(
        select(Member).outerjoin(Member.team).options(contains_eager(Member.team)).order_by(Member.id)
    )

    # --- bulk updates ------------------------------------------------------

    bulk_inc_age = ModifyingQuery(update(Member).values(age=Member.age + 1))

    bulk_age_plus = ModifyingQuery(
        update(Member).where(Member.age >= bindparam("min_age")).values(age=Member.age + 1)
    )

    # --- hints -------------------------------------------------------------

    find_read_only_by_username = Finder(Member).where("username").read_only().first()

    find_lock_by_username = Finder(Member).where("username").lock(LockMode.PESSIMISTIC_WRITE)

    # --- projections -------------------------------------------------------

    find_username_projection_by = Finder(Member).project(UsernameOnly).order_by("id")

    find_username_dto_list_by = Finder(Member).project(UsernameOnlyDto).order_by("id")

    find_projection_by = Finder(Member).projected().order_by("id")

    find_by_native_projection = NativeQuery(
        "select m.id as id, m.username as username, t.name as team_name "
        "from member m left join team t on m.team_id = t.id",
        count_sql="select count(*) from member",
        projection=MemberProjection,
        mode=ResultMode.PAGE,
    )
