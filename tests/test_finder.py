"""Query declaration test cases: validation at class creation, hints, projections, native queries."""
import pytest
from sqlalchemy import bindparam, update
from sqlalchemy.dialects import mysql
from sqlmodel import select

from framework.database.auditing import is_read_only
from framework.exceptions.data_access import IncorrectResultSizeError, InvalidPropertyPathError, QueryDeclarationError
from framework.exceptions.handler import InvalidSortPropertyError
from framework.pagination import Direction, PageRequest, Sort
from framework.query import (
    DeclaredQuery,
    EntityGraph,
    Finder,
    LockMode,
    ModifyingQuery,
    NativeQuery,
    Op,
    ResultMode,
    register_named_query,
)
from framework.query.declared import referenced_tables
from framework.repository.base import BaseRepository
from framework.repository.unit_of_work import UnitOfWork
from apps.members.models import Member
from apps.members.repository import MemberRepository
from apps.members.schemas import MemberDto, NestedClosedProjection, UsernameOnly, UsernameOnlyDto


class QueryDeclarationsRepository(BaseRepository[Member]):
    """Declarations exercised only by these tests."""

    def __init__(self, session):
        super().__init__(session, Member)

    find_one_by_username = Finder(Member).where("username").one()
    find_by_username_or_age = Finder(Member).where("username").or_where("age").order_by("id")
    find_by_age_between = Finder(Member).where("age", Op.BETWEEN).order_by("age", descending=True)
    find_by_age_range = Finder(Member).where("age", Op.GE).where("age", Op.LE)
    find_by_team_is_null = Finder(Member).where("team_id", Op.IS_NULL)
    find_by_username_in = Finder(Member).where("username", Op.IN).order_by("username")
    find_distinct_team_names = Finder(Member).select("team.name").distinct().order_by("team.name")
    find_distinct_team_name_page = Finder(Member).select("team.name").distinct().order_by("team.name").paged()
    find_projected = Finder(Member).projected()
    find_projected_by_age = Finder(Member).projected().order_by("age", descending=True)
    find_with_team_by_age = Finder(Member).where("age").fetch("team")
    find_for_share = Finder(Member).where("username").lock(LockMode.PESSIMISTIC_READ, nowait=True)


def compile_mysql(statement) -> str:
    return str(statement.compile(dialect=mysql.dialect()))


class TestDeclarationValidation:
    """Test invalid declarations fail when the query is bound to its class."""

    def test_unknown_property(self):
        """Test condition on a missing property."""
        with pytest.raises(QueryDeclarationError) as exc_info:
            Finder(Member).where("nickname").bind("MemberRepository", "find_by_nickname")
        assert exc_info.value.owner == "MemberRepository"
        assert exc_info.value.attribute == "find_by_nickname"
        assert "nickname" in str(exc_info.value)

    def test_relationship_as_condition(self):
        """Test condition must name a column, not a relationship."""
        with pytest.raises(QueryDeclarationError):
            Finder(Member).where("team").bind("MemberRepository", "find_by_team")

    def test_column_cannot_be_traversed(self):
        """Test path through a column."""
        with pytest.raises(QueryDeclarationError):
            Finder(Member).where("username.length").bind("MemberRepository", "find_by_username_length")

    def test_unknown_static_sort(self):
        """Test declared order on a missing property."""
        with pytest.raises(QueryDeclarationError):
            Finder(Member).order_by("nickname").bind("MemberRepository", "find_all_ordered")

    def test_conflicting_shapes(self):
        """Test incompatible builder options."""
        declarations = [
            Finder(Member).project(UsernameOnly).fetch("team"),
            Finder(Member).project(UsernameOnly).projected(),
            Finder(Member).select("username").read_only(),
            Finder(Member).top(3).paged(),
            Finder(Member).count().lock(),
        ]
        for declaration in declarations:
            with pytest.raises(QueryDeclarationError):
                declaration.bind("MemberRepository", "broken")

    def test_projection_field_must_resolve(self):
        """Test projection fields are matched to entity properties."""
        with pytest.raises(QueryDeclarationError):
            Finder(Member).project(MemberDto).bind("MemberRepository", "find_dto_by")

    def test_unknown_named_query(self):
        """Test reference to an unregistered named query."""
        with pytest.raises(QueryDeclarationError):
            DeclaredQuery(name="Member.find_by_nickname").bind("MemberRepository", "find_by_nickname")

    def test_declared_projection_needs_columns(self):
        """Test projection fields missing from the selected columns."""
        with pytest.raises(QueryDeclarationError):
            DeclaredQuery(select(Member.username), projection=MemberDto).bind("MemberRepository", "find_dto")

    def test_count_query_parameters_must_be_declared(self):
        """Test count query cannot use parameters the query lacks."""
        query = DeclaredQuery(
            select(Member),
            count_query=select(Member.id).where(Member.age == bindparam("age")),
            mode=ResultMode.PAGE,
        )
        with pytest.raises(QueryDeclarationError):
            query.bind("MemberRepository", "find_page_all")

    def test_native_unknown_table(self):
        """Test native SQL naming a table that is not mapped."""
        with pytest.raises(QueryDeclarationError):
            NativeQuery("select * from members_archive").bind("MemberRepository", "find_archived")

    def test_native_expression_from_is_not_a_table(self):
        """Test FROM inside a function call names a column, not a table."""
        query = NativeQuery("select username, extract(year from created_at) as joined from member")
        query.bind("MemberRepository", "find_join_years")
        assert query.sql.endswith("from member")

    def test_native_subquery_table_checked(self):
        """Test tables inside a parenthesized subquery are still validated."""
        with pytest.raises(QueryDeclarationError):
            NativeQuery("select * from member where id in (select member_id from members_archive)").bind(
                "MemberRepository", "find_archived_members"
            )

    def test_referenced_tables(self):
        """Test which names are read as tables."""
        sql = "select trim(both ' ' from m.username) from member m join team t on t.id = m.team_id"
        assert referenced_tables(sql) == ["member", "team"]

    def test_native_page_needs_columns(self):
        """Test paged native SQL needs its column names."""
        with pytest.raises(QueryDeclarationError):
            NativeQuery("select * from member", mode=ResultMode.PAGE).bind("MemberRepository", "find_native_page")

    def test_modifying_query_needs_dml(self):
        """Test modifying query rejects a select."""
        with pytest.raises(QueryDeclarationError):
            ModifyingQuery(select(Member)).bind("MemberRepository", "bulk_select")

    def test_entity_graph_paths(self):
        """Test entity graph paths must end at a relationship."""
        with pytest.raises(InvalidPropertyPathError):
            EntityGraph(Member, "username")
        assert EntityGraph(Member, "team")

    def test_invalid_declaration_fails_class_creation(self):
        """Test a bad declaration stops the repository class from being created."""
        # Python < 3.12 wraps errors from __set_name__ in RuntimeError
        with pytest.raises((QueryDeclarationError, RuntimeError)):
            class BrokenRepository(BaseRepository[Member]):
                find_by_nickname = Finder(Member).where("nickname")

    def test_named_query_registered_once(self):
        """Test registering the same name twice."""
        with pytest.raises(ValueError):
            register_named_query("Member.find_by_username", select(Member))

    def test_parameter_names(self):
        """Test parameter names derived from paths, with repeats numbered."""
        assert QueryDeclarationsRepository.find_by_age_range.parameter_names == ["age", "age_2"]
        assert QueryDeclarationsRepository.find_by_age_between.parameter_names == ["age_start", "age_end"]
        assert QueryDeclarationsRepository.find_by_team_is_null.parameter_names == []
        assert MemberRepository.find_by_team_name.parameter_names == ["team_name"]
        assert MemberRepository.find_user.parameter_names == ["username", "age"]


class TestStatements:
    """Test the SQL a declaration produces."""

    def test_pessimistic_write_lock(self, async_session):
        """Test write lock renders FOR UPDATE."""
        repository = MemberRepository(async_session)
        sql = compile_mysql(repository.find_lock_by_username.statement("member1"))
        assert "FOR UPDATE" in sql

    def test_pessimistic_read_lock(self, async_session):
        """Test read lock renders a shared lock."""
        repository = QueryDeclarationsRepository(async_session)
        sql = compile_mysql(repository.find_for_share.statement("member1"))
        assert "LOCK IN SHARE MODE" in sql or "FOR SHARE" in sql

    def test_no_lock_by_default(self, async_session):
        """Test plain finder takes no lock."""
        repository = MemberRepository(async_session)
        sql = compile_mysql(repository.find_by_username_and_age_greater_than.statement("test", 15))
        assert "FOR UPDATE" not in sql

    def test_relationship_condition_joins(self, async_session):
        """Test condition on team.name joins the team table."""
        repository = MemberRepository(async_session)
        sql = compile_mysql(repository.find_by_team_name.statement("teamA")).lower()
        assert "join team" in sql

    def test_paged_statement_bounds(self, async_session):
        """Test paged statement carries offset and limit."""
        repository = MemberRepository(async_session)
        statement = repository.find_page_by.statement(PageRequest.of(2, 3, Sort.by("username")))
        sql = compile_mysql(statement).lower()
        assert "order by" in sql
        assert "limit" in sql


class TestExecution:
    """Test declared queries against the database."""

    @pytest.mark.asyncio
    async def test_or_groups(self, uow: UnitOfWork, sample_members):
        """Test OR across condition groups."""
        async with uow:
            repository = uow.get_repository(QueryDeclarationsRepository, Member)
            result = await repository.find_by_username_or_age("member1", 40)
            assert [m.username for m in result] == ["member1", "member4"]

    @pytest.mark.asyncio
    async def test_between_and_in(self, uow: UnitOfWork, sample_members):
        """Test BETWEEN and IN operators."""
        async with uow:
            repository = uow.get_repository(QueryDeclarationsRepository, Member)
            between = await repository.find_by_age_between(15, 35)
            assert [m.age for m in between] == [30, 20]
            in_list = await repository.find_by_username_in(["member4", "member2", "nobody"])
            assert [m.username for m in in_list] == ["member2", "member4"]

    @pytest.mark.asyncio
    async def test_is_null(self, uow: UnitOfWork, member_repository: MemberRepository, sample_members):
        """Test IS NULL operator."""
        async with uow:
            await member_repository.save(Member(username="loner"))
            repository = uow.get_repository(QueryDeclarationsRepository, Member)
            assert [m.username for m in await repository.find_by_team_is_null()] == ["loner"]

    @pytest.mark.asyncio
    async def test_one_rejects_many(self, uow: UnitOfWork, member_repository: MemberRepository):
        """Test single-result finder with two matches."""
        async with uow:
            await member_repository.save(Member(username="twin"))
            await member_repository.save(Member(username="twin"))
            repository = uow.get_repository(QueryDeclarationsRepository, Member)

            with pytest.raises(IncorrectResultSizeError):
                await repository.find_one_by_username("twin")
            assert await repository.find_one_by_username("nobody") is None

    @pytest.mark.asyncio
    async def test_select_single_path(self, uow: UnitOfWork, sample_members):
        """Test finder selecting one column through a relationship."""
        async with uow:
            repository = uow.get_repository(QueryDeclarationsRepository, Member)
            assert await repository.find_distinct_team_names() == ["teamA", "teamB"]

    @pytest.mark.asyncio
    async def test_fetch_graph_on_finder(self, uow: UnitOfWork, sample_members, statistics):
        """Test fetch() loads the team with the finder's own query."""
        async with uow:
            repository = uow.get_repository(QueryDeclarationsRepository, Member)
            with statistics:
                result = await repository.find_with_team_by_age(20)
                team_names = [m.team.name for m in result]
            assert team_names == ["teamB"]
            assert statistics.statement_count == 1

    @pytest.mark.asyncio
    async def test_lock_executes(self, uow: UnitOfWork, member_repository: MemberRepository, sample_members):
        """Test locking finder runs (SQLite ignores the lock clause)."""
        async with uow:
            result = await member_repository.find_lock_by_username("member1")
            assert [m.username for m in result] == ["member1"]

    @pytest.mark.asyncio
    async def test_read_only_hint(self, uow: UnitOfWork, member_repository: MemberRepository, sample_members):
        """Test changes to an entity loaded read-only are never flushed."""
        async with uow:
            member = await member_repository.find_read_only_by_username("member1")
            member.username = "renamed"
        uow.clear()

        async with uow:
            assert await member_repository.find_read_only_by_username("member1") is not None
            assert await member_repository.find_by_username(username="renamed") == []

    @pytest.mark.asyncio
    async def test_read_only_hint_does_not_leak(self, uow: UnitOfWork, member_repository: MemberRepository, sample_members):
        """Test other entities in the same transaction are still dirty-checked."""
        async with uow:
            read_only = await member_repository.find_read_only_by_username("member1")
            other = (await member_repository.find_by_username(username="member2"))[0]
            assert is_read_only(uow.session.sync_session, read_only)
            assert not is_read_only(uow.session.sync_session, other)
            other.age = 99
        uow.clear()

        async with uow:
            reloaded = (await member_repository.find_by_username(username="member2"))[0]
            assert reloaded.age == 99


class TestProjections:
    """Test projection shapes."""

    @pytest.mark.asyncio
    async def test_closed_projection(self, uow: UnitOfWork, member_repository: MemberRepository, sample_members):
        """Test interface-style projection selects only the username."""
        async with uow:
            result = await member_repository.find_username_projection_by()
            assert result == [UsernameOnly(username=f"member{i}") for i in range(1, 5)]

    @pytest.mark.asyncio
    async def test_dto_projection(self, uow: UnitOfWork, member_repository: MemberRepository, sample_members):
        """Test class-based projection."""
        async with uow:
            result = await member_repository.find_username_dto_list_by()
            assert all(isinstance(item, UsernameOnlyDto) for item in result)
            assert [item.username for item in result] == [f"member{i}" for i in range(1, 5)]

    @pytest.mark.asyncio
    async def test_dynamic_projection(self, uow: UnitOfWork, member_repository: MemberRepository, sample_members):
        """Test projection type chosen by the caller."""
        async with uow:
            await member_repository.save(Member(username="loner"))

            nested = await member_repository.find_projection_by(NestedClosedProjection)
            assert [(p.username, p.team_name) for p in nested] == [
                ("member1", "teamA"),
                ("member2", "teamB"),
                ("member3", "teamA"),
                ("member4", "teamB"),
                ("loner", None),
            ]

            plain = await member_repository.find_projection_by(projection=UsernameOnly)
            assert plain[0] == UsernameOnly(username="member1")

    @pytest.mark.asyncio
    async def test_dynamic_projection_sorted_by_label(self, uow: UnitOfWork, sample_members):
        """Test sorting a projection by its own field."""
        async with uow:
            repository = uow.get_repository(QueryDeclarationsRepository, Member)
            result = await repository.find_projected(UsernameOnly, sort=Sort.by("username", direction=Direction.DESC))
            assert [p.username for p in result] == ["member4", "member3", "member2", "member1"]

    @pytest.mark.asyncio
    async def test_declared_order_precedes_caller_sort(self, uow: UnitOfWork, member_repository: MemberRepository, sample_members):
        """Test the caller sort only breaks ties left by the declared order."""
        async with uow:
            await member_repository.save(Member(username="member5", age=40))
            repository = uow.get_repository(QueryDeclarationsRepository, Member)

            result = await repository.find_projected_by_age(UsernameOnly, sort=Sort.by("username", direction=Direction.DESC))
            assert [p.username for p in result] == ["member5", "member4", "member3", "member2", "member1"]

            by_id = await member_repository.find_projection_by(UsernameOnly, sort=Sort.by("username", direction=Direction.DESC))
            assert [p.username for p in by_id] == ["member1", "member2", "member3", "member4", "member5"]

    @pytest.mark.asyncio
    async def test_distinct_column_page_counts_values(self, uow: UnitOfWork, sample_members):
        """Test a paged distinct column reports the number of distinct values."""
        async with uow:
            repository = uow.get_repository(QueryDeclarationsRepository, Member)

            first = await repository.find_distinct_team_name_page(PageRequest.of(0, 2))
            assert first.content == ["teamA", "teamB"]
            assert first.total_elements == 2
            assert first.total_pages == 1
            assert not first.has_next

            second = await repository.find_distinct_team_name_page(PageRequest.of(1, 1))
            assert second.content == ["teamB"]
            assert second.total_elements == 2
            assert second.is_last

    @pytest.mark.asyncio
    async def test_native_projection_page(self, uow: UnitOfWork, member_repository: MemberRepository, sample_members):
        """Test paged native query with a projection and a count query."""
        async with uow:
            pageable = PageRequest.of(0, 2, Sort.by("username", direction=Direction.DESC))
            page = await member_repository.find_by_native_projection(pageable)

            assert [(p.username, p.team_name) for p in page.content] == [("member4", "teamB"), ("member3", "teamA")]
            assert page.total_elements == 4
            assert page.total_pages == 2

    @pytest.mark.asyncio
    async def test_native_unknown_sort(self, uow: UnitOfWork, member_repository: MemberRepository, sample_members):
        """Test native page sorted by a column the query does not return."""
        async with uow:
            with pytest.raises(InvalidSortPropertyError):
                await member_repository.find_by_native_projection(PageRequest.of(0, 2, Sort.by("age")))

    @pytest.mark.asyncio
    async def test_declared_page_sort_validated(self, uow: UnitOfWork, member_repository: MemberRepository, sample_members):
        """Test literal paged query rejects an unknown sort property."""
        async with uow:
            with pytest.raises(InvalidSortPropertyError):
                await member_repository.find_page_by_age(10, PageRequest.of(0, 2, Sort.by("nickname")))

    @pytest.mark.asyncio
    async def test_modifying_text_statement(self, uow: UnitOfWork, member_repository: MemberRepository, sample_members):
        """Test modifying query declared as raw SQL."""
        rename = ModifyingQuery("update member set username = :username where id = :id")
        rename.bind("QueryDeclarationsRepository", "rename")

        async with uow:
            member = (await member_repository.find_by_username(username="member1"))[0]
            affected = await rename.execute(member_repository, (), {"username": "renamed", "id": member.id})

            assert affected == 1
            assert (await member_repository.find_by_id(member.id)).username == "renamed"

    def test_update_with_bindparam_names(self):
        """Test modifying query parameters come from bindparam placeholders."""
        query = ModifyingQuery(update(Member).where(Member.id == bindparam("member_id")).values(age=0))
        query.bind("QueryDeclarationsRepository", "reset_age")
        assert query.parameter_names == ["member_id"]
