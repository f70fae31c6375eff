from loguru import logger
from framework.exceptions.handler import EntityNotFoundException
from framework.pagination import Page, PageRequest
from framework.repository.unit_of_work import UnitOfWork
from .models import Member, Team
from .repository import MemberRepository, TeamRepository
from .schemas import MemberDto


class MemberService:
    def __init__(self, uow: UnitOfWork):
        """Initialize Member Service with UnitOfWork."""
        self.uow = uow

    @property
    def members(self) -> MemberRepository:
        return self.uow.get_repository(MemberRepository, Member)

    @property
    def teams(self) -> TeamRepository:
        return self.uow.get_repository(TeamRepository, Team)

    async def list_members(self, pageable: PageRequest) -> Page[MemberDto]:
        """One page of members with their team names (team fetched in the same query)."""
        page = await self.members.find_page(pageable)
        return page.map(MemberDto.from_entity)

    async def get_member(self, member_id: int) -> Member:
        """Member by id; raises EntityNotFoundException when absent."""
        member = await self.members.find_by_id(member_id)
        if member is None:
            raise EntityNotFoundException("Member", member_id)
        return member

    async def get_username(self, member_id: int) -> str:
        member = await self.get_member(member_id)
        return member.username

    async def seed_members(self, count: int) -> int:
        """Insert demo members user0..user{count-1} unless members already exist."""
        if count <= 0:
            return 0
        existing = await self.members.count()
        if existing:
            logger.info(f"Demo data skipped: {existing} members already present")
            return 0

        team_a = await self.teams.save(Team(name="teamA"))
        team_b = await self.teams.save(Team(name="teamB"))
        for i in range(count):
            team = team_a if i % 2 == 0 else team_b
            await self.members.save(Member(username=f"user{i}", age=i, team=team))
        logger.info(f"Demo data seeded: {count} members")
        return count
