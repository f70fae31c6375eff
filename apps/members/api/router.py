from fastapi import APIRouter, Depends, Path, Query, Request
from sqlmodel.ext.asyncio.session import AsyncSession
from typing import List, Optional
from framework.config import settings
from framework.database.manager import DatabaseManager
from framework.pagination import PageRequest, Sort
from framework.repository.unit_of_work import UnitOfWork
from framework.response import ResponseModel
from ..models import Member
from ..service import MemberService

router = APIRouter()

async def get_db():
    """Get database session."""
    manager = DatabaseManager.get_instance()
    async for session in manager.sql.get_session():
        yield session

def get_current_actor(request: Request) -> str:
    """Actor stamped into created_by/updated_by for this request."""
    return request.headers.get(settings.ACTOR_HEADER) or settings.DEFAULT_ACTOR

async def get_uow(
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_current_actor)
):
    """Dependency: one UnitOfWork (and transaction) per request."""
    async with UnitOfWork(session=db, actor=actor) as uow:
        yield uow

def get_member_service(uow: UnitOfWork = Depends(get_uow)) -> MemberService:
    """Dependency: create MemberService."""
    return MemberService(uow)

def get_page_request(
    page: int = Query(0, ge=0, description="Zero-based page index"),
    size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, description="Page size"),
    sort: Optional[List[str]] = Query(None, description="property[,asc|desc]; repeatable")
) -> PageRequest:
    """Dependency: page/size/sort query parameters as a PageRequest."""
    return PageRequest.of(page, min(size, settings.MAX_PAGE_SIZE), Sort.parse(sort))

async def resolve_member(
    id: int = Path(..., description="Member id"),
    service: MemberService = Depends(get_member_service)
) -> Member:
    """Dependency: path id converted to the member entity (404 when absent)."""
    return await service.get_member(id)

@router.get("/members")
async def list_members(
    pageable: PageRequest = Depends(get_page_request),
    service: MemberService = Depends(get_member_service)
):
    """Page of members as {id, username, team_name}."""
    page = await service.list_members(pageable)
    return ResponseModel.paged(page)

@router.get("/members/{id}")
async def find_member(
    id: int,
    service: MemberService = Depends(get_member_service)
):
    """Username of the member."""
    username = await service.get_username(id)
    return ResponseModel.success(data=username)

@router.get("/members2/{id}")
async def find_member2(member: Member = Depends(resolve_member)):
    """Username of the member, resolved from the path by a dependency."""
    return ResponseModel.success(data=member.username)
