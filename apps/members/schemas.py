"""Read-only views of members for listings and report-style queries."""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field
from .models import Member


class MemberDto(BaseModel):
    """Member row for API listings."""
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    team_name: Optional[str] = None

    @classmethod
    def from_entity(cls, member: Member) -> "MemberDto":
        """Build from an entity whose team was fetched with it."""
        return cls(
            id=member.id,
            username=member.username,
            team_name=member.team.name if member.team is not None else None,
        )


class UsernameOnly(BaseModel):
    """Closed projection: selects the username column only."""
    model_config = ConfigDict(frozen=True)

    username: str


class UsernameOnlyDto(BaseModel):
    username: str


class NestedClosedProjection(BaseModel):
    """Username plus the team name, read through an outer join."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    username: str
    team_name: Optional[str] = Field(default=None, alias="team.name")


class MemberProjection(BaseModel):
    """Row shape of the native member/team report query."""
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    team_name: Optional[str] = None
