from sqlmodel import SQLModel, Field, Relationship, select
from sqlalchemy import bindparam
from typing import Optional
from framework.database.auditing import AuditMixin
from framework.query import register_named_query


class Team(SQLModel, table=True):
    """Team; referenced by members, never owns them."""
    __tablename__ = "team"
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=255, description="Team name")


class Member(AuditMixin, table=True):
    """Member with an optional many-to-one team and audit stamps."""
    __tablename__ = "member"

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, max_length=255, description="Username")
    age: int = Field(default=0, description="Age")

    # Deleting a referenced team is rejected by the store (no ON DELETE action)
    team_id: Optional[int] = Field(default=None, foreign_key="team.id", index=True)
    # Only loads from the identity map or a fetch join; a lazy SELECT raises
    team: Optional[Team] = Relationship(sa_relationship_kwargs={"lazy": "raise_on_sql"})

    def change_team(self, team: Optional[Team]) -> None:
        self.team = team

    def __repr__(self) -> str:
        return f"Member(id={self.id}, username={self.username!r}, age={self.age})"


register_named_query(
    "Member.find_by_username",
    select(Member).where(Member.username == bindparam("username")),
)
