"""
Model registration for migrations: import all models that should be migrated by Alembic here.
SQLDriver.create_all() imports this module too, so a table missing here is missing everywhere.
"""
from apps.members.models import Member, Team

__all__ = ["Member", "Team"]
