from typing import List, NamedTuple, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import UserRole


class Assignment(NamedTuple):
    user_id: str
    role: str


class Directory(Protocol):
    """Source of every user holding a role, used for recall fan-out."""

    def list_all_users(self) -> List[Assignment]:
        ...


class SqlDirectory:
    """Directory backed by the ``user_roles`` table."""

    def __init__(self, db: Session):
        self.db = db

    def list_all_users(self) -> List[Assignment]:
        rows = self.db.execute(
            select(UserRole.user_id, UserRole.role).order_by(UserRole.id)
        ).all()
        return [Assignment(user_id=r[0], role=r[1]) for r in rows]
