"""Directory — read-only lookups of users and group membership."""
from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy.orm import Session

from app.models.directory import Group, GroupMember, User


class Directory(ABC):
    @abstractmethod
    def timezone(self, user_id: str) -> str:
        ...

    @abstractmethod
    def group_exists(self, group_id: str) -> bool:
        ...

    @abstractmethod
    def is_group_member(self, group_id: str, user_id: str) -> bool:
        ...


class SqlDirectory(Directory):
    """Directory backed by the users / groups / group_members tables."""

    def __init__(self, db: Session):
        self.db = db

    def _user(self, user_id: str) -> Optional[User]:
        return self.db.query(User).filter(User.user_id == user_id).first()

    def timezone(self, user_id: str) -> str:
        user = self._user(user_id)
        return user.default_timezone if user and user.default_timezone else "UTC"

    def group_exists(self, group_id: str) -> bool:
        return self.db.query(Group).filter(Group.group_id == group_id).first() is not None

    def is_group_member(self, group_id: str, user_id: str) -> bool:
        member = (
            self.db.query(GroupMember)
            .filter(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
            .first()
        )
        return member is not None
