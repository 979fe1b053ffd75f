"""Service for the users and groups directory.

Users are the principals that permissions are evaluated for. Authentication
happens elsewhere; this only records who exists, who is an admin and which
groups they belong to.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from folderserver.db.models import Group, UserAccount
from folderserver.models import Principal, User

logger = logging.getLogger(__name__)


def _to_user(account: UserAccount) -> User:
    return User(
        id=account.id,
        display_name=account.display_name,
        email=account.email,
        is_admin=bool(account.is_admin),
    )


class UserService:
    """CRUD operations on users and groups."""

    def __init__(self, session: Session):
        """Initialize user service.

        Args:
            session: SQLAlchemy session
        """
        self.session = session

    def add_user(self, user_id: str, display_name: str, email: Optional[str] = None,
                 is_admin: bool = False) -> User:
        """Create a user, or update the existing one with the same id.

        Args:
            user_id: Identifier used as principal id
            display_name: Human readable name
            email: Optional email address
            is_admin: Admins can see every node

        Returns:
            The stored user
        """
        account = self.session.get(UserAccount, user_id)
        if account is None:
            account = UserAccount(id=user_id, display_name=display_name, email=email, is_admin=is_admin)
            self.session.add(account)
            logger.info(f"Added user {user_id}")
        else:
            account.display_name = display_name
            account.email = email
            account.is_admin = is_admin
        self.session.commit()
        return _to_user(account)

    def get_user(self, user_id: str) -> Optional[User]:
        account = self.session.get(UserAccount, user_id)
        return _to_user(account) if account else None

    def list_users(self) -> List[User]:
        """All users ordered by display name, then id."""
        accounts = self.session.query(UserAccount).order_by(UserAccount.display_name, UserAccount.id).all()
        return [_to_user(a) for a in accounts]

    def add_group(self, group_id: str, name: str, description: Optional[str] = None) -> Group:
        group = self.session.get(Group, group_id)
        if group is None:
            group = Group(id=group_id, name=name, description=description)
            self.session.add(group)
            self.session.commit()
            logger.info(f"Added group {name} ({group_id})")
        return group

    def add_member(self, group_id: str, user_id: str) -> bool:
        """Add a user to a group.

        Returns:
            False if the user or group does not exist
        """
        group = self.session.get(Group, group_id)
        account = self.session.get(UserAccount, user_id)
        if group is None or account is None:
            logger.warning(f"Cannot add {user_id} to {group_id}: user or group not found")
            return False
        if account not in group.members:
            group.members.append(account)
            self.session.commit()
        return True

    def principal_for(self, user_id: str) -> Optional[Principal]:
        """Build the principal for a known user, or None if unknown."""
        account = self.session.get(UserAccount, user_id)
        if account is None:
            return None
        return Principal(
            id=account.id,
            is_admin=bool(account.is_admin),
            group_ids=frozenset(group.id for group in account.groups),
        )
