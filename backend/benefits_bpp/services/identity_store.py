"""
Identity lookups for benefit visibility scoping
"""
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from benefits_bpp.core.exceptions import UpstreamError
from benefits_bpp.core.logging_config import LoggingConfig
from benefits_bpp.models.user import Role, User

logger = LoggingConfig.get_logger(__name__)


class IdentityStore:
    """Read-only access to users and their roles"""

    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: int) -> Optional[User]:
        """
        Get user by local id

        Raises:
            UpstreamError: The identity store could not be queried
        """
        try:
            return self.db.execute(
                select(User).options(selectinload(User.roles)).where(User.id == user_id)
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error fetching user {user_id}: {e}", exc_info=True)
            raise UpstreamError("Failed to fetch user information") from e

    def get_user_by_provider_id(self, provider_user_id: str) -> Optional[User]:
        """Get user by the identity the content provider records as creator"""
        try:
            return self.db.execute(
                select(User)
                .options(selectinload(User.roles))
                .where(User.provider_user_id == str(provider_user_id))
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error fetching user by provider id {provider_user_id}: {e}", exc_info=True)
            raise UpstreamError("Failed to fetch user information") from e

    def provider_user_ids_sharing_roles(self, roles: Iterable[str], excluded_role: str) -> List[str]:
        """
        Provider ids of every user holding at least one of roles and not
        holding excluded_role
        """
        role_names = list(roles)
        if not role_names:
            return []
        try:
            excluded_users = (
                select(User.id)
                .join(User.roles)
                .where(Role.name == excluded_role)
            )
            rows = self.db.execute(
                select(User.provider_user_id)
                .join(User.roles)
                .where(Role.name.in_(role_names))
                .where(User.id.not_in(excluded_users))
                .where(User.provider_user_id.is_not(None))
                .distinct()
            ).scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Error fetching provider users: {e}", exc_info=True)
            raise UpstreamError("Failed to fetch provider users") from e
        return [str(row) for row in rows]
