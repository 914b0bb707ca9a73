"""
Role and provider scoped visibility of benefits
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from benefits_bpp.core.config import Settings, get_settings
from benefits_bpp.core.exceptions import AuthorizationError, ValidationError
from benefits_bpp.core.logging_config import LoggingConfig
from benefits_bpp.core.utils import safe_get_nested
from benefits_bpp.services.identity_store import IdentityStore

logger = LoggingConfig.get_logger(__name__)

FORBIDDEN_MESSAGE = "You do not have permission to access this benefit"


@dataclass(frozen=True)
class CallerScope:
    """Who is asking, as far as visibility is concerned"""
    user_id: Optional[int]
    roles: Tuple[str, ...] = field(default_factory=tuple)
    is_super_admin: bool = False


def benefit_creator_id(benefit: Dict[str, Any]) -> Optional[str]:
    creator_id = safe_get_nested(benefit, "createdBy", "id")
    return str(creator_id) if creator_id is not None else None


class AccessFilter:
    """
    Visibility rules:

    - the super admin role sees every benefit;
    - anyone else sees a benefit only when its creator shares at least one
      role with them and the creator is not a super admin;
    - a caller without roles sees nothing.

    Identity store failures propagate as UpstreamError so they are never
    mistaken for a denial.
    """

    def __init__(self, identity_store: IdentityStore, settings: Optional[Settings] = None):
        self.identity_store = identity_store
        self.settings = settings or get_settings()

    @property
    def super_admin_role(self) -> str:
        return self.settings.super_admin_role

    def resolve_caller(self, user_id: Optional[Any]) -> CallerScope:
        """Load the caller's roles; unknown or anonymous callers get no roles"""
        if user_id is None or user_id == "":
            return CallerScope(user_id=None)

        try:
            user_id = int(user_id)
        except (TypeError, ValueError):
            raise ValidationError("Invalid user id")

        user = self.identity_store.get_user(user_id)
        if user is None:
            logger.warning(f"Caller {user_id} not found in identity store")
            return CallerScope(user_id=user_id)

        roles = tuple(user.role_names)
        return CallerScope(
            user_id=user.id,
            roles=roles,
            is_super_admin=self.super_admin_role in roles,
        )

    def creator_scope(self, caller: CallerScope) -> Optional[List[str]]:
        """
        Provider user ids whose benefits the caller may see

        Returns:
            None when the caller is unrestricted, otherwise the (possibly
            empty) list of allowed creator ids
        """
        if caller.is_super_admin:
            return None
        if not caller.roles:
            return []
        return self.identity_store.provider_user_ids_sharing_roles(
            caller.roles, excluded_role=self.super_admin_role
        )

    def filter_visible_benefits(
        self,
        caller: CallerScope,
        benefits: Iterable[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        """Subset of benefits the caller may see, order preserved"""
        allowed = self.creator_scope(caller)
        if allowed is None:
            return list(benefits)
        if not allowed:
            return []
        allowed_ids = set(allowed)
        return [b for b in benefits if benefit_creator_id(b) in allowed_ids]

    def can_access_benefit(self, caller: CallerScope, benefit: Dict[str, Any]) -> bool:
        """Whether caller may see this single benefit"""
        if caller.is_super_admin:
            return True
        if not caller.roles:
            return False

        creator_id = benefit_creator_id(benefit)
        if creator_id is None:
            return False

        creator = self.identity_store.get_user_by_provider_id(creator_id)
        if creator is None:
            return False

        creator_roles = set(creator.role_names)
        if self.super_admin_role in creator_roles:
            return False
        return bool(creator_roles.intersection(caller.roles))

    def ensure_can_access(self, caller: CallerScope, benefit: Dict[str, Any]) -> None:
        """
        Raises:
            AuthorizationError: caller may not see the benefit
        """
        if not self.can_access_benefit(caller, benefit):
            logger.info(
                "Benefit access denied",
                extra={"user_id": caller.user_id, "benefit_id": benefit.get("documentId")},
            )
            raise AuthorizationError(FORBIDDEN_MESSAGE)
