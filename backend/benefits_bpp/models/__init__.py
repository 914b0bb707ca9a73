"""
SQLAlchemy models
"""
from benefits_bpp.core.database import Base  # noqa: F401
# Import all models here so metadata.create_all can see them
from benefits_bpp.models.application import (Application,  # noqa: F401
                                             ApplicationFile,
                                             ApplicationStatus,
                                             EligibilityStatus)
from benefits_bpp.models.user import Role, User, user_roles  # noqa: F401
