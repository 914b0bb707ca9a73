"""
User and Role models used for benefit visibility scoping
"""
from datetime import datetime, timezone
from typing import List

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Table
from sqlalchemy.orm import relationship

from benefits_bpp.core.database import Base

user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id"), primary_key=True),
)


class Role(Base):
    """Provider role (one role per provider organisation, plus the admin role)"""
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False, index=True)

    users = relationship("User", secondary=user_roles, back_populates="roles")

    def __repr__(self):
        return f"<Role(id={self.id}, name={self.name})>"


class User(Base):
    """Provider-side user"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # Identity of this user inside the content provider (benefit.createdBy.id)
    provider_user_id = Column(String(255), unique=True, nullable=True, index=True)
    email = Column(String(255), unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    roles = relationship("Role", secondary=user_roles, back_populates="users")

    @property
    def role_names(self) -> List[str]:
        return [role.name for role in self.roles]

    def __repr__(self):
        return f"<User(id={self.id}, provider_user_id={self.provider_user_id})>"
