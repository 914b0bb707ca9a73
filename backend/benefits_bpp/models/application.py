"""
Application and ApplicationFile models
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from sqlalchemy import (JSON, Column, DateTime, ForeignKey, Integer, String,
                        Text)
from sqlalchemy.orm import relationship

from benefits_bpp.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApplicationStatus(str, Enum):
    """Application review status"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    RESUBMIT = "resubmit"


class EligibilityStatus(str, Enum):
    """Outcome of the last eligibility evaluation"""
    UNKNOWN = "unknown"
    ELIGIBLE = "eligible"
    INELIGIBLE = "ineligible"


class Application(Base):
    """An applicant's submission against one benefit"""
    __tablename__ = "applications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    benefit_id = Column(String(255), nullable=False, index=True)
    customer_id = Column(String(64), nullable=False, unique=True)
    bap_id = Column(String(255), nullable=True)
    transaction_id = Column(String(255), nullable=True, index=True)
    status = Column(String(50), nullable=False, default=ApplicationStatus.PENDING.value)
    remark = Column(Text, nullable=True)
    order_id = Column(String(255), nullable=True, unique=True, index=True)
    application_data = Column(JSON(none_as_null=True), nullable=True)

    eligibility_status = Column(String(50), nullable=False, default=EligibilityStatus.UNKNOWN.value)
    eligibility_result = Column(JSON(none_as_null=True), nullable=True)
    eligibility_checked_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    files = relationship("ApplicationFile", back_populates="application", cascade="all, delete-orphan")

    def to_dict(self) -> Dict[str, Any]:
        """Convert application to dictionary"""
        return {
            "id": self.id,
            "benefitId": self.benefit_id,
            "customerId": self.customer_id,
            "bapId": self.bap_id,
            "transactionId": self.transaction_id,
            "status": self.status,
            "remark": self.remark,
            "orderId": self.order_id,
            "applicationData": self.application_data,
            "eligibilityStatus": self.eligibility_status,
            "eligibilityResult": self.eligibility_result,
            "eligibilityCheckedAt": self.eligibility_checked_at.isoformat() if self.eligibility_checked_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Application(id={self.id}, benefit_id={self.benefit_id}, status={self.status})>"


class ApplicationFile(Base):
    """Attachment decoded from a base64 field at application creation"""
    __tablename__ = "application_files"

    id = Column(Integer, primary_key=True, autoincrement=True)
    application_id = Column(Integer, ForeignKey("applications.id"), nullable=False, index=True)
    storage = Column(String(50), nullable=False, default="local")
    file_path = Column(String(1024), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    application = relationship("Application", back_populates="files")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "applicationId": self.application_id,
            "storage": self.storage,
            "filePath": self.file_path,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
