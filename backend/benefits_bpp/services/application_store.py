"""
Application persistence: creation with attachments, lookups and updates
"""
import base64
import binascii
import os
import random
import re
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from benefits_bpp.core.config import Settings, get_settings
from benefits_bpp.core.exceptions import NotFoundError, ValidationError
from benefits_bpp.core.logging_config import LoggingConfig
from benefits_bpp.models.application import (Application, ApplicationFile,
                                             ApplicationStatus,
                                             EligibilityStatus)

logger = LoggingConfig.get_logger(__name__)

BASE64_PREFIX = "base64,"

# Columns a patch may touch; identifiers and timestamps are store-owned
UPDATABLE_FIELDS = {
    "status",
    "remark",
    "order_id",
    "application_data",
    "eligibility_status",
    "eligibility_result",
    "eligibility_checked_at",
    "transaction_id",
    "bap_id",
}

ORDERABLE_FIELDS = {"id", "created_at", "updated_at", "status"}

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9\-_.]")


@dataclass(frozen=True)
class PayloadField:
    """
    One field of an inbound application payload

    kind is "file" for base64 attachments (content holds the decoded bytes)
    and "value" for everything else (content holds the raw value).
    """
    key: str
    kind: str
    content: Any


def classify_payload(data: Dict[str, Any]) -> List[PayloadField]:
    """
    Split an application payload into attachments and plain values

    Raises:
        ValidationError: a base64 field does not decode
    """
    fields: List[PayloadField] = []
    for key, value in data.items():
        if isinstance(value, str) and value.startswith(BASE64_PREFIX):
            try:
                decoded = base64.b64decode(value[len(BASE64_PREFIX):], validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValidationError(f"Field '{key}' is not valid base64") from e
            fields.append(PayloadField(key=key, kind="file", content=decoded))
        else:
            fields.append(PayloadField(key=key, kind="value", content=value))
    return fields


def attachment_filename(application_id: int, key: str) -> str:
    """Unique, filesystem-safe, lowercase name for an attachment"""
    millis = int(time.time() * 1000)
    name = f"{application_id}_{key}_{millis}_{random.randint(0, 9999)}.json"
    return _UNSAFE_FILENAME_CHARS.sub("", name).lower()


class ApplicationStore:
    """SQLAlchemy-backed access to applications and their files"""

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    def create_application(self, data: Dict[str, Any]) -> Application:
        """
        Create a pending application from an inbound payload

        Base64 fields are decoded into files under the upload directory and
        recorded as ApplicationFile rows; every other field is stored in the
        application payload.

        Args:
            data: Payload; must contain benefitId

        Returns:
            Created Application (files loaded)
        """
        if not data.get("benefitId"):
            raise ValidationError("benefitId is required")

        fields = classify_payload(data)
        application_data = {f.key: f.content for f in fields if f.kind == "value"}
        attachments = [f for f in fields if f.kind == "file"]

        written: List[Path] = []
        try:
            application = Application(
                benefit_id=str(data["benefitId"]),
                customer_id=str(uuid.uuid4()),
                bap_id=data.get("bapId"),
                transaction_id=data.get("transactionId"),
                status=ApplicationStatus.PENDING.value,
                application_data=application_data,
                eligibility_status=EligibilityStatus.UNKNOWN.value,
            )
            self.db.add(application)
            self.db.flush()

            for attachment in attachments:
                path = self._write_attachment(application.id, attachment)
                written.append(path)
                self.db.add(ApplicationFile(
                    application_id=application.id,
                    storage="local",
                    file_path=os.path.relpath(path),
                ))

            self.db.commit()
            self.db.refresh(application)
        except Exception:
            self.db.rollback()
            for path in written:
                path.unlink(missing_ok=True)
            raise

        logger.info(
            f"Created application {application.id} for benefit {application.benefit_id}",
            extra={"application_id": application.id, "files": len(attachments)},
        )
        return application

    def _write_attachment(self, application_id: int, attachment: PayloadField) -> Path:
        upload_dir = Path(self.settings.upload_dir)
        upload_dir.mkdir(parents=True, exist_ok=True)
        path = upload_dir / attachment_filename(application_id, attachment.key)
        path.write_bytes(attachment.content)
        return path

    def find_unique_application(self, application_id: Any) -> Optional[Application]:
        try:
            application_id = int(application_id)
        except (TypeError, ValueError):
            return None
        return self.db.query(Application).filter(Application.id == application_id).first()

    def get_application(self, application_id: Any) -> Application:
        """
        Raises:
            NotFoundError: no such application
        """
        application = self.find_unique_application(application_id)
        if application is None:
            raise NotFoundError(f"Application with ID {application_id} not found")
        return application

    def find_applications(self, **filters: Any) -> List[Application]:
        """Applications whose columns equal the given values"""
        query = self.db.query(Application)
        for name, value in filters.items():
            column = getattr(Application, name, None)
            if column is None:
                raise ValueError(f"Unknown application field: {name}")
            query = query.filter(column == value)
        return query.order_by(Application.id.asc()).all()

    def find_application(self, **filters: Any) -> Optional[Application]:
        matches = self.find_applications(**filters)
        return matches[0] if matches else None

    def _apply_patch(self, application: Application, patch: Dict[str, Any]) -> None:
        unknown = set(patch) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        for name, value in patch.items():
            setattr(application, name, value)

    def update_application(self, application_id: Any, patch: Dict[str, Any]) -> Application:
        """
        Apply a partial update

        Raises:
            NotFoundError: no such application
        """
        application = self.get_application(application_id)
        try:
            self._apply_patch(application, patch)
            self.db.commit()
            self.db.refresh(application)
        except Exception:
            self.db.rollback()
            raise
        return application

    def replace_application_data(self, application_id: Any, data: Dict[str, Any]) -> Application:
        """Replace the stored payload wholesale"""
        return self.update_application(application_id, {"application_data": dict(data)})

    def assign_order_id(self, application_id: Any, order_id: str) -> str:
        """
        Set the order id unless one is already stored

        The write is conditional on order_id still being NULL, so concurrent
        confirms of one application settle on a single id.

        Returns:
            The order id stored for the application, which is not order_id
            when another request assigned one first

        Raises:
            NotFoundError: no such application
        """
        try:
            application_id = int(application_id)
        except (TypeError, ValueError):
            raise NotFoundError(f"Application with ID {application_id} not found")

        try:
            result = self.db.execute(
                update(Application)
                .where(Application.id == application_id)
                .where(Application.order_id.is_(None))
                .values(order_id=order_id)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        stored = self.db.execute(
            select(Application.order_id).where(Application.id == application_id)
        ).scalar_one_or_none()
        if stored is None:
            raise NotFoundError(f"Application with ID {application_id} not found")
        if result.rowcount == 0:
            logger.info(
                f"Application {application_id} already has order {stored}",
                extra={"application_id": application_id, "order_id": stored},
            )
        return stored

    def update_many(self, patches: Sequence[Tuple[Any, Dict[str, Any]]]) -> int:
        """
        Apply several patches in one transaction

        Either every patch is committed or none is.

        Returns:
            Number of applications updated
        """
        try:
            for application_id, patch in patches:
                application = self.find_unique_application(application_id)
                if application is None:
                    raise NotFoundError(f"Application with ID {application_id} not found")
                self._apply_patch(application, patch)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.warning(f"Batch update of {len(patches)} application(s) rolled back")
            raise
        return len(patches)

    def update_status(self, application_id: Any, status: str, remark: Optional[str] = None) -> Dict[str, Any]:
        """
        Manual review decision

        Raises:
            ValidationError: status is not a known application status
            NotFoundError: no such application
        """
        allowed = {s.value for s in ApplicationStatus}
        if status not in allowed:
            raise ValidationError(f"Invalid status '{status}'. Expected one of: {', '.join(sorted(allowed))}")

        self.update_application(application_id, {"status": status, "remark": remark})
        logger.info(f"Application {application_id} marked {status}")
        return {
            "statusCode": 200,
            "status": "success",
            "message": f"Application {status} successfully",
        }

    def list_applications(
        self,
        benefit_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
        order_by: str = "id",
        order_direction: str = "asc",
    ) -> List[Application]:
        """Applications of one benefit, paged and ordered"""
        if order_by not in ORDERABLE_FIELDS:
            raise ValidationError(f"Cannot order by '{order_by}'")
        column = getattr(Application, order_by)
        ordering = column.desc() if order_direction.lower() == "desc" else column.asc()

        query = self.db.query(Application).filter(Application.benefit_id == benefit_id).order_by(ordering)
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def count_by_status(self, benefit_ids: Sequence[str]) -> Dict[str, Dict[str, int]]:
        """
        Total and per-status application counts, keyed by benefit id

        One grouped query covers every benefit; benefits without applications
        get zero counts.
        """
        per_benefit: Dict[str, Dict[str, int]] = {str(b): {} for b in benefit_ids}
        if per_benefit:
            rows = (
                self.db.query(Application.benefit_id, Application.status, func.count(Application.id))
                .filter(Application.benefit_id.in_(list(per_benefit)))
                .group_by(Application.benefit_id, Application.status)
                .all()
            )
            for benefit_id, status, count in rows:
                per_benefit[benefit_id][status] = count

        return {
            benefit_id: {
                "applications_count": sum(counts.values()),
                "pending_applications_count": counts.get(ApplicationStatus.PENDING.value, 0),
                "approved_applications_count": counts.get(ApplicationStatus.APPROVED.value, 0),
                "rejected_applications_count": counts.get(ApplicationStatus.REJECTED.value, 0),
            }
            for benefit_id, counts in per_benefit.items()
        }

    def find_eligibility_candidates(self, stale_before: datetime, limit: int) -> List[Application]:
        """
        Applications due for an eligibility check: never classified, no stored
        result, and not checked since stale_before
        """
        return (
            self.db.query(Application)
            .filter(Application.eligibility_status.notin_([
                EligibilityStatus.ELIGIBLE.value,
                EligibilityStatus.INELIGIBLE.value,
            ]))
            .filter(Application.eligibility_result.is_(None))
            .filter(or_(
                Application.eligibility_checked_at.is_(None),
                Application.eligibility_checked_at <= stale_before,
            ))
            .order_by(Application.id.asc())
            .limit(limit)
            .all()
        )

    def find_applications_after(self, last_id: int, limit: int) -> List[Application]:
        """Next page of applications by ascending id, starting after last_id"""
        return (
            self.db.query(Application)
            .filter(Application.id > last_id)
            .order_by(Application.id.asc())
            .limit(limit)
            .all()
        )

    def export_applications(self, benefit_id: str, statuses: Optional[Sequence[str]] = None) -> List[Application]:
        """
        Applications of one benefit for a report, optionally limited to some statuses

        Raises:
            ValidationError: a status is not a known application status
        """
        query = self.db.query(Application).filter(Application.benefit_id == benefit_id)
        if statuses:
            allowed = {s.value for s in ApplicationStatus}
            unknown = sorted(set(statuses) - allowed)
            if unknown:
                raise ValidationError(f"Invalid status '{unknown[0]}'. Expected one of: {', '.join(sorted(allowed))}")
            query = query.filter(Application.status.in_(list(statuses)))
        return query.order_by(Application.id.asc()).all()
