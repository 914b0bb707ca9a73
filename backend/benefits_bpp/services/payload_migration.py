"""
Batch rewrite of stored application payloads

Applications are walked by ascending id in fixed-size pages. Each payload is
passed through a transform; the changed payloads of one page are written with
a single all-or-nothing store update.
"""
import copy
import importlib
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from benefits_bpp.core.exceptions import PartialBatchFailure
from benefits_bpp.core.logging_config import LoggingConfig
from benefits_bpp.services.application_store import ApplicationStore

logger = LoggingConfig.get_logger(__name__)

# Receives a copy of the payload; returns the new payload, or None to leave it as is
PayloadTransform = Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]


def strip_empty_values(payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Drop keys whose value is None or an empty string"""
    cleaned = {key: value for key, value in payload.items() if value is not None and value != ""}
    return cleaned if len(cleaned) != len(payload) else None


BUILTIN_TRANSFORMS: Dict[str, PayloadTransform] = {
    "strip_empty_values": strip_empty_values,
}


def load_transform(reference: str) -> PayloadTransform:
    """
    Resolve a transform by built-in name or "package.module:function"

    Raises:
        ValueError: the reference does not name a callable
    """
    if reference in BUILTIN_TRANSFORMS:
        return BUILTIN_TRANSFORMS[reference]

    module_name, _, attribute = reference.partition(":")
    if not module_name or not attribute:
        raise ValueError(
            f"Unknown transform '{reference}'. Use one of {', '.join(sorted(BUILTIN_TRANSFORMS))} "
            "or module:function"
        )
    try:
        transform = getattr(importlib.import_module(module_name), attribute)
    except (ImportError, AttributeError) as e:
        raise ValueError(f"Cannot load transform '{reference}': {e}") from e
    if not callable(transform):
        raise ValueError(f"Transform '{reference}' is not callable")
    return transform


@dataclass
class MigrationReport:
    """Outcome of one migration run"""
    dry_run: bool = False
    processed: int = 0
    updated: int = 0
    skipped: int = 0
    batches: int = 0
    failures: List[PartialBatchFailure] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dryRun": self.dry_run,
            "processed": self.processed,
            "updated": self.updated,
            "skipped": self.skipped,
            "batches": self.batches,
            "failed": self.failed,
            "failedApplicationIds": [failure.item_id for failure in self.failures],
        }


class PayloadMigration:
    """Applies a payload transform to every stored application"""

    def __init__(
        self,
        store: ApplicationStore,
        transform: PayloadTransform,
        batch_size: int = 10,
        dry_run: bool = False,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.transform = transform
        self.batch_size = batch_size
        self.dry_run = dry_run

    def run(self) -> MigrationReport:
        """
        Walk every application once

        A transform error fails only its application. A failed page write
        rolls back the whole page and fails each application in it.
        """
        report = MigrationReport(dry_run=self.dry_run)
        last_id = 0

        while True:
            applications = self.store.find_applications_after(last_id, self.batch_size)
            if not applications:
                break
            last_id = applications[-1].id
            report.batches += 1

            patches = []
            for application in applications:
                report.processed += 1
                current = application.application_data or {}
                try:
                    migrated = self.transform(copy.deepcopy(current))
                except Exception as e:
                    report.failures.append(PartialBatchFailure(application.id, e))
                    logger.warning(f"Transform failed for application {application.id}: {e}")
                    continue
                if migrated is None or migrated == current:
                    report.skipped += 1
                    continue
                patches.append((application.id, {"application_data": migrated}))

            if not patches:
                continue
            if self.dry_run:
                report.updated += len(patches)
                logger.info(f"Dry run: would update {len(patches)} application(s) up to id {last_id}")
                continue

            try:
                report.updated += self.store.update_many(patches)
            except Exception as e:
                report.failures.extend(PartialBatchFailure(application_id, e) for application_id, _ in patches)
                logger.error(f"Batch ending at application {last_id} failed: {e}", exc_info=True)
                continue
            logger.info(f"Updated {len(patches)} application(s) up to id {last_id}")

        logger.info(
            f"Payload migration finished: {report.processed} processed, {report.updated} updated, "
            f"{report.skipped} skipped, {report.failed} failed",
            extra={"dry_run": self.dry_run},
        )
        return report
