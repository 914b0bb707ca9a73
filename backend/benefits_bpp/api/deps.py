"""
FastAPI dependencies wiring services to a request
"""
from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from benefits_bpp.core.config import Settings, get_settings
from benefits_bpp.core.database import get_db
from benefits_bpp.services.access_filter import AccessFilter
from benefits_bpp.services.application_store import ApplicationStore
from benefits_bpp.services.content_provider import ContentProviderClient
from benefits_bpp.services.eligibility_scheduler import (
    EligibilityScheduler, get_eligibility_scheduler)
from benefits_bpp.services.identity_store import IdentityStore
from benefits_bpp.services.transaction_controller import TransactionController

# Shared so the HTTP connection pool outlives a single request
_content_provider: Optional[ContentProviderClient] = None


def get_content_provider() -> ContentProviderClient:
    """Get global content provider client"""
    global _content_provider
    if _content_provider is None:
        _content_provider = ContentProviderClient(get_settings())
    return _content_provider


async def close_content_provider() -> None:
    global _content_provider
    if _content_provider is not None:
        await _content_provider.aclose()
        _content_provider = None


def get_application_store(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> ApplicationStore:
    return ApplicationStore(db, settings)


def get_transaction_controller(
    db: Session = Depends(get_db),
    content_provider: ContentProviderClient = Depends(get_content_provider),
    settings: Settings = Depends(get_settings),
) -> TransactionController:
    return TransactionController(
        content_provider=content_provider,
        application_store=ApplicationStore(db, settings),
        access_filter=AccessFilter(IdentityStore(db), settings),
        settings=settings,
    )


def get_scheduler() -> EligibilityScheduler:
    return get_eligibility_scheduler()
