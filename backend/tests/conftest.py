"""
Pytest configuration and fixtures
"""
import copy
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

# Must be in place before anything calls get_settings()
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DOMAIN"] = "onest:financial-support"
os.environ["BPP_ID"] = "bpp.benefits.example.org"
os.environ["BPP_URI"] = "https://bpp.benefits.example.org"
os.environ["CONTENT_PROVIDER_URL"] = "http://content-provider.test"
os.environ["CONTENT_PROVIDER_TOKEN"] = "service-token"
os.environ["PROVIDER_UI_URL"] = "http://provider-ui.test"
os.environ["ELIGIBILITY_CHECK_ENABLED"] = "false"
os.environ["LOG_FORMAT"] = "text"

from benefits_bpp.core.config import Settings
from benefits_bpp.core.database import Base, configure_engine
from benefits_bpp.models import Role, User
from benefits_bpp.services.application_store import ApplicationStore
from benefits_bpp.services.content_provider import (ADMIN_BENEFIT_PATH,
                                                    PUBLIC_BENEFIT_PATH,
                                                    ContentProviderClient)

DOMAIN = "onest:financial-support"
BAP_ID = "bap.example.org"
BAP_URI = "https://bap.example.org"


def make_benefit(document_id: str = "ben-001", creator_id: Optional[int] = 501, **overrides) -> Dict[str, Any]:
    """A benefit record as the content provider returns it"""
    benefit = {
        "id": 12,
        "documentId": document_id,
        "title": "Merit Scholarship",
        "longDescription": "Support for meritorious students from low income families",
        "applicationOpenDate": "2026-01-01",
        "applicationCloseDate": "2026-12-31T18:30:00.000Z",
        "status": "published",
        "imageUrl": "https://images.example.org/merit.png",
        "providingEntity": {"name": "Example Foundation"},
        "createdBy": {"id": creator_id} if creator_id is not None else None,
        "eligibility": [
            {
                "id": 1,
                "type": "personal",
                "description": "Annual family income below 2.5 lakh",
                "evidence": "incomeCertificate",
                "criteria": {"name": "annualIncome", "condition": "lessThan", "conditionValues": 250000},
            },
            {
                "id": 2,
                "type": "educational",
                "description": "Studying in class 10 or above",
                "evidence": "marksheet",
                "criteria": {"name": "class", "condition": "greaterThanOrEquals", "conditionValues": "10"},
            },
        ],
        "documents": [
            {"id": 3, "documentType": "incomeCertificate", "isRequired": True},
            {"id": 4, "documentType": "photo", "isRequired": False},
        ],
        "benefits": [
            {
                "id": 5,
                "__component": "benefit.financial-benefit",
                "title": "Tuition fee",
                "description": "Up to ₹50,000 per year",
            },
            {
                "id": 6,
                "__component": "benefit.financial-benefit",
                "title": "Books",
                "description": "₹2,500 once and ₹500 for stationery",
            },
        ],
        "exclusions": [{"id": 7, "type": "benefit", "description": "Not combinable with other scholarships"}],
        "sponsoringEntities": [{"id": 8, "name": "State Government", "type": "government"}],
        "applicationForm": [
            {
                "fieldsGroupName": "personal",
                "fieldsGroupLabel": "Personal Details",
                "fields": [
                    {"type": "text", "name": "firstName", "label": "First Name", "required": True},
                    {"type": "amount", "name": "annualIncome", "label": "Annual Income", "required": True},
                ],
            },
        ],
    }
    benefit.update(overrides)
    return benefit


class FakeContentProvider:
    """In-memory content provider served through httpx.MockTransport"""

    def __init__(self, benefits: Optional[List[Dict[str, Any]]] = None):
        self.benefits: Dict[str, Dict[str, Any]] = {}
        for benefit in benefits or []:
            self.add(benefit)
        self.requests: List[httpx.Request] = []
        self.fail_status: Optional[int] = None

    def add(self, benefit: Dict[str, Any]) -> Dict[str, Any]:
        self.benefits[benefit["documentId"]] = benefit
        return benefit

    def _data(self, document_id: str) -> httpx.Response:
        benefit = self.benefits.get(document_id)
        if benefit is None:
            return httpx.Response(404, json={"error": {"status": 404, "message": "Not Found"}})
        return httpx.Response(200, json={"data": copy.deepcopy(benefit)})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json={"error": {"message": "upstream exploded"}})

        path = request.url.path
        if path == PUBLIC_BENEFIT_PATH:
            published = [b for b in self.benefits.values() if b.get("status") == "published"]
            return httpx.Response(200, json={"data": copy.deepcopy(published)})
        if path.startswith(PUBLIC_BENEFIT_PATH + "/"):
            return self._data(path[len(PUBLIC_BENEFIT_PATH) + 1:])
        if path == ADMIN_BENEFIT_PATH:
            results = list(self.benefits.values())
            return httpx.Response(200, json={
                "results": copy.deepcopy(results),
                "pagination": {"page": 1, "pageSize": 1000, "pageCount": 1, "total": len(results)},
            })
        if path.startswith(ADMIN_BENEFIT_PATH + "/"):
            return self._data(path[len(ADMIN_BENEFIT_PATH) + 1:])
        return httpx.Response(404, json={"error": {"message": "no route"}})


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings for one test; attachments go to a temporary directory"""
    return Settings(upload_dir=str(tmp_path / "uploads"))


@pytest.fixture
def engine():
    """In-memory SQLite shared by every session of one test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    import benefits_bpp.models  # noqa: F401
    Base.metadata.create_all(bind=engine)
    configure_engine(engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory) -> Session:
    """Create a database session for testing"""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def benefit() -> Dict[str, Any]:
    return make_benefit()


@pytest.fixture
def fake_provider(benefit) -> FakeContentProvider:
    return FakeContentProvider([benefit])


@pytest.fixture
def content_provider(settings, fake_provider) -> ContentProviderClient:
    return ContentProviderClient(settings, transport=httpx.MockTransport(fake_provider.handler))


@pytest.fixture
def store(db, settings) -> ApplicationStore:
    return ApplicationStore(db, settings)


@pytest.fixture
def users(db) -> Dict[str, User]:
    """
    Provider users:

    admin (Super Admin), alice and bob (Provider A), carol (Provider B),
    dave (no roles)
    """
    super_admin = Role(name="Super Admin")
    provider_a = Role(name="Provider A")
    provider_b = Role(name="Provider B")
    db.add_all([super_admin, provider_a, provider_b])

    created = {
        "admin": User(provider_user_id="900", email="admin@example.org", roles=[super_admin]),
        "alice": User(provider_user_id="501", email="alice@example.org", roles=[provider_a]),
        "bob": User(provider_user_id="502", email="bob@example.org", roles=[provider_a]),
        "carol": User(provider_user_id="601", email="carol@example.org", roles=[provider_b]),
        "dave": User(provider_user_id="700", email="dave@example.org", roles=[]),
    }
    db.add_all(created.values())
    db.commit()
    return created


def protocol_request(action: str, message: Optional[Dict[str, Any]] = None, **context) -> Dict[str, Any]:
    """Inbound protocol body with a complete context unless overridden"""
    base_context = {
        "domain": DOMAIN,
        "action": action,
        "version": "1.1.0",
        "bap_id": BAP_ID,
        "bap_uri": BAP_URI,
        "transaction_id": "txn-0001",
        "message_id": "msg-0001",
        "timestamp": "2026-03-01T10:00:00.000Z",
    }
    base_context.update(context)
    return {
        "context": {k: v for k, v in base_context.items() if v is not None},
        "message": message or {},
    }


@pytest.fixture
def client(db, settings, content_provider, session_factory):
    """FastAPI test client with database, settings and content provider overridden"""
    from fastapi.testclient import TestClient

    from benefits_bpp.api.deps import get_content_provider, get_scheduler
    from benefits_bpp.core.config import get_settings
    from benefits_bpp.core.database import get_db
    from benefits_bpp.services.eligibility_scheduler import \
        EligibilityScheduler
    from main import app

    def override_get_db():
        yield db

    scheduler = EligibilityScheduler(
        settings=settings,
        content_provider=content_provider,
        session_factory=session_factory,
    )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_content_provider] = lambda: content_provider
    app.dependency_overrides[get_scheduler] = lambda: scheduler

    test_client = TestClient(app)
    try:
        yield test_client
    finally:
        app.dependency_overrides.clear()
