"""
Tests for TransactionController protocol actions
"""
import asyncio
import json
import re
from unittest.mock import MagicMock

import pytest
from prometheus_client import REGISTRY

from benefits_bpp.core.exceptions import (AuthorizationError, NotFoundError,
                                          TransformError, UpstreamError,
                                          ValidationError)
from benefits_bpp.core.protocol import ProtocolAction
from benefits_bpp.models.application import Application
from benefits_bpp.services.access_filter import AccessFilter
from benefits_bpp.services.application_store import ApplicationStore
from benefits_bpp.services.identity_store import IdentityStore
from benefits_bpp.services.transaction_controller import (
    TransactionController, status_descriptor)
from conftest import BAP_ID, BAP_URI, make_benefit, protocol_request

ORDER_ID_PATTERN = re.compile(r"^TLEXP_[A-Z0-9]+_\d+$")


@pytest.fixture
def controller(db, settings, content_provider, store):
    """Create TransactionController wired to the fake content provider"""
    return TransactionController(
        content_provider=content_provider,
        application_store=store,
        access_filter=AccessFilter(IdentityStore(db), settings),
        settings=settings,
    )


def init_body(transaction_id="txn-0001", benefit_id="ben-001", application_data=None):
    if application_data is None:
        application_data = {"firstName": "Asha", "annualIncome": 120000, "class": "11"}
    return protocol_request(
        "init",
        {
            "order": {
                "items": [{"id": benefit_id}],
                "fulfillments": [{"customer": {"applicationData": application_data}}],
            },
        },
        transaction_id=transaction_id,
    )


def confirm_body(application_id):
    return protocol_request("confirm", {"order": {"items": [{"id": str(application_id)}]}})


def status_body(order_id):
    return protocol_request("status", {"order_id": order_id})


class GatedContentProvider:
    """Holds benefit fetches until every expected caller has arrived"""

    def __init__(self, inner, parties):
        self.inner = inner
        self.parties = parties
        self.arrived = 0
        self.released = asyncio.Event()

    async def get_benefit_by_id(self, benefit_id, auth_token=None):
        self.arrived += 1
        if self.arrived >= self.parties:
            self.released.set()
        await self.released.wait()
        return await self.inner.get_benefit_by_id(benefit_id, auth_token=auth_token)


class TestParticipantValidation:
    """Every action rejects requests without bap_id / bap_uri"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action", list(ProtocolAction))
    async def test_missing_bap_uri(self, controller, fake_provider, action):
        body = protocol_request(action.value, bap_uri=None)
        with pytest.raises(ValidationError) as exc_info:
            await controller.handle(action, body)
        assert exc_info.value.message == "Invalid BAP ID or URI"
        assert fake_provider.requests == []

    @pytest.mark.asyncio
    async def test_missing_bap_id(self, controller):
        with pytest.raises(ValidationError):
            await controller.handle(ProtocolAction.SEARCH, protocol_request("search", bap_id=None))

    @pytest.mark.asyncio
    async def test_garbage_body(self, controller):
        with pytest.raises(ValidationError):
            await controller.handle(ProtocolAction.SELECT, None)

    @pytest.mark.asyncio
    async def test_mistyped_context_is_validation_error(self, controller, db):
        """A context field of the wrong type is a client fault and is counted"""
        labels = {"action": "init", "outcome": "VALIDATION_ERROR"}
        before = REGISTRY.get_sample_value("protocol_requests_total", labels) or 0.0

        body = init_body()
        body["context"]["transaction_id"] = 123
        with pytest.raises(ValidationError) as exc_info:
            await controller.handle(ProtocolAction.INIT, body)

        assert exc_info.value.message == "Invalid protocol request"
        assert REGISTRY.get_sample_value("protocol_requests_total", labels) == before + 1
        assert db.query(Application).count() == 0


class TestSearch:

    @pytest.mark.asyncio
    async def test_search_returns_priced_catalog(self, controller, fake_provider):
        """on_search with INR prices and detail tags"""
        fake_provider.add(make_benefit("ben-002", title="Sports Grant"))
        response = await controller.handle(ProtocolAction.SEARCH, protocol_request("search"))

        assert response["context"]["action"] == "on_search"
        items = response["message"]["catalog"]["providers"][0]["items"]
        assert [item["id"] for item in items] == ["ben-001", "ben-002"]
        assert all(item["price"]["currency"] == "INR" for item in items)
        assert all("tags" in item for item in items)

    @pytest.mark.asyncio
    async def test_search_starts_new_transaction(self, controller):
        response = await controller.handle(ProtocolAction.SEARCH, protocol_request("search"))
        assert response["context"]["transaction_id"] != "txn-0001"
        assert response["context"]["bap_id"] == BAP_ID
        assert response["context"]["bap_uri"] == BAP_URI

    @pytest.mark.asyncio
    async def test_search_wrong_domain(self, controller, fake_provider):
        with pytest.raises(ValidationError) as exc_info:
            await controller.handle(ProtocolAction.SEARCH, protocol_request("search", domain="onest:jobs"))
        assert exc_info.value.message == "Invalid domain provided"
        assert fake_provider.requests == []

    @pytest.mark.asyncio
    async def test_search_upstream_failure(self, controller, fake_provider):
        fake_provider.fail_status = 503
        with pytest.raises(UpstreamError):
            await controller.handle(ProtocolAction.SEARCH, protocol_request("search"))


class TestSelect:

    @pytest.mark.asyncio
    async def test_select_without_tags(self, controller):
        body = protocol_request("select", {"order": {"items": [{"id": "ben-001"}]}})
        response = await controller.handle(ProtocolAction.SELECT, body)

        item = response["message"]["catalog"]["providers"][0]["items"][0]
        assert response["context"]["action"] == "on_select"
        assert response["context"]["transaction_id"] == "txn-0001"
        assert item["id"] == "ben-001"
        assert "tags" not in item

    @pytest.mark.asyncio
    async def test_select_requires_item(self, controller):
        with pytest.raises(ValidationError):
            await controller.handle(ProtocolAction.SELECT, protocol_request("select", {"order": {"items": []}}))

    @pytest.mark.asyncio
    async def test_select_unknown_benefit(self, controller):
        body = protocol_request("select", {"order": {"items": [{"id": "nope"}]}})
        with pytest.raises(NotFoundError):
            await controller.handle(ProtocolAction.SELECT, body)


class TestInit:

    @pytest.mark.asyncio
    async def test_init_creates_application(self, controller, db):
        """Response carries the persisted id and the caller's transaction id"""
        response = await controller.handle(ProtocolAction.INIT, init_body(transaction_id="txn-init-9"))

        application = db.query(Application).one()
        item = response["message"]["order"]["items"][0]
        assert item["applicationId"] == application.id
        assert item["transactionId"] == "txn-init-9"
        assert "tags" not in item
        assert response["context"]["action"] == "on_init"
        assert response["context"]["transaction_id"] == "txn-init-9"

        provider = response["message"]["order"]["providers"][0]
        assert set(provider) == {"id", "descriptor", "rateable", "locations", "categories"}

        assert application.status == "pending"
        assert application.application_data["benefitId"] == "ben-001"
        assert application.application_data["transactionId"] == "txn-init-9"
        assert application.application_data["bapId"] == BAP_ID
        assert application.eligibility_result is None

    @pytest.mark.asyncio
    async def test_init_keeps_upstream_application_id(self, controller, db):
        data = {"firstName": "Asha", "bap_application_id": "bap-app-77"}
        await controller.handle(ProtocolAction.INIT, init_body(application_data=data))
        assert db.query(Application).one().application_data["bap_application_id"] == "bap-app-77"

    @pytest.mark.asyncio
    async def test_init_without_transaction_id_creates_nothing(self, controller, db, fake_provider):
        body = init_body()
        del body["context"]["transaction_id"]

        with pytest.raises(ValidationError) as exc_info:
            await controller.handle(ProtocolAction.INIT, body)

        assert "transaction_id" in exc_info.value.message
        assert db.query(Application).count() == 0
        assert fake_provider.requests == []

    @pytest.mark.asyncio
    async def test_init_without_application_data(self, controller, db):
        with pytest.raises(ValidationError):
            await controller.handle(ProtocolAction.INIT, init_body(application_data={}))
        assert db.query(Application).count() == 0

    @pytest.mark.asyncio
    async def test_init_unknown_benefit_creates_nothing(self, controller, db):
        with pytest.raises(NotFoundError):
            await controller.handle(ProtocolAction.INIT, init_body(benefit_id="missing"))
        assert db.query(Application).count() == 0

    @pytest.mark.asyncio
    async def test_init_survives_evaluator_failure(self, controller, db):
        """The informational eligibility check never blocks an application"""
        controller.evaluator.evaluate = lambda *args, **kwargs: 1 / 0
        response = await controller.handle(ProtocolAction.INIT, init_body())
        assert response["message"]["order"]["items"][0]["applicationId"] == db.query(Application).one().id


class TestUpdate:

    @pytest.mark.asyncio
    async def test_update_replaces_payload(self, controller, db):
        await controller.handle(ProtocolAction.INIT, init_body())
        application = db.query(Application).one()

        body = init_body(
            transaction_id="txn-0002",
            application_data={"orderId": application.id, "firstName": "Asha R."},
        )
        response = await controller.handle(ProtocolAction.UPDATE, body)

        db.expire_all()
        updated = db.query(Application).one()
        item = response["message"]["order"]["items"][0]
        assert response["context"]["action"] == "on_update"
        assert item["applicationId"] == application.id
        assert item["transactionId"] == "txn-0002"
        assert updated.application_data["firstName"] == "Asha R."
        assert "annualIncome" not in updated.application_data
        assert updated.application_data["transactionId"] == "txn-0002"

    @pytest.mark.asyncio
    async def test_update_requires_order_id(self, controller):
        with pytest.raises(ValidationError) as exc_info:
            await controller.handle(ProtocolAction.UPDATE, init_body())
        assert "orderId" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_update_unknown_application(self, controller):
        body = init_body(application_data={"orderId": 4242, "firstName": "x"})
        with pytest.raises(NotFoundError):
            await controller.handle(ProtocolAction.UPDATE, body)


class TestConfirm:

    @pytest.mark.asyncio
    async def test_confirm_assigns_order_id_once(self, controller, db):
        await controller.handle(ProtocolAction.INIT, init_body())
        application = db.query(Application).one()

        first = await controller.handle(ProtocolAction.CONFIRM, confirm_body(application.id))
        order_id = first["message"]["order"]["id"]
        assert ORDER_ID_PATTERN.match(order_id)
        assert first["context"]["action"] == "on_confirm"
        assert set(first["message"]["order"]["provider"]) == {"id", "descriptor", "rateable", "locations"}

        db.expire_all()
        assert db.query(Application).one().order_id == order_id

        second = await controller.handle(ProtocolAction.CONFIRM, confirm_body(application.id))
        assert second["message"]["order"]["id"] == order_id

    @pytest.mark.asyncio
    async def test_concurrent_confirms_share_one_order_id(
        self, controller, db, session_factory, settings, content_provider
    ):
        """Two confirms that both saw no order id return the one that was stored"""
        await controller.handle(ProtocolAction.INIT, init_body())
        application_id = db.query(Application).one().id

        gated = GatedContentProvider(content_provider, parties=2)
        sessions = [session_factory(), session_factory()]
        try:
            controllers = [
                TransactionController(
                    content_provider=gated,
                    application_store=ApplicationStore(session, settings),
                    settings=settings,
                )
                for session in sessions
            ]
            responses = await asyncio.gather(*[
                c.handle(ProtocolAction.CONFIRM, confirm_body(application_id)) for c in controllers
            ])
        finally:
            for session in sessions:
                session.close()

        order_ids = {r["message"]["order"]["id"] for r in responses}
        assert len(order_ids) == 1
        db.expire_all()
        assert db.query(Application).one().order_id == order_ids.pop()

    @pytest.mark.asyncio
    async def test_confirm_unknown_application(self, controller):
        with pytest.raises(NotFoundError):
            await controller.handle(ProtocolAction.CONFIRM, confirm_body(777))

    def test_order_id_format(self, controller):
        assert ORDER_ID_PATTERN.match(controller.generate_order_id())


class TestStatus:

    @pytest.mark.asyncio
    async def test_status_of_approved_application(self, controller, db, store):
        await controller.handle(ProtocolAction.INIT, init_body())
        application = db.query(Application).one()
        confirmed = await controller.handle(ProtocolAction.CONFIRM, confirm_body(application.id))
        order_id = confirmed["message"]["order"]["id"]
        store.update_status(application.id, "approved", "Documents verified")

        response = await controller.handle(ProtocolAction.STATUS, status_body(order_id))

        order = response["message"]["order"]
        fulfillment = order["fulfillments"][0]
        assert response["context"]["action"] == "on_status"
        assert order["id"] == order_id
        assert fulfillment["id"] == "FULFILL_UNIFIED"
        assert fulfillment["type"] == "APPLICATION"
        assert fulfillment["state"]["descriptor"]["code"] == "APPLICATION-APPROVED"
        assert json.loads(fulfillment["state"]["descriptor"]["name"]) == {
            "status": "Application Approved",
            "comment": "Documents verified",
        }
        assert fulfillment["state"]["updated_at"].endswith("Z")

    @pytest.mark.asyncio
    async def test_status_unknown_order(self, controller):
        with pytest.raises(NotFoundError):
            await controller.handle(ProtocolAction.STATUS, status_body("TLEXP_NOPE_1"))

    @pytest.mark.asyncio
    async def test_status_without_order_id(self, controller):
        with pytest.raises(NotFoundError):
            await controller.handle(ProtocolAction.STATUS, protocol_request("status"))


@pytest.mark.parametrize("status,remark,code,label", [
    ("approved", "ok", "APPLICATION-APPROVED", "Application Approved"),
    ("rejected", None, "APPLICATION-REJECTED", "Application Rejected"),
    ("resubmit", "Upload a clearer photo", "APPLICATION-RESUBMIT", "Application Resubmit"),
    ("pending", None, "APPLICATION-PENDING", "Application Pending"),
    ("under_review", None, "APPLICATION-UNDER_REVIEW", "Application Under Review"),
])
def test_status_descriptor(status, remark, code, label):
    """Status codes and human readable labels"""
    descriptor = status_descriptor(status, remark)
    assert descriptor["code"] == code
    assert json.loads(descriptor["name"]) == {"status": label, "comment": remark or ""}


@pytest.mark.asyncio
async def test_transform_defect_is_reported(controller, fake_provider):
    """A benefit that cannot be mapped surfaces as TransformError"""
    fake_provider.add(make_benefit("broken", applicationCloseDate="31/12/2026"))
    body = protocol_request("select", {"order": {"items": [{"id": "broken"}]}})
    with pytest.raises(TransformError):
        await controller.handle(ProtocolAction.SELECT, body)


class TestProviderReads:

    @pytest.mark.asyncio
    async def test_listing_scoped_to_provider_with_counts(self, controller, fake_provider, users, store):
        fake_provider.add(make_benefit("ben-carol", creator_id=601))
        for status in ("pending", "approved"):
            application = store.create_application({"benefitId": "ben-001"})
            store.update_application(application.id, {"status": status})

        listing = await controller.list_provider_benefits(users["alice"].id, auth_token="user-token")

        request = fake_provider.requests[-1]
        assert sorted(request.url.params.get_list("filters[createdBy][id][$in][]")) == ["501", "502"]
        details = {b["documentId"]: b["application_details"] for b in listing["results"]}
        assert details["ben-001"] == {
            "applications_count": 2,
            "pending_applications_count": 1,
            "approved_applications_count": 1,
            "rejected_applications_count": 0,
        }

    @pytest.mark.asyncio
    async def test_listing_for_roleless_user_is_empty(self, controller, fake_provider, users):
        listing = await controller.list_provider_benefits(users["dave"].id)
        assert listing["results"] == []
        assert listing["pagination"]["total"] == 0
        assert fake_provider.requests == []

    @pytest.mark.asyncio
    async def test_listing_for_super_admin_is_unfiltered(self, controller, fake_provider, users):
        await controller.list_provider_benefits(users["admin"].id)
        assert not any(key.startswith("filters[createdBy]") for key in fake_provider.requests[-1].url.params)

    @pytest.mark.asyncio
    async def test_get_benefit_for_caller(self, controller, users):
        response = await controller.get_benefit_for_caller("ben-001", users["bob"].id)
        assert response["data"]["documentId"] == "ben-001"

        with pytest.raises(AuthorizationError):
            await controller.get_benefit_for_caller("ben-001", users["carol"].id)

    @pytest.mark.asyncio
    async def test_identity_failure_is_not_a_denial(self, controller, users):
        controller.access_filter.identity_store.get_user_by_provider_id = MagicMock(
            side_effect=UpstreamError("Failed to fetch user information")
        )
        with pytest.raises(UpstreamError):
            await controller.get_benefit_for_caller("ben-001", users["bob"].id)
