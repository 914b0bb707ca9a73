"""
Transaction lifecycle: search, select, init, update, confirm and status
"""
import json
import time
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from benefits_bpp.core.config import Settings, get_settings
from benefits_bpp.core.exceptions import (NotFoundError, ProtocolError,
                                          ValidationError)
from benefits_bpp.core.logging_config import LoggingConfig
from benefits_bpp.core.metrics import (applications_created_total,
                                       eligibility_checks_total,
                                       protocol_request_duration_seconds,
                                       protocol_requests_total)
from benefits_bpp.core.protocol import ProtocolAction, ProtocolRequest
from benefits_bpp.core.utils import (generate_random_string, safe_get_nested,
                                     title_case, to_iso8601, utcnow)
from benefits_bpp.models.application import Application, ApplicationStatus
from benefits_bpp.services.access_filter import AccessFilter
from benefits_bpp.services.application_store import ApplicationStore
from benefits_bpp.services.catalog_transformer import (CatalogTransformer,
                                                       first_provider)
from benefits_bpp.services.content_provider import ContentProviderClient
from benefits_bpp.services.eligibility_evaluator import (
    EligibilityEvaluator, build_eligibility_input)

logger = LoggingConfig.get_logger(__name__)

# Status labels that do not follow the "Application <Titlecased>" rule
STATUS_LABELS = {
    ApplicationStatus.APPROVED.value: "Application Approved",
    ApplicationStatus.REJECTED.value: "Application Rejected",
    ApplicationStatus.RESUBMIT.value: "Application Resubmit",
}


def require_participant(request: ProtocolRequest) -> Tuple[str, str]:
    """
    Requesting participant id and URI

    Raises:
        ValidationError: either is missing
    """
    bap_id = request.context.bap_id
    bap_uri = request.context.bap_uri
    if not bap_id or not bap_uri:
        raise ValidationError("Invalid BAP ID or URI")
    return bap_id, bap_uri


def status_descriptor(status: str, remark: Optional[str]) -> Dict[str, str]:
    """Fulfillment state descriptor for an application status"""
    label = STATUS_LABELS.get(status.lower()) or f"Application {title_case(status)}"
    return {
        "code": f"APPLICATION-{status.upper()}",
        "name": json.dumps({"status": label, "comment": remark or ""}),
    }


class TransactionController:
    """
    Drives protocol actions against the content provider and the application store

    The requesting participant (bap_id / bap_uri) is read from each request
    and passed down explicitly; nothing request-specific is kept on the
    instance.
    """

    def __init__(
        self,
        content_provider: ContentProviderClient,
        application_store: ApplicationStore,
        access_filter: Optional[AccessFilter] = None,
        transformer: Optional[CatalogTransformer] = None,
        evaluator: Optional[EligibilityEvaluator] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.content_provider = content_provider
        self.application_store = application_store
        self.access_filter = access_filter
        self.transformer = transformer or CatalogTransformer(self.settings)
        self.evaluator = evaluator or EligibilityEvaluator()

    async def handle(self, action: ProtocolAction, body: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Dispatch one protocol request and record its outcome

        Args:
            action: Inbound action
            body: Raw JSON request body

        Returns:
            Response envelope for the matching on_<action>
        """
        handlers = {
            ProtocolAction.SEARCH: self.search,
            ProtocolAction.SELECT: self.select,
            ProtocolAction.INIT: self.init,
            ProtocolAction.UPDATE: self.update,
            ProtocolAction.CONFIRM: self.confirm,
            ProtocolAction.STATUS: self.status,
        }
        start_time = time.time()
        outcome = "success"
        try:
            try:
                request = ProtocolRequest.from_dict(body)
            except PydanticValidationError as e:
                logger.warning(f"Malformed {action.value} request: {e.error_count()} invalid field(s)")
                raise ValidationError("Invalid protocol request") from e
            LoggingConfig.set_context(action=action.value, transaction_id=request.context.transaction_id)
            return await handlers[action](request)
        except ProtocolError as e:
            outcome = e.code
            raise
        except Exception:
            outcome = "INTERNAL_ERROR"
            raise
        finally:
            protocol_requests_total.labels(action=action.value, outcome=outcome).inc()
            protocol_request_duration_seconds.labels(action=action.value).observe(time.time() - start_time)

    # ------------------------------------------------------------------
    # Catalog actions
    # ------------------------------------------------------------------

    async def search(self, request: ProtocolRequest) -> Dict[str, Any]:
        bap_id, bap_uri = require_participant(request)
        if request.context.domain != self.settings.domain:
            raise ValidationError("Invalid domain provided")

        benefits = await self.content_provider.list_published_benefits()
        logger.info(f"Search returned {len(benefits)} benefit(s)", extra={"bap_id": bap_id})

        return self.transformer.to_catalog(
            request.context_dict(),
            benefits,
            ProtocolAction.SEARCH.callback,
            include_detail_tags=True,
            bap_id=bap_id,
            bap_uri=bap_uri,
            continue_transaction=False,
        )

    async def select(self, request: ProtocolRequest) -> Dict[str, Any]:
        bap_id, bap_uri = require_participant(request)
        benefit_id = safe_get_nested(request.message, "order", "items", 0, "id")
        if not benefit_id:
            raise ValidationError("message.order.items[0].id is required")

        benefit = await self.content_provider.get_benefit_by_id(benefit_id)
        return self.transformer.to_catalog(
            request.context_dict(),
            [benefit],
            ProtocolAction.SELECT.callback,
            include_detail_tags=False,
            bap_id=bap_id,
            bap_uri=bap_uri,
        )

    # ------------------------------------------------------------------
    # Application actions
    # ------------------------------------------------------------------

    def _application_input(self, request: ProtocolRequest) -> Tuple[Dict[str, Any], str, str]:
        """applicationData, transaction id and benefit id shared by init and update"""
        application_data = safe_get_nested(
            request.message, "order", "fulfillments", 0, "customer", "applicationData"
        )
        if not isinstance(application_data, dict) or not application_data:
            raise ValidationError("applicationData is required in payload")

        transaction_id = request.context.transaction_id
        if not transaction_id:
            raise ValidationError("transaction_id is required in context")

        benefit_id = safe_get_nested(request.message, "order", "items", 0, "id")
        if not benefit_id:
            raise ValidationError("message.order.items[0].id is required")

        return application_data, transaction_id, benefit_id

    @staticmethod
    def _with_identifiers(
        application_data: Dict[str, Any],
        benefit_id: str,
        transaction_id: str,
        bap_id: str,
    ) -> Dict[str, Any]:
        return {
            **application_data,
            "benefitId": benefit_id,
            "transactionId": transaction_id,
            "bapId": bap_id,
        }

    def _order_response(
        self,
        request: ProtocolRequest,
        benefit: Dict[str, Any],
        action: ProtocolAction,
        application_id: Any,
        transaction_id: str,
        bap_id: str,
        bap_uri: str,
    ) -> Dict[str, Any]:
        envelope = self.transformer.to_catalog(
            request.context_dict(),
            [benefit],
            action.callback,
            include_detail_tags=False,
            bap_id=bap_id,
            bap_uri=bap_uri,
        )
        provider = first_provider(envelope)
        items = provider["items"]
        items[0]["applicationId"] = application_id
        items[0]["transactionId"] = transaction_id

        return {
            "context": {**request.context_dict(), **envelope["context"]},
            "message": {
                "order": {
                    "providers": [{
                        "id": provider["id"],
                        "descriptor": provider["descriptor"],
                        "rateable": provider.get("rateable"),
                        "locations": provider["locations"],
                        "categories": provider["categories"],
                    }],
                    "items": items,
                },
            },
        }

    def _informational_eligibility(self, benefit: Dict[str, Any], application: Application) -> None:
        """Evaluate once at creation; the result is logged, never stored"""
        try:
            attributes, rules = build_eligibility_input(benefit, application.to_dict())
            result = self.evaluator.evaluate(attributes, rules, strict=True)
        except Exception as e:
            eligibility_checks_total.labels(result="failed").inc()
            logger.warning(f"Eligibility check failed for application {application.id}: {e}")
            return

        verdict = "eligible" if result.is_eligible else "ineligible"
        eligibility_checks_total.labels(result=verdict).inc()
        logger.info(
            f"Application {application.id} is {verdict} at submission",
            extra={"application_id": application.id, "eligibility": verdict},
        )

    async def init(self, request: ProtocolRequest) -> Dict[str, Any]:
        bap_id, bap_uri = require_participant(request)
        application_data, transaction_id, benefit_id = self._application_input(request)

        benefit = await self.content_provider.get_benefit_by_id(benefit_id)

        application = self.application_store.create_application(
            self._with_identifiers(application_data, benefit_id, transaction_id, bap_id)
        )
        applications_created_total.inc()
        self._informational_eligibility(benefit, application)

        return self._order_response(
            request, benefit, ProtocolAction.INIT, application.id, transaction_id, bap_id, bap_uri
        )

    async def update(self, request: ProtocolRequest) -> Dict[str, Any]:
        bap_id, bap_uri = require_participant(request)
        application_data, transaction_id, benefit_id = self._application_input(request)

        application_id = application_data.get("orderId")
        if not application_id:
            raise ValidationError("orderId (applicationId) is required for update")
        application = self.application_store.find_unique_application(application_id)
        if application is None:
            raise NotFoundError(f"Application with ID {application_id} not found")

        benefit = await self.content_provider.get_benefit_by_id(benefit_id)

        self.application_store.replace_application_data(
            application.id,
            self._with_identifiers(application_data, benefit_id, transaction_id, bap_id),
        )
        logger.info(f"Application {application.id} updated", extra={"application_id": application.id})

        return self._order_response(
            request, benefit, ProtocolAction.UPDATE, application.id, transaction_id, bap_id, bap_uri
        )

    def generate_order_id(self) -> str:
        """<PREFIX>_<UPPER-ALNUM>_<epoch millis>"""
        return f"{self.settings.order_id_prefix}_{generate_random_string().upper()}_{int(time.time() * 1000)}"

    async def confirm(self, request: ProtocolRequest) -> Dict[str, Any]:
        bap_id, bap_uri = require_participant(request)
        application_id = safe_get_nested(request.message, "order", "items", 0, "id")
        if not application_id:
            raise ValidationError("message.order.items[0].id is required")

        application = self.application_store.find_unique_application(application_id)
        if application is None:
            raise NotFoundError("Application not found")

        benefit = await self.content_provider.get_benefit_by_id(application.benefit_id)
        envelope = self.transformer.to_catalog(
            request.context_dict(),
            [benefit],
            ProtocolAction.CONFIRM.callback,
            include_detail_tags=False,
            bap_id=bap_id,
            bap_uri=bap_uri,
        )
        provider = first_provider(envelope)

        order_id = application.order_id
        if not order_id:
            generated = self.generate_order_id()
            order_id = self.application_store.assign_order_id(application.id, generated)
            if order_id == generated:
                logger.info(
                    f"Order {order_id} assigned to application {application.id}",
                    extra={"application_id": application.id, "order_id": order_id},
                )

        return {
            "context": {**request.context_dict(), **envelope["context"]},
            "message": {
                "order": {
                    "provider": {
                        "id": provider["id"],
                        "descriptor": provider["descriptor"],
                        "rateable": provider.get("rateable"),
                        "locations": provider["locations"],
                    },
                    "items": provider["items"],
                    "id": order_id,
                },
            },
        }

    async def status(self, request: ProtocolRequest) -> Dict[str, Any]:
        bap_id, bap_uri = require_participant(request)
        order_id = request.message.get("order_id")
        application = (
            self.application_store.find_application(order_id=order_id) if order_id else None
        )
        if application is None:
            raise NotFoundError("No application found for the given order ID")

        benefit = await self.content_provider.get_benefit_by_id(application.benefit_id)
        envelope = self.transformer.to_catalog(
            request.context_dict(),
            [benefit],
            ProtocolAction.STATUS.callback,
            include_detail_tags=False,
            bap_id=bap_id,
            bap_uri=bap_uri,
        )
        provider = first_provider(envelope)

        return {
            "context": {**request.context_dict(), **envelope["context"]},
            "message": {
                "order": {
                    "provider": {
                        "id": provider["id"],
                        "descriptor": provider["descriptor"],
                        "rateable": provider.get("rateable"),
                    },
                    "items": provider["items"],
                    "id": order_id,
                    "fulfillments": [
                        {
                            "id": "FULFILL_UNIFIED",
                            "type": "APPLICATION",
                            "tracking": False,
                            "state": {
                                "descriptor": status_descriptor(application.status, application.remark),
                                "updated_at": to_iso8601(utcnow()),
                            },
                        },
                    ],
                },
            },
        }

    # ------------------------------------------------------------------
    # Provider-facing reads
    # ------------------------------------------------------------------

    def _require_access_filter(self) -> AccessFilter:
        if self.access_filter is None:
            raise RuntimeError("TransactionController was built without an AccessFilter")
        return self.access_filter

    async def list_provider_benefits(
        self,
        user_id: Any,
        auth_token: Optional[str] = None,
        page: int = 1,
        page_size: int = 1000,
        sort: str = "createdAt:desc",
        locale: str = "en",
        filters: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Published benefits visible to a provider user, with application counts

        Returns:
            {"results": [...], "pagination": {...}}; each result carries
            application_details with total/pending/approved/rejected counts
        """
        access_filter = self._require_access_filter()
        caller = access_filter.resolve_caller(user_id)
        creators = access_filter.creator_scope(caller)

        filters = dict(filters or {})
        if creators is not None:
            if not creators:
                return {
                    "results": [],
                    "pagination": {"page": page, "pageSize": page_size, "pageCount": 0, "total": 0},
                }
            filters["createdBy"] = {"id": {"$in": creators}}

        listing = await self.content_provider.list_benefits(
            page=page,
            page_size=page_size,
            sort=sort,
            locale=locale,
            filters=filters,
            auth_token=auth_token,
        )
        results: List[Dict[str, Any]] = listing["results"]
        counts = self.application_store.count_by_status([str(b.get("documentId")) for b in results])
        listing["results"] = [
            {**benefit, "application_details": counts[str(benefit.get("documentId"))]}
            for benefit in results
        ]
        return listing

    async def get_benefit_for_caller(
        self,
        benefit_id: str,
        user_id: Any,
        auth_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        One benefit, if the caller may see it

        Raises:
            AuthorizationError: benefit is outside the caller's scope
            NotFoundError: benefit does not exist
        """
        access_filter = self._require_access_filter()
        caller = access_filter.resolve_caller(user_id)
        benefit = await self.content_provider.get_benefit_by_id(benefit_id, auth_token=auth_token)
        access_filter.ensure_can_access(caller, benefit)
        return {"data": benefit}
