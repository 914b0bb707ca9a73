"""
Benefit record -> protocol catalog mapping
"""
import json
import re
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from benefits_bpp.core.config import Settings, get_settings
from benefits_bpp.core.exceptions import TransformError
from benefits_bpp.core.logging_config import LoggingConfig
from benefits_bpp.core.protocol import (CatalogItem, Descriptor, ItemTime,
                                        Price, TagEntry, TagGroup, TimeRange)
from benefits_bpp.core.utils import to_iso8601, unset_object_keys, utcnow

logger = LoggingConfig.get_logger(__name__)

# Rupee sign followed by a digit group, optionally comma-grouped ("₹1,20,000")
AMOUNT_PATTERN = re.compile(r"₹([\d,]+)")

Describe = Callable[[Dict[str, Any]], Descriptor]


def estimate_benefit_value(benefit_items: Optional[Sequence[Dict[str, Any]]]) -> str:
    """
    Best-effort monetary total of a benefit

    Sums every rupee amount mentioned in the free-text description of every
    benefit item. Amounts written any other way are not seen, and an amount
    mentioned twice is counted twice; the result is an estimate for display.
    """
    total = 0
    for item in benefit_items or []:
        description = item.get("description") or ""
        for match in AMOUNT_PATTERN.findall(description):
            digits = match.replace(",", "")
            if digits:
                total += int(digits)
    return str(total)


def build_tag_group(
    records: Optional[Sequence[Dict[str, Any]]],
    code: str,
    name: str,
    describe: Describe,
    strip_keys: Sequence[str] = ("id",),
) -> Optional[TagGroup]:
    """
    One detail tag group; None when there is nothing to show

    Every entry carries the source record, minus its internal keys, as a JSON
    string value.
    """
    if not records:
        return None
    return TagGroup(
        display=True,
        descriptor=Descriptor(code=code, name=name),
        list=[
            TagEntry(
                descriptor=describe(record),
                value=json.dumps(unset_object_keys(record, strip_keys), ensure_ascii=False),
                display=True,
            )
            for record in records
        ],
    )


def _describe_eligibility(rule: Dict[str, Any]) -> Descriptor:
    rule_type = str(rule.get("type") or "")
    evidence = rule.get("evidence")
    return Descriptor(
        code=evidence,
        name=f"{rule_type[:1].upper()}{rule_type[1:]} - {evidence}",
        short_desc=rule.get("description"),
    )


def _describe_document(document: Dict[str, Any]) -> Descriptor:
    if document.get("isRequired"):
        return Descriptor(code="mandatory-doc", name="Mandatory Document")
    return Descriptor(code="optional-doc", name="Optional Document")


def _describe_benefit_item(item: Dict[str, Any]) -> Descriptor:
    return Descriptor(code="financial", name=item.get("title"))


def _describe_exclusion(_: Dict[str, Any]) -> Descriptor:
    return Descriptor(code="ineligibility", name="Ineligibility Condition")


def _describe_sponsor(_: Dict[str, Any]) -> Descriptor:
    return Descriptor(code="sponsoringEntities", name="Entities Sponsoring Benefits")


def _describe_form_field(form_field: Dict[str, Any]) -> Descriptor:
    return Descriptor(
        code=f"applicationFormField-{form_field.get('name')}",
        name=f"Application Form Field - {form_field.get('label')}",
    )


def flatten_application_form(application_form: Optional[Sequence[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """All fields of all field groups, each tagged with its group's name and label"""
    fields: List[Dict[str, Any]] = []
    for group in application_form or []:
        group_fields = group.get("fields")
        if not isinstance(group_fields, list):
            continue
        for form_field in group_fields:
            fields.append({
                **form_field,
                "fieldsGroupName": group.get("fieldsGroupName"),
                "fieldsGroupLabel": group.get("fieldsGroupLabel"),
            })
    return fields


@dataclass(frozen=True)
class TagGroupSource:
    source: Callable[[Dict[str, Any]], Optional[Sequence[Dict[str, Any]]]]
    code: str
    name: str
    describe: Describe
    strip_keys: Sequence[str] = ("id",)


DETAIL_TAG_GROUPS: Sequence[TagGroupSource] = (
    TagGroupSource(lambda b: b.get("eligibility"), "eligibility", "Eligibility", _describe_eligibility),
    TagGroupSource(lambda b: b.get("documents"), "required-docs", "Required Documents", _describe_document),
    TagGroupSource(lambda b: b.get("benefits"), "benefits", "Benefits", _describe_benefit_item,
                   strip_keys=("id", "__component")),
    TagGroupSource(lambda b: b.get("exclusions"), "exclusions", "Exclusions", _describe_exclusion),
    TagGroupSource(lambda b: b.get("sponsoringEntities"), "sponsoringEntities", "Sponsoring Entities",
                   _describe_sponsor),
    TagGroupSource(lambda b: flatten_application_form(b.get("applicationForm")), "applicationForm",
                   "Application Form", _describe_form_field),
)


def build_detail_tags(benefit: Dict[str, Any]) -> List[TagGroup]:
    """Non-empty detail tag groups of a benefit, in a fixed order"""
    groups = (
        build_tag_group(entry.source(benefit), entry.code, entry.name, entry.describe, entry.strip_keys)
        for entry in DETAIL_TAG_GROUPS
    )
    return [group for group in groups if group is not None]


class CatalogTransformer:
    """
    Builds protocol envelopes around catalog items

    Participant identifiers are passed to every call; the transformer holds
    nothing but settings.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def to_item(self, benefit: Dict[str, Any], include_detail_tags: bool) -> Dict[str, Any]:
        """Catalog item for one benefit"""
        try:
            time_range = TimeRange(
                start=to_iso8601(benefit.get("applicationOpenDate")),
                end=to_iso8601(benefit.get("applicationCloseDate")),
            )
        except ValueError as e:
            raise TransformError(
                f"Invalid application window on benefit {benefit.get('documentId')}"
            ) from e

        item = CatalogItem(
            id=benefit.get("documentId"),
            descriptor=Descriptor(
                name=benefit.get("title"),
                long_desc=benefit.get("longDescription"),
            ),
            price=Price(
                currency=self.settings.currency,
                value=estimate_benefit_value(benefit.get("benefits")),
            ),
            time=ItemTime(range=time_range),
            rateable=False,
            tags=build_detail_tags(benefit) if include_detail_tags else None,
        )
        return item.to_dict()

    def build_context(
        self,
        request_context: Optional[Dict[str, Any]],
        action: str,
        *,
        bap_id: str,
        bap_uri: str,
        continue_transaction: bool,
    ) -> Dict[str, Any]:
        """
        Response context: protocol defaults, then the inbound context, then the
        fields this service owns
        """
        inbound = dict(request_context or {})
        transaction_id = inbound.get("transaction_id") if continue_transaction else None
        return {
            "version": self.settings.protocol_version,
            "ttl": self.settings.protocol_ttl,
            **inbound,
            "domain": self.settings.domain,
            "action": action,
            "transaction_id": transaction_id or str(uuid.uuid4()),
            "message_id": str(uuid.uuid4()),
            "timestamp": to_iso8601(utcnow()),
            "bap_id": bap_id,
            "bap_uri": bap_uri,
            "bpp_id": self.settings.bpp_id,
            "bpp_uri": self.settings.bpp_uri,
        }

    def build_provider(self, benefits: Sequence[Dict[str, Any]], items: List[Dict[str, Any]]) -> Dict[str, Any]:
        first = benefits[0] if benefits else {}
        image_url = first.get("imageUrl")
        settings = self.settings
        return {
            "id": settings.bpp_id,
            "descriptor": {
                "name": (first.get("providingEntity") or {}).get("name") or "Unknown Provider",
                "short_desc": "Multiple scholarships offered",
                "images": [image_url] if image_url else [],
            },
            "categories": [
                {
                    "id": "CAT_SCHOLARSHIP",
                    "descriptor": {"code": "scholarship", "name": "Scholarship"},
                },
            ],
            "fulfillments": [{"id": "FULFILL_UNIFIED", "tracking": False}],
            "locations": [
                {
                    "id": "L1",
                    "city": {
                        "name": settings.provider_location_city_name,
                        "code": settings.provider_location_city_code,
                    },
                    "state": {
                        "name": settings.provider_location_state_name,
                        "code": settings.provider_location_state_code,
                    },
                },
            ],
            "items": items,
        }

    def to_catalog(
        self,
        request_context: Optional[Dict[str, Any]],
        benefits: Any,
        action: str,
        include_detail_tags: bool = True,
        *,
        bap_id: str,
        bap_uri: str,
        continue_transaction: bool = True,
    ) -> Dict[str, Any]:
        """
        Wrap benefits into a protocol catalog envelope

        Args:
            request_context: Inbound context, echoed except for protocol-owned fields
            benefits: List of benefit records
            action: Response action, e.g. "on_search"
            include_detail_tags: Attach the detail tag groups to every item
            bap_id: Requesting participant id
            bap_uri: Requesting participant URI
            continue_transaction: Echo the inbound transaction_id instead of
                starting a new transaction

        Raises:
            TransformError: benefits is not a list, or a record cannot be mapped
        """
        if not isinstance(benefits, list):
            raise TransformError("Expected an array of benefits (invalid input shape)")

        items = [self.to_item(benefit, include_detail_tags) for benefit in benefits]
        logger.debug(f"Built {action} catalog with {len(items)} item(s)")

        return {
            "context": self.build_context(
                request_context,
                action,
                bap_id=bap_id,
                bap_uri=bap_uri,
                continue_transaction=continue_transaction,
            ),
            "message": {
                "catalog": {
                    "descriptor": {"name": self.settings.bpp_id},
                    "providers": [self.build_provider(benefits, items)],
                },
            },
        }


def first_provider(envelope: Dict[str, Any]) -> Dict[str, Any]:
    """
    Provider block of a catalog envelope that must contain at least one item

    Raises:
        TransformError: no provider or no items were produced
    """
    providers = ((envelope.get("message") or {}).get("catalog") or {}).get("providers") or []
    provider = providers[0] if providers else None
    if not provider or not provider.get("id") or not provider.get("items"):
        raise TransformError("Failed to transform benefit data to protocol format")
    return provider
