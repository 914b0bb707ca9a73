"""
HTTP client for the upstream benefit content provider
"""
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from benefits_bpp.core.config import Settings, get_settings
from benefits_bpp.core.exceptions import NotFoundError, UpstreamError
from benefits_bpp.core.logging_config import LoggingConfig

logger = LoggingConfig.get_logger(__name__)

QueryParams = List[Tuple[str, str]]

# Relations the catalog transformer reads from a benefit record
BENEFIT_POPULATE: QueryParams = [
    ("populate[tags]", "*"),
    ("populate[benefits][on][benefit.financial-benefit][populate]", "*"),
    ("populate[benefits][on][benefit.non-monetary-benefit][populate]", "*"),
    ("populate[exclusions]", "*"),
    ("populate[references]", "*"),
    ("populate[providingEntity][populate][address]", "*"),
    ("populate[providingEntity][populate][contactInfo]", "*"),
    ("populate[sponsoringEntities][populate][address]", "*"),
    ("populate[sponsoringEntities][populate][contactInfo]", "*"),
    ("populate[eligibility][populate][criteria]", "*"),
    ("populate[documents]", "*"),
    ("populate[applicationProcess]", "*"),
    ("populate[applicationForm][populate][fields][populate][options]", "*"),
    ("populate[benefitCalculationRules]", "*"),
]

ADMIN_BENEFIT_PATH = "/content-manager/collection-types/api::benefit.benefit"
PUBLIC_BENEFIT_PATH = "/api/benefits"


def encode_query(value: Any, prefix: str = "") -> QueryParams:
    """
    Flatten nested dicts/lists into bracket-notation query pairs

    {"filters": {"createdBy": {"id": {"$in": ["1", "2"]}}}} ->
    [("filters[createdBy][id][$in][]", "1"), ("filters[createdBy][id][$in][]", "2")]
    """
    pairs: QueryParams = []
    if isinstance(value, dict):
        for key, inner in value.items():
            name = f"{prefix}[{key}]" if prefix else str(key)
            pairs.extend(encode_query(inner, name))
    elif isinstance(value, (list, tuple)):
        for inner in value:
            pairs.extend(encode_query(inner, f"{prefix}[]"))
    elif value is None:
        pass
    elif isinstance(value, bool):
        pairs.append((prefix, "true" if value else "false"))
    else:
        pairs.append((prefix, str(value)))
    return pairs


def bearer(token: str) -> str:
    return token if token.startswith("Bearer ") else f"Bearer {token}"


class ContentProviderClient:
    """
    Client for the benefit content provider (Strapi-style REST API)

    Transport failures never leave this class: a 404 becomes NotFoundError,
    every other HTTP or network failure becomes UpstreamError.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.settings.content_provider_url,
                timeout=self.settings.content_provider_timeout_seconds,
                transport=self._transport,
                headers={"Accept": "application/json", "Content-Type": "application/json"},
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def _get(
        self,
        path: str,
        params: Optional[Sequence[Tuple[str, str]]] = None,
        authorization: Optional[str] = None,
    ) -> Dict[str, Any]:
        headers = {"Authorization": authorization or bearer(self.settings.content_provider_token)}
        try:
            response = await self._get_client().get(path, params=list(params or []), headers=headers)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.warning(
                "Content provider returned an error",
                extra={"path": path, "status_code": status_code},
            )
            if status_code == 404:
                raise NotFoundError("Benefit not found") from e
            raise UpstreamError(f"Content provider responded with HTTP {status_code}") from e
        except httpx.HTTPError as e:
            logger.error(
                f"Content provider request failed: {type(e).__name__}",
                extra={"path": path},
            )
            raise UpstreamError("Content provider unavailable") from e
        except ValueError as e:
            raise UpstreamError("Content provider returned malformed JSON") from e

    async def get_benefit_by_id(self, benefit_id: str, auth_token: Optional[str] = None) -> Dict[str, Any]:
        """
        Fetch one benefit record

        Args:
            benefit_id: Benefit document id
            auth_token: Caller's own token; when it differs from the service
                token the admin endpoint is used so drafts are visible

        Raises:
            NotFoundError: Benefit does not exist
            UpstreamError: Content provider failed
        """
        service_token = self.settings.content_provider_token
        if auth_token and auth_token not in (service_token, bearer(service_token)):
            payload = await self._get(f"{ADMIN_BENEFIT_PATH}/{benefit_id}", authorization=bearer(auth_token))
        else:
            payload = await self._get(f"{PUBLIC_BENEFIT_PATH}/{benefit_id}", params=BENEFIT_POPULATE)

        benefit = payload.get("data") if isinstance(payload, dict) else None
        if not benefit:
            raise NotFoundError(f"Benefit {benefit_id} not found")
        return benefit

    async def list_published_benefits(self) -> List[Dict[str, Any]]:
        """Full public catalog, used by protocol search"""
        payload = await self._get(PUBLIC_BENEFIT_PATH, params=BENEFIT_POPULATE)
        data = payload.get("data") if isinstance(payload, dict) else None
        return data or []

    async def list_benefits(
        self,
        page: int = 1,
        page_size: int = 1000,
        sort: str = "createdAt:desc",
        locale: str = "en",
        filters: Optional[Dict[str, Any]] = None,
        auth_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Paged admin listing; only published benefits are kept

        Returns:
            {"results": [...], "pagination": {...}}
        """
        params = encode_query({
            "page": page,
            "pageSize": page_size,
            "sort": sort,
            "locale": locale,
            "filters": filters or {},
        })
        authorization = bearer(auth_token) if auth_token else None
        payload = await self._get(ADMIN_BENEFIT_PATH, params=params, authorization=authorization)

        results = [
            benefit for benefit in (payload.get("results") or [])
            if benefit.get("status") == "published"
        ]
        return {
            "results": results,
            "pagination": payload.get("pagination") or {
                "page": page,
                "pageSize": page_size,
                "pageCount": 0,
                "total": len(results),
            },
        }
