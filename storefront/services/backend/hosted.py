"""
Hosted Backend Client Implementation

Production implementation talking to the hosted backend's REST data API
(PostgREST dialect) with httpx. Used when ENV_MODE=production or staging.

Requirements:
    - BACKEND_URL (https://<project>.supabase.co)
    - BACKEND_ANON_KEY (public anon key)
    - BACKEND_SERVICE_KEY (service-role key, reconciliation sweep)

Row-level security is enforced by the backend: use for_session() to act
with the signed-in user's access token.

API Documentation:
    https://postgrest.org/en/stable/references/api.html

Author: Khalil_Bannouri
Version: 1.0.0
"""

import logging
from typing import Any, Optional, Sequence, Union

import httpx

from storefront.core.config import get_settings
from storefront.errors import BackendError, NETWORK_ERROR_CODE
from storefront.services.backend.base import (
    BaseBackendClient,
    BackendResult,
    Filter,
    Row,
    eq,
    not_found_error,
)

logger = logging.getLogger(__name__)


def format_value(value: Any) -> str:
    """Render a Python value in PostgREST filter syntax."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_filter_params(filters: Optional[Sequence[Filter]]) -> list[tuple[str, str]]:
    """
    Translate filters into PostgREST query parameters.

    Example:
        >>> build_filter_params([Filter("status", "neq", "delivered")])
        [('status', 'neq.delivered')]
    """
    params = []
    for flt in filters or ():
        if flt.op == "in":
            rendered = ",".join(format_value(v) for v in flt.value)
            params.append((flt.column, f"in.({rendered})"))
        elif flt.value is None and flt.op in ("eq", "neq"):
            params.append((flt.column, "is.null" if flt.op == "eq" else "not.is.null"))
        else:
            params.append((flt.column, f"{flt.op}.{format_value(flt.value)}"))
    return params


def parse_error(response: httpx.Response, table: str) -> BackendError:
    """Build an error descriptor from a PostgREST error response."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    return BackendError(
        message=body.get("message") or response.text or f"HTTP {response.status_code}",
        code=body.get("code"),
        status=response.status_code,
        details=body.get("details"),
        hint=body.get("hint"),
        table=table,
    )


class HostedBackendClient(BaseBackendClient):
    """
    Production hosted backend client.

    Example:
        >>> backend = HostedBackendClient().for_session(access_token)
        >>> result = await backend.select("orders", [eq("user_id", uid)])
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        access_token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the REST client.

        Raises:
            ValueError: If the backend URL or anon key is not configured
        """
        settings = get_settings()
        base_url = base_url or settings.backend_url
        api_key = api_key or settings.backend_anon_key

        if not base_url or not api_key:
            raise ValueError(
                "BACKEND_URL and BACKEND_ANON_KEY are required for the hosted backend. "
                "Set them in your .env file or environment variables."
            )

        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._access_token = access_token
        self._client = client or httpx.AsyncClient(
            base_url=f"{self._base_url}/rest/v1",
            timeout=settings.backend_timeout_seconds,
        )

        logger.debug(f"HostedBackendClient ready ({self._base_url})")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "hosted"

    def for_session(self, access_token: Optional[str]) -> "HostedBackendClient":
        if not access_token or access_token == self._access_token:
            return self
        return HostedBackendClient(
            base_url=self._base_url,
            api_key=self._api_key,
            access_token=access_token,
            client=self._client,
        )

    def _headers(self, prefer: Optional[str] = "return=representation") -> dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._access_token or self._api_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        params: Optional[list[tuple[str, str]]] = None,
        json: Any = None,
        prefer: Optional[str] = "return=representation",
    ) -> BackendResult:
        try:
            response = await self._client.request(
                method,
                f"/{table}",
                params=params,
                json=json,
                headers=self._headers(prefer),
            )
        except httpx.HTTPError as e:
            logger.error(f"Hosted: {method} {table} transport error: {e}")
            return BackendResult(error=BackendError(
                message=str(e) or e.__class__.__name__,
                code=NETWORK_ERROR_CODE,
                table=table,
            ))

        if response.is_error:
            error = parse_error(response, table)
            logger.warning(
                f"Hosted: {method} {table} failed "
                f"(status={error.status}, code={error.code}): {error.message}"
            )
            return BackendResult(error=error)

        if not response.content:
            return BackendResult(data=None)
        return BackendResult(data=response.json())

    async def select(
        self,
        table: str,
        filters: Optional[Sequence[Filter]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> BackendResult:
        params = [("select", "*")] + build_filter_params(filters)
        if order_by:
            params.append(("order", f"{order_by}.{'desc' if descending else 'asc'}"))
        if limit is not None:
            params.append(("limit", str(limit)))

        result = await self._request("GET", table, params=params, prefer=None)
        if result.success and result.data is None:
            result.data = []
        return result

    async def insert(
        self,
        table: str,
        rows: Union[Row, Sequence[Row]],
    ) -> BackendResult:
        batch = [rows] if isinstance(rows, dict) else list(rows)
        return await self._request("POST", table, json=batch)

    async def update(self, table: str, row_id: Any, values: Row) -> BackendResult:
        return await self._patch(table, row_id, values)

    async def update_if(self, table: str, row_id: Any, values: Row, expected: Row) -> BackendResult:
        # Zero rows back means another writer changed an expected column
        return await self._patch(table, row_id, values, [eq(k, v) for k, v in expected.items()])

    async def _patch(
        self,
        table: str,
        row_id: Any,
        values: Row,
        filters: Optional[Sequence[Filter]] = None,
    ) -> BackendResult:
        result = await self._request(
            "PATCH",
            table,
            params=[("id", f"eq.{format_value(row_id)}")] + build_filter_params(filters),
            json=values,
        )
        if not result.success:
            return result
        if not result.data:
            return BackendResult(error=not_found_error(table, row_id))
        return BackendResult(data=result.data[0])

    async def delete(self, table: str, row_id: Any) -> BackendResult:
        result = await self._request(
            "DELETE",
            table,
            params=[("id", f"eq.{format_value(row_id)}")],
            prefer="return=minimal",
        )
        if result.success:
            result.data = None
        return result

    async def upsert(
        self,
        table: str,
        rows: Sequence[Row],
        on_conflict: str = "id",
    ) -> BackendResult:
        return await self._request(
            "POST",
            table,
            params=[("on_conflict", on_conflict)],
            json=list(rows),
            prefer="resolution=merge-duplicates,return=representation",
        )

    async def health_check(self) -> bool:
        """Hit the REST root; any non-5xx answer means the API is reachable."""
        try:
            response = await self._client.get("/", headers=self._headers(prefer=None))
            return response.status_code < 500
        except httpx.HTTPError as e:
            logger.error(f"Hosted backend health check failed: {e}")
            return False

    async def close(self) -> None:
        await self._client.aclose()
