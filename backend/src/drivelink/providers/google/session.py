"""Rate-limited, quota-aware HTTP calls to Google APIs on behalf of one user."""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from ...core.exceptions import ProviderError, QuotaExceededError
from ...core.logging import get_logger
from ...core.rate_limiting import ProviderRateLimiter
from .errors import classify_quota_scope, provider_error_from_response

logger = get_logger(__name__)


class GoogleApiSession:
    """One user's authenticated access to Google, shared by the service wrappers.

    Every ``request`` goes through the same three steps: rate-limiter
    acquisition, the HTTP call, and on failure quota classification that
    sets the matching cool-down flag before the error is raised.
    """

    def __init__(
        self,
        user_id: str,
        access_token: str,
        http: httpx.AsyncClient,
        rate_limiter: ProviderRateLimiter,
    ):
        self.user_id = user_id
        self._access_token = access_token
        self._http = http
        self._limiter = rate_limiter

    async def request(
        self,
        service_type: str,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        operation: str = "",
        use_bucket: bool = True,
    ) -> Dict[str, Any]:
        """Perform one call and return the decoded JSON body ({} for empty bodies).

        Raises:
            RateLimitedError: refused locally before any network call.
            QuotaExceededError: Google reported quota exhaustion.
            ProviderError: any other failure, including transport errors (status 0).
        """
        await self._limiter.acquire(service_type, self.user_id, use_bucket=use_bucket)

        try:
            response = await self._http.request(
                method,
                url,
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {self._access_token}", "Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.warning(
                "Google API transport error",
                extra={"user_id": self.user_id, "service_type": service_type, "operation": operation, "error": str(e)},
            )
            raise ProviderError(0, f"{operation or url}: {e}") from e

        if response.status_code >= 400:
            raise await self._classify(service_type, operation, response)

        if not response.content:
            return {}
        return response.json()

    async def _classify(self, service_type: str, operation: str, response: httpx.Response) -> ProviderError:
        error = provider_error_from_response(response)
        scope = classify_quota_scope(error)
        logger.warning(
            "Google API call failed",
            extra={
                "user_id": self.user_id,
                "service_type": service_type,
                "operation": operation,
                "status": error.status,
                "reasons": ",".join(error.reasons),
                "quota_scope": scope,
            },
        )
        if scope is None:
            return error
        if scope == QuotaExceededError.SCOPE_USER:
            await self._limiter.flag_user(service_type, self.user_id)
        else:
            await self._limiter.flag_project(service_type)
        return QuotaExceededError(service_type, scope, error)
