"""Parsing and quota classification of Google API error responses.

Google returns errors as::

    {"error": {"code": 403, "message": "...",
               "errors": [{"domain": "usageLimits", "reason": "userRateLimitExceeded"}],
               "details": [{"@type": "type.googleapis.com/google.rpc.ErrorInfo",
                            "reason": "RATE_LIMIT_EXCEEDED",
                            "metadata": {"quota_limit": "defaultPerMinutePerUser", ...}}]}}
"""

from typing import Any

import httpx

from ...core.exceptions import ProviderError, QuotaExceededError

REASON_USER_RATE_LIMIT = "userRateLimitExceeded"
REASON_RATE_LIMIT = "rateLimitExceeded"
DETAIL_RATE_LIMIT = "RATE_LIMIT_EXCEEDED"
QUOTA_LIMIT_PER_USER = "defaultPerMinutePerUser"


def _parse_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def provider_error_from_response(response: httpx.Response) -> ProviderError:
    """Build a ProviderError from a non-success Google response."""
    body = _parse_body(response)
    message = ""
    reasons: list[str] = []
    error_details: list[dict] = []

    error_obj = body.get("error") if isinstance(body, dict) else None
    if isinstance(error_obj, dict):
        message = str(error_obj.get("message") or "")
        for item in error_obj.get("errors") or []:
            if isinstance(item, dict) and item.get("reason"):
                reasons.append(str(item["reason"]))
        error_details = [d for d in (error_obj.get("details") or []) if isinstance(d, dict)]
    elif isinstance(error_obj, str):
        # OAuth endpoints use {"error": "invalid_grant", "error_description": "..."}
        reasons.append(error_obj)
        message = str(body.get("error_description") or error_obj)
    elif isinstance(body, str):
        message = body[:500]

    return ProviderError(
        status=response.status_code,
        message=message or response.reason_phrase,
        reasons=reasons,
        error_details=error_details,
    )


def classify_quota_scope(error: ProviderError) -> str | None:
    """Return "user", "project" or None for a non-quota error.

    The first non-empty reason decides. ``rateLimitExceeded`` may still be a
    per-user limit, which only the ErrorInfo metadata reveals.
    """
    reason = error.reasons[0] if error.reasons else ""
    if reason == REASON_USER_RATE_LIMIT:
        return QuotaExceededError.SCOPE_USER
    if reason != REASON_RATE_LIMIT:
        return None
    if not error.error_details:
        return None

    for detail in error.error_details:
        metadata = detail.get("metadata") or {}
        if detail.get("reason") == DETAIL_RATE_LIMIT and metadata.get("quota_limit") == QUOTA_LIMIT_PER_USER:
            return QuotaExceededError.SCOPE_USER
    return QuotaExceededError.SCOPE_PROJECT
