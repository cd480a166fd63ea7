"""Drive push-notification endpoint.

The route answers with bare status codes only: 200 for processed or ignored
deliveries, 400 for rejected ones and 500 for everything else, so Google
retries on failure.
"""

import asyncio

from fastapi import APIRouter, Depends, Header, Query, Response, status

from ..core.context import DriveLinkContext
from ..core.exceptions import DriveLinkException, OperationCanceledError, WebhookValidationError
from ..core.logging import get_logger
from ..services.webhook_reconciler import WebhookNotification
from .dependencies import get_context

logger = get_logger(__name__)
router = APIRouter(tags=["webhook"])


@router.post("/webhook", summary="Drive change notification", include_in_schema=False)
async def drive_webhook(
    user_id: str = Query("", alias="userID"),
    resource_state: str = Header("", alias="X-Goog-Resource-State"),
    channel_token: str = Header("", alias="X-Goog-Channel-Token"),
    context: DriveLinkContext = Depends(get_context),
) -> Response:
    notification = WebhookNotification(
        resource_state=resource_state,
        channel_token=channel_token,
        user_id=user_id,
    )
    timeout = context.settings.request_timeout_seconds
    try:
        try:
            async with asyncio.timeout(timeout):
                result = await context.reconciler.reconcile(notification)
        except TimeoutError as e:
            raise OperationCanceledError("drive_webhook", details={"user_id": user_id, "timeout": timeout}) from e
    except WebhookValidationError as e:
        logger.warning("Rejected Drive webhook", extra={"user_id": user_id, "error": e.message})
        return Response(status_code=status.HTTP_400_BAD_REQUEST)
    except DriveLinkException as e:
        logger.error(
            "Drive webhook failed",
            extra={"user_id": user_id, "error_code": e.error_code, "error": e.message},
        )
        return Response(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
    except Exception as e:
        logger.exception("Unexpected error handling Drive webhook", extra={"user_id": user_id, "error": str(e)})
        return Response(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    if not result.skipped:
        logger.info(
            "Reconciled Drive changes",
            extra={"user_id": user_id, "changes": result.changes, "notifications": result.notifications},
        )
    return Response(status_code=result.status_code)
