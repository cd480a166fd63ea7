"""Reply-to-comment dialog endpoints used by notification buttons."""

from fastapi import APIRouter, Depends, Query, Response, status
from fastapi.responses import JSONResponse

from ..core.context import DriveLinkContext
from ..core.exceptions import DriveLinkException
from ..core.logging import get_logger
from ..schemas.chat import DialogErrorResponse, PostActionIntegrationRequest, SubmitDialogRequest
from .dependencies import get_context, require_user_id

logger = get_logger(__name__)
router = APIRouter(tags=["reply"])


@router.post("/reply_dialog", summary="Open the reply-to-comment dialog")
async def open_reply_dialog(
    request: PostActionIntegrationRequest,
    user_id: str = Depends(require_user_id),
    context: DriveLinkContext = Depends(get_context),
) -> Response:
    try:
        await context.replies.open_reply_dialog(request)
    except DriveLinkException as e:
        logger.warning("Failed to open reply dialog", extra={"user_id": user_id, "error": e.message})
        return Response(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
    return Response(status_code=status.HTTP_200_OK)


@router.post("/reply", summary="Submit a comment reply")
async def submit_reply(
    request: SubmitDialogRequest,
    file_id: str = Query("", alias="fileID"),
    comment_id: str = Query("", alias="commentID"),
    user_id: str = Depends(require_user_id),
    context: DriveLinkContext = Depends(get_context),
) -> Response:
    if request.user_id and request.user_id != user_id:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content=DialogErrorResponse(error="Not authorized").model_dump(),
        )
    request.user_id = user_id
    try:
        await context.replies.submit_reply(request, file_id, comment_id)
    except DriveLinkException as e:
        logger.warning(
            "Failed to create comment reply",
            extra={"user_id": user_id, "file_id": file_id, "comment_id": comment_id, "error": e.message},
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=DialogErrorResponse(error="Failed to reply to the comment. Please try again.").model_dump(),
        )
    return Response(status_code=status.HTTP_200_OK)
