"""Google account connect endpoints."""

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import HTMLResponse, RedirectResponse

from ..core.context import DriveLinkContext
from ..core.logging import get_logger
from .dependencies import get_context, require_user_id

logger = get_logger(__name__)
router = APIRouter(prefix="/oauth", tags=["oauth"])

COMPLETE_HTML = """
<!DOCTYPE html>
<html>
	<head>
		<script>
			window.close();
		</script>
	</head>
	<body>
		<p>Completed connecting to Google. Please close this window.</p>
	</body>
</html>
"""


@router.get("/connect", summary="Start the Google connect flow")
async def connect(
    user_id: str = Depends(require_user_id),
    context: DriveLinkContext = Depends(get_context),
) -> RedirectResponse:
    url = await context.oauth.connect(user_id)
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


@router.get("/complete", summary="Google OAuth redirect target")
async def complete(
    code: str = Query(""),
    state: str = Query(""),
    user_id: str = Depends(require_user_id),
    context: DriveLinkContext = Depends(get_context),
) -> HTMLResponse:
    await context.oauth.complete(user_id, code, state)
    return HTMLResponse(COMPLETE_HTML)
