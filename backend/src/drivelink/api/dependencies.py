"""
FastAPI dependencies shared by the routers.
"""

from fastapi import Header, Request

from ..core.context import DriveLinkContext
from ..core.exceptions import AuthenticationError, ConfigurationError
from ..core.middleware import USER_ID_HEADER


def get_context(request: Request) -> DriveLinkContext:
    """Return the component container built at startup."""
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise ConfigurationError("Application context is not initialized")
    return context


async def require_user_id(
    request: Request,
    user_id: str | None = Header(None, alias=USER_ID_HEADER),
) -> str:
    """Authenticated chat user id, injected by the chat server."""
    if not user_id:
        raise AuthenticationError("Not authorized")
    request.state.user_id = user_id
    return user_id
