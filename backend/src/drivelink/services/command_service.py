"""`/google-drive` slash command handling.

Every handler returns the text of the ephemeral reply; an empty string means
no reply.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Awaitable, Callable, Dict, List, Tuple

from ..core.exceptions import DriveLinkException, NotConnectedError
from ..core.logging import get_logger
from ..utils.markdown import hyperlink

if TYPE_CHECKING:
    from ..providers.google.auth_adapter import GoogleAuthAdapter
    from ..providers.google.client import GoogleClient
    from .watch_channel_service import WatchChannelManager

logger = get_logger(__name__)

COMMAND_TRIGGER = "/google-drive"

COMMAND_HELP = f"""* |{COMMAND_TRIGGER} connect| - Connect to your Google account
* |{COMMAND_TRIGGER} disconnect| - Disconnect your Google account
* |{COMMAND_TRIGGER} create [doc/slide/sheet] [name]| - Create Google documents, spreadsheets and presentations right from Mattermost.
* |{COMMAND_TRIGGER} notifications start| - Enable notification for Google files sharing and comments on files.
* |{COMMAND_TRIGGER} notifications stop| - Disable notification for Google files sharing and comments on files.
* |{COMMAND_TRIGGER} help| - Get help for available slash commands.
* |{COMMAND_TRIGGER} about| - Display build information about the plugin."""

MSG_ALREADY_CONNECTED = (
    "You have already connected your Google account. If you want to reconnect then disconnect "
    f"the account first using `{COMMAND_TRIGGER} disconnect`."
)
MSG_CONNECT_ERROR = "Encountered an error connecting to Google Drive."
MSG_DISCONNECTED = "Disconnected your Google account."
MSG_NOT_CONNECTED = "There is no Google account connected to your Mattermost account."
MSG_DISCONNECT_ERROR = "Encountered an error disconnecting Google account."
MSG_CONNECT_FIRST = f"Please connect your Google account first using `{COMMAND_TRIGGER} connect`."

MSG_NOTIFICATIONS_ENABLED = "Successfully enabled Google Drive activity notifications."
MSG_NOTIFICATIONS_ALREADY_ENABLED = "Google Drive activity notifications are already enabled for you."
MSG_NOTIFICATIONS_START_ERROR = (
    "Something went wrong while starting Google Drive activity notifications. "
    "Please contact your organization admin for support."
)
MSG_NOTIFICATIONS_DISABLED = "Successfully disabled Google Drive activity notifications."
MSG_NOTIFICATIONS_NOT_ENABLED = "Google Drive activity notifications are not enabled for you."
MSG_NOTIFICATIONS_STOP_ERROR = (
    "Something went wrong while stopping Google Drive activity notifications. "
    "Please contact your organization admin for support."
)

MSG_CREATE_ERROR = "Failed to create the file. Please contact your system administrator."

CREATE_KINDS = {
    "doc": "document",
    "sheet": "spreadsheet",
    "slide": "presentation",
}


def command_help_markdown() -> str:
    return COMMAND_HELP.replace("|", "`")


def parse_command(text: str) -> Tuple[str, str, List[str]]:
    """Split ``/cmd action params...``; double-quoted spans stay one parameter."""
    words: List[str] = []
    current = ""
    in_quotes = False
    for char in text:
        if char.isspace() and not in_quotes:
            if current:
                words.append(current)
                current = ""
            continue
        if char == '"':
            in_quotes = not in_quotes
            continue
        current += char
    if current:
        words.append(current)

    command = words[0] if words else ""
    action = words[1] if len(words) > 1 else ""
    return command, action, words[2:]


class CommandService:
    def __init__(
        self,
        auth: GoogleAuthAdapter,
        google: GoogleClient,
        watch_manager: WatchChannelManager,
        plugin_url: str,
        app_name: str = "DriveLink",
        version: str = "",
    ):
        self._auth = auth
        self._google = google
        self._watch = watch_manager
        self.plugin_url = plugin_url
        self.app_name = app_name
        self.version = version
        self._handlers: Dict[str, Callable[[str, List[str]], Awaitable[str]]] = {
            "connect": self.connect,
            "disconnect": self.disconnect,
            "create": self.create,
            "notifications": self.notifications,
            "help": self.help,
            "about": self.about,
        }

    async def execute(self, user_id: str, text: str) -> str:
        command, action, parameters = parse_command(text)
        if command != COMMAND_TRIGGER:
            return ""
        handler = self._handlers.get(action)
        if handler is None:
            return await self.help(user_id, parameters)
        return await handler(user_id, parameters)

    async def help(self, user_id: str, parameters: List[str]) -> str:
        return "###### Mattermost Google Drive Plugin - Slash Command Help\n" + command_help_markdown()

    async def about(self, user_id: str, parameters: List[str]) -> str:
        return f"{self.app_name} version: {self.version}"

    async def connect(self, user_id: str, parameters: List[str]) -> str:
        try:
            connected = await self._auth.has_token(user_id)
        except Exception as e:
            logger.error("Failed to check Google connection", extra={"user_id": user_id, "error": str(e)})
            return MSG_CONNECT_ERROR
        if connected:
            return MSG_ALREADY_CONNECTED
        return f"[Click here to link your Google account.]({self.plugin_url}/oauth/connect)"

    async def disconnect(self, user_id: str, parameters: List[str]) -> str:
        try:
            if not await self._auth.has_token(user_id):
                return MSG_NOT_CONNECTED
            await self._auth.delete_token(user_id)
        except Exception as e:
            logger.error("Failed to disconnect Google account", extra={"user_id": user_id, "error": str(e)})
            return MSG_DISCONNECT_ERROR
        return MSG_DISCONNECTED

    async def notifications(self, user_id: str, parameters: List[str]) -> str:
        subcommand = parameters[0] if parameters else ""
        if subcommand == "start":
            try:
                started = await self._watch.start_watch(user_id)
            except Exception as e:
                logger.error("Failed to start notifications", extra={"user_id": user_id, "error": str(e)})
                return MSG_NOTIFICATIONS_START_ERROR
            return MSG_NOTIFICATIONS_ENABLED if started else MSG_NOTIFICATIONS_ALREADY_ENABLED
        if subcommand == "stop":
            try:
                stopped = await self._watch.stop_watch(user_id)
            except Exception as e:
                logger.error("Failed to stop notifications", extra={"user_id": user_id, "error": str(e)})
                return MSG_NOTIFICATIONS_STOP_ERROR
            return MSG_NOTIFICATIONS_DISABLED if stopped else MSG_NOTIFICATIONS_NOT_ENABLED
        return f"{subcommand} is not a valid notifications subcommand"

    async def create(self, user_id: str, parameters: List[str]) -> str:
        kind = parameters[0] if parameters else ""
        if kind not in CREATE_KINDS:
            return f"{kind} is not a valid create option"
        name = " ".join(parameters[1:]).strip()
        if not name:
            return f"Usage: `{COMMAND_TRIGGER} create {kind} [name]`"

        try:
            if kind == "doc":
                file_id = await (await self._google.docs(user_id)).create(name)
            elif kind == "sheet":
                file_id = await (await self._google.sheets(user_id)).create(name)
            else:
                file_id = await (await self._google.slides(user_id)).create(name)
            file = await (await self._google.drive(user_id)).get_file(file_id)
        except NotConnectedError:
            return MSG_CONNECT_FIRST
        except DriveLinkException as e:
            logger.error(
                "Failed to create Google file", extra={"user_id": user_id, "kind": kind, "error": e.message}
            )
            return MSG_CREATE_ERROR

        return f"Created a new Google {CREATE_KINDS[kind]}: {hyperlink(file.name or name, file.web_view_link)}"
