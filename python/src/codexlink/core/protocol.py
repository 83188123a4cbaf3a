"""
Vocabulary of the codex app-server protocol.

Parameter shapes are passed through unvalidated; these helpers only name
the methods and build the common payloads.
"""

import re
from enum import Enum
from typing import Any, Dict, Optional

APP_SERVER_SUBCOMMAND = "app-server"
DEFAULT_EXECUTABLE = "codex"
EXECUTABLE_ENV_VAR = "CODEX_BIN"


class ClientMethod:
    """Requests the client sends to the app server."""

    INITIALIZE = "initialize"
    NEW_CONVERSATION = "newConversation"
    SEND_USER_MESSAGE = "sendUserMessage"
    SEND_USER_TURN = "sendUserTurn"
    ADD_CONVERSATION_LISTENER = "addConversationListener"
    REMOVE_CONVERSATION_LISTENER = "removeConversationListener"


class ServerRequestMethod:
    """Requests the app server sends to the client, expecting a reply."""

    EXEC_COMMAND_APPROVAL = "execCommandApproval"
    APPLY_PATCH_APPROVAL = "applyPatchApproval"


class ReviewDecision(str, Enum):
    APPROVED = "approved"
    APPROVED_FOR_SESSION = "approved_for_session"
    DENIED = "denied"
    ABORT = "abort"


class AskForApproval(str, Enum):
    UNLESS_TRUSTED = "unless-trusted"
    ON_FAILURE = "on-failure"
    ON_REQUEST = "on-request"
    NEVER = "never"


def client_info(name: str, version: str, title: Optional[str] = None) -> Dict[str, Any]:
    info = {"name": name, "version": version}
    if title:
        info["title"] = title
    return info


def initialize_params(info: Dict[str, Any]) -> Dict[str, Any]:
    return {"clientInfo": info}


def approval_result(decision: ReviewDecision) -> Dict[str, Any]:
    """Result payload answering an exec-command or apply-patch approval."""
    return {"decision": ReviewDecision(decision).value}


def text_item(text: str) -> Dict[str, Any]:
    return {"type": "text", "data": {"text": text}}


def image_item(image_url: str) -> Dict[str, Any]:
    return {"type": "image", "data": {"imageUrl": image_url}}


def local_image_item(path: str) -> Dict[str, Any]:
    return {"type": "localImage", "data": {"path": path}}


def user_message_params(conversation_id: str, *items: Dict[str, Any]) -> Dict[str, Any]:
    return {"conversationId": conversation_id, "items": list(items)}


_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def to_snake(method: str) -> str:
    """``newConversation`` -> ``new_conversation``."""
    return _CAMEL_BOUNDARY.sub(r"_\1", method).lower()


def to_camel(name: str) -> str:
    """``new_conversation`` -> ``newConversation``; camelCase passes through."""
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)
