from typing import Optional

from pydantic import BaseModel

PREFIX = "crm"


class CallbackAction:
    CONFIRM = "crm:confirm"
    EDIT = "crm:edit"
    CANCEL = "crm:cancel"

    CLARIFY = "crm:clarify"
    CLARIFY_OPTION = "crm:clarify:opt"  # + option index or TYPE_ANSWER
    SKIP = "crm:skip"

    EDIT_FIELD = "crm:edit:field"  # + field name

    ASSIGNEE_SELECT = "crm:assignee:select"  # + member id
    ASSIGNEE_PREV = "crm:assignee:prev"
    ASSIGNEE_NEXT = "crm:assignee:next"
    ASSIGNEE_MANUAL = "crm:assignee:manual"
    ASSIGNEE_SKIP = "crm:assignee:skip"

    NOTE_PARENT_TYPE = "crm:note:type"  # + object type
    NOTE_PARENT_SELECT = "crm:note:select"  # + record id
    NOTE_PARENT_SEARCH = "crm:note:search"

    NOOP = "noop"


# Clarification option payload meaning "let me type the answer"
TYPE_ANSWER = "__type__"

_PAYLOAD_ACTIONS = (
    CallbackAction.CLARIFY_OPTION,
    CallbackAction.EDIT_FIELD,
    CallbackAction.ASSIGNEE_SELECT,
    CallbackAction.NOTE_PARENT_TYPE,
    CallbackAction.NOTE_PARENT_SELECT,
)


class CallbackData(BaseModel):
    action: str
    payload: Optional[str] = None


def parse_callback_data(data: str) -> CallbackData:
    """Split "crm:edit:field:email" into action "crm:edit:field" and payload "email"."""
    for action in _PAYLOAD_ACTIONS:
        if data.startswith(action + ":"):
            return CallbackData(action=action, payload=data[len(action) + 1 :])
    return CallbackData(action=data)


def build_callback_data(action: str, payload: Optional[str] = None) -> str:
    if payload is not None:
        return f"{action}:{payload}"
    return action
