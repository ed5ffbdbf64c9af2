from crm_intake.schemas.action import ActionResult, Clarification, Intent, SearchResult, SuggestedAction
from crm_intake.schemas.events import CallbackEvent, CommandEvent, ForwardedMessageEvent, InboundEvent, TextEvent
from crm_intake.schemas.session import ForwardedMessage, SessionKey, SessionState

__all__ = [
    "ActionResult",
    "CallbackEvent",
    "Clarification",
    "CommandEvent",
    "ForwardedMessage",
    "ForwardedMessageEvent",
    "InboundEvent",
    "Intent",
    "SearchResult",
    "SessionKey",
    "SessionState",
    "SuggestedAction",
    "TextEvent",
]
