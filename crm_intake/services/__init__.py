from crm_intake.services.matching import MatchConfidenceResult, match_confidence
from crm_intake.services.result import Result
from crm_intake.services.state_machine import (
    ConversationState,
    InvalidTransitionError,
    can_transition,
    transition,
)
