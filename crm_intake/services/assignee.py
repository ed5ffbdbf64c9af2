from dataclasses import dataclass
from typing import Optional, Sequence

from crm_intake.schemas.session import CallerInfo, WorkspaceMember


@dataclass(frozen=True)
class ResolvedAssignee:
    member_id: str
    member_name: str
    email: str = ""


def _caller_search_name(caller: Optional[CallerInfo]) -> str:
    if caller is None:
        return ""
    return caller.display_name


def _member_words(member: WorkspaceMember) -> set[str]:
    return set(member.full_name.lower().split()) | {member.email.lower().split("@")[0]}


def _resolved(member: WorkspaceMember) -> ResolvedAssignee:
    return ResolvedAssignee(member.id, member.full_name or member.email, member.email)


def resolve_assignee(
    name: Optional[str],
    caller: Optional[CallerInfo],
    members: Sequence[WorkspaceMember],
    default_to_caller: bool = True,
) -> Optional[ResolvedAssignee]:
    """Match a typed name to a workspace member.

    "me" means the caller. An empty name falls back to the caller when
    ``default_to_caller`` is set. Tried in order: full name, first name,
    email (or its local part), then the one member whose name contains every
    typed word. Anything looser returns None so the caller can ask again.
    """
    if not members:
        return None

    search = (name or "").strip()
    if search.lower() == "me" or (not search and default_to_caller):
        search = _caller_search_name(caller)
    search = search.lstrip("@").lower()
    if not search:
        return None

    for member in members:
        if member.full_name.lower() == search:
            return _resolved(member)

    first_name_hits = [m for m in members if m.first_name.lower() == search]
    if len(first_name_hits) == 1:
        return _resolved(first_name_hits[0])

    for member in members:
        email = member.email.lower()
        if email and (email == search or email.split("@")[0] == search):
            return _resolved(member)

    search_words = set(search.replace(".", " ").split())
    # Every typed word must belong to one and the same member
    candidates = [m for m in members if search_words <= _member_words(m)]
    if len(candidates) == 1:
        return _resolved(candidates[0])
    return None
