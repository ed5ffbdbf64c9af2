"""Inline keyboards in Telegram's reply_markup shape."""

from typing import Optional, Sequence

from crm_intake.schemas.action import COMPANY_LINKED_INTENTS, Intent, SearchResult, SuggestedAction
from crm_intake.schemas.callback import TYPE_ANSWER, CallbackAction, build_callback_data
from crm_intake.schemas.session import WorkspaceMember
from crm_intake.services.formatters import FIELD_CONFIG

MAX_CLARIFICATION_OPTIONS = 5

NOTE_PARENT_TYPES = [("🏢 Company", "companies"), ("👤 Person", "people"), ("💰 Deal", "deals")]


def button(text: str, action: str, payload: Optional[str] = None) -> dict:
    return {"text": text, "callback_data": build_callback_data(action, payload)}


def cancel_row() -> list[dict]:
    return [button("❌ Cancel", CallbackAction.CANCEL)]


def markup(rows: list[list[dict]]) -> dict:
    return {"inline_keyboard": rows}


def confirmation_keyboard(action: SuggestedAction) -> dict:
    if action.clarifications_needed:
        rows = [[button("✅ Create anyway", CallbackAction.CONFIRM), button("💬 Answer questions", CallbackAction.CLARIFY)]]
    else:
        rows = [[button("✅ Create", CallbackAction.CONFIRM), button("✏️ Edit", CallbackAction.EDIT)]]

    if action.intent in COMPANY_LINKED_INTENTS:
        rows.append([button("🏢 Change company", CallbackAction.EDIT_FIELD, "company")])
    if action.intent == Intent.CREATE_TASK:
        rows.append([button("👤 Change assignee", CallbackAction.EDIT_FIELD, "assignee")])

    rows.append(cancel_row())
    return markup(rows)


def clarification_keyboard(options: Optional[Sequence[str]]) -> dict:
    rows = [
        [button(option, CallbackAction.CLARIFY_OPTION, str(i))]
        for i, option in enumerate((options or [])[:MAX_CLARIFICATION_OPTIONS])
    ]
    rows.append(
        [
            button("⌨️ Type answer", CallbackAction.CLARIFY_OPTION, TYPE_ANSWER),
            button("⏭️ Skip", CallbackAction.SKIP),
        ]
    )
    rows.append(cancel_row())
    return markup(rows)


def edit_fields_keyboard(fields: Sequence[str]) -> dict:
    buttons = [button(FIELD_CONFIG.get(f, (f.replace("_", " ").capitalize(), 0))[0], CallbackAction.EDIT_FIELD, f) for f in fields]
    rows = [buttons[i : i + 2] for i in range(0, len(buttons), 2)]
    rows.append([button("✅ Done editing", CallbackAction.CONFIRM)])
    rows.append(cancel_row())
    return markup(rows)


def assignee_keyboard(members: Sequence[WorkspaceMember], page: int, page_size: int) -> dict:
    total_pages = max(1, -(-len(members) // page_size))
    page = min(max(page, 0), total_pages - 1)
    start = page * page_size

    rows = [
        [button(member.full_name or member.email, CallbackAction.ASSIGNEE_SELECT, member.id)]
        for member in members[start : start + page_size]
    ]

    if total_pages > 1:
        nav = []
        if page > 0:
            nav.append(button("◀️ Prev", CallbackAction.ASSIGNEE_PREV))
        nav.append(button(f"{page + 1}/{total_pages}", CallbackAction.NOOP))
        if page < total_pages - 1:
            nav.append(button("Next ▶️", CallbackAction.ASSIGNEE_NEXT))
        rows.append(nav)

    rows.append([button("✏️ Type name", CallbackAction.ASSIGNEE_MANUAL), button("⏭️ Skip", CallbackAction.ASSIGNEE_SKIP)])
    rows.append(cancel_row())
    return markup(rows)


def note_parent_type_keyboard() -> dict:
    rows = [[button(label, CallbackAction.NOTE_PARENT_TYPE, object_type)] for label, object_type in NOTE_PARENT_TYPES]
    rows.append(cancel_row())
    return markup(rows)


def note_parent_results_keyboard(results: Sequence[SearchResult]) -> dict:
    rows = []
    for result in results:
        label = f"{result.name} ({result.extra})" if result.extra else result.name
        rows.append([button(label, CallbackAction.NOTE_PARENT_SELECT, result.id)])
    rows.append([button("🔍 Search again", CallbackAction.NOTE_PARENT_SEARCH)])
    rows.append(cancel_row())
    return markup(rows)
