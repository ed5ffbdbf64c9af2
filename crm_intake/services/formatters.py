"""Chat-facing text for proposals, results and notes (Telegram HTML)."""

from datetime import datetime, timezone
from html import escape
from typing import Any, Optional, Sequence

from crm_intake.schemas.action import INTENT_LABELS, ActionResult, Intent, SuggestedAction
from crm_intake.schemas.session import ForwardedMessage
from crm_intake.services.deadline import parse_deadline

# label, priority (lower is shown first)
FIELD_CONFIG = {
    "name": ("Name", 1),
    "full_name": ("Name", 1),
    "content": ("Task", 1),
    "title": ("Title", 1),
    "note_content": ("Content", 2),
    "email": ("Email", 2),
    "email_addresses": ("Email", 2),
    "value": ("Value", 2),
    "assignee": ("Assignee", 2),
    "phone": ("Phone", 3),
    "phone_numbers": ("Phone", 3),
    "deadline_at": ("Due", 3),
    "deadline": ("Due", 3),
    "due_date": ("Due", 3),
    "person": ("Person", 3),
    "list_name": ("List", 3),
    "company": ("Company", 4),
    "associated_company": ("Company", 4),
    "domain": ("Domain", 5),
    "domains": ("Domain", 5),
    "job_title": ("Title", 5),
    "location": ("Location", 6),
    "primary_location": ("Location", 6),
    "description": ("Description", 10),
}

# Internal or id-valued keys never shown to the user
SKIP_FIELDS = {
    "note_title",
    "linked_record_id",
    "linked_record_object",
    "assignee_email",
    "assignee_id",
    "company_record_id",
    "stage",
    "owner",
    "owner_email",
    "ownerEmail",
    "context",
    "parent_object",
    "parent_record_id",
    "record_id",
    "record_object",
    "list_id",
    "search_results",
    "target_type",
    "original_target",
}

DATE_FIELDS = {"deadline_at", "deadline", "due_date", "date"}

# Fields the user may not pick in the edit keyboard
NON_EDITABLE_FIELDS = SKIP_FIELDS - {"owner", "owner_email"}

PREREQUISITE_EMOJI = {Intent.CREATE_COMPANY: "🏢", Intent.CREATE_PERSON: "👤"}


def intent_label(intent: Intent) -> str:
    return INTENT_LABELS.get(intent, intent.value.replace("_", " ").capitalize())


def format_value(key: str, value: Any) -> Optional[str]:
    if value is None or value == "" or value == [] or value == {}:
        return None
    if isinstance(value, dict):
        if value.get("amount") is not None:
            return f"${float(value['amount']):,.0f} {value.get('currency') or 'USD'}"
        return ", ".join(f"{k}: {v}" for k, v in value.items())
    if isinstance(value, list):
        parts = [format_value(key, v) for v in value]
        return ", ".join(p for p in parts if p) or None
    if isinstance(value, float) and key == "value":
        return f"${value:,.0f}"
    text = str(value)
    if key in DATE_FIELDS and text[:4].isdigit():
        resolved = parse_deadline(text)
        if resolved:
            moment = datetime.strptime(resolved[:10], "%Y-%m-%d")
            return moment.strftime("%a, %b %-d %Y")
    return text


def ordered_fields(data: dict[str, Any]) -> list[tuple[str, str, str]]:
    """(key, label, value) for displayable fields, most important first."""
    rows = []
    for key, value in data.items():
        if key in SKIP_FIELDS:
            continue
        shown = format_value(key, value)
        if not shown:
            continue
        label, priority = FIELD_CONFIG.get(key, (key.replace("_", " ").capitalize(), 99))
        rows.append((priority, key, label, shown))
    rows.sort(key=lambda row: row[0])
    return [(key, label, shown) for _, key, label, shown in rows]


def editable_fields(action: SuggestedAction) -> list[str]:
    return [key for key in action.extracted_data if key not in NON_EDITABLE_FIELDS]


def format_suggested_action(action: SuggestedAction) -> str:
    lines = [f"<b>{escape(intent_label(action.intent))}</b>", ""]

    for _, label, shown in ordered_fields(action.extracted_data):
        lines.append(f"{escape(label)}: {escape(shown)}")

    if action.prerequisite_actions:
        lines.append("")
        lines.append("📦 Will also create:")
        for prerequisite in action.prerequisite_actions:
            emoji = PREREQUISITE_EMOJI.get(prerequisite.intent, "•")
            data = prerequisite.extracted_data
            name = data.get("name") or data.get("content") or "item"
            lines.append(f"{emoji} {escape(str(name))}")

    lines.append("")
    lines.append(f"📎 {escape(action.note_title)}")

    if action.clarifications_needed:
        lines.append("")
        lines.append("⚠️ Need info:")
        for clarification in action.clarifications_needed:
            lines.append(f"• {escape(clarification.question)}")

    return "\n".join(lines)


def format_clarification(question: str, position: int, total: int) -> str:
    prefix = f"❓ ({position}/{total}) " if total > 1 else "❓ "
    return prefix + escape(question)


def format_action_result(result: ActionResult) -> str:
    if not result.success:
        return f"❌ Failed: {escape(result.error or 'unknown error')}"

    lines = ["✅ Created successfully!"]
    if result.record_url:
        lines.append("")
        lines.append(f'🔗 <a href="{escape(result.record_url)}">View in CRM</a>')
    if result.created_prerequisites:
        lines.append("")
        lines.append("📦 Also created:")
        for record in result.created_prerequisites:
            if record.url:
                lines.append(f'• <a href="{escape(record.url)}">{escape(record.name)}</a>')
            else:
                lines.append(f"• {escape(record.name)}")
    return "\n".join(lines)


def _time(unix_seconds: int) -> str:
    return datetime.fromtimestamp(unix_seconds, timezone.utc).strftime("%H:%M")


def format_messages_for_single_note(
    messages: Sequence[ForwardedMessage], now: Optional[datetime] = None
) -> tuple[str, str]:
    """(title, markdown content) of the whole queue as one chat transcript."""
    now = now or datetime.now(timezone.utc)
    chat_name = messages[0].chat_name if messages else "Unknown"
    title = f"Telegram conversation with {chat_name} - {now.strftime('%b %d, %Y %H:%M')}"

    blocks = []
    for message in messages:
        block = f"**[{_time(message.date)}] {message.sender}:**\n"
        if message.text:
            block += message.text
        elif message.has_media and message.media_type:
            block += f"*[sent a {message.media_type}]*"
        else:
            block += "*[empty message]*"
        blocks.append(block)
    return title, "\n\n".join(blocks)


def format_queue_status(count: int, instruction: Optional[str] = None) -> str:
    noun = "message" if count == 1 else "messages"
    if instruction:
        return f'📦 Added message ({count} in queue)\n\nInstruction: "{escape(instruction)}"'
    return f"📦 Added to queue ({count} {noun})\n\nWhen ready:\n/done &lt;instruction&gt;"
