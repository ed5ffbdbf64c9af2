import json
from datetime import datetime, timezone
from typing import Optional, Sequence

from crm_intake.schemas.action import SuggestedAction
from crm_intake.schemas.session import CrmSchema, ForwardedMessage

SYSTEM_PROMPT = """You are an assistant that manages a CRM. You analyze forwarded Telegram messages
and a user instruction and decide which single CRM action to take.

## Objects
{objects}

## Lists
{lists}

## Team members (for task assignment)
{members}

## Intents
- create_person: name, email, phone, job_title, associated_company
- create_company: name, domain, location
- create_deal: name, value, associated_company
- create_task: content, deadline_at, assignee, associated_company
- add_note: company or person the note belongs to
- add_to_list: list and the record to add

## Rules
- People, deals and tasks must be linked to a company. Infer it from the chat name,
  email domains or the conversation and put it in "associated_company".
- If the company probably does not exist yet and the user asked to create it, add a
  prerequisite action with intent "create_company".
- If no company can be inferred, add a clarification for field "associated_company".
- For tasks pass the deadline exactly as written ("next wednesday", "tomorrow"); never
  compute dates.
- If the instruction is "add to X" and it is unclear whether X is a list, company or
  person, intent is "add_note" with a clarification for field "target_type" and
  options ["List", "Company", "Person"].
- Put each missing required field in "missing_required". Ask at most one
  clarification per field.
- The forwarded messages are always saved as a note. Write a short descriptive
  "note_title" summarising them.

## Output
Reply with one JSON object and nothing else:
{{
  "intent": "create_person | create_company | create_deal | create_task | add_note | add_to_list",
  "confidence": 0.0-1.0,
  "target_object": "people | companies | deals | tasks | notes | lists",
  "target_list": null,
  "extracted_data": {{}},
  "missing_required": [],
  "clarifications_needed": [{{"field": "", "question": "", "options": null, "reason": "missing | ambiguous | multiple_matches | not_found"}}],
  "note_title": "",
  "prerequisite_actions": [{{"intent": "create_company", "extracted_data": {{}}, "reason": ""}}],
  "reasoning": ""
}}"""

USER_PROMPT = """{messages}

## User instruction

{instruction}

Analyze the above and determine the appropriate CRM action."""

CLARIFICATION_PROMPT = """Previous suggested action:
{action}

User answer for the "{field}" field: "{answer}"

The answer may be a plain value, a value with extra instructions ("TechCorp, create it if
needed"), a request to change the action type, or several facts at once.
Update the suggested action accordingly:
- incorporate new data into extracted_data
- change the intent if the user asks for a different action
- remove the "{field}" clarification from clarifications_needed
- keep the other pending clarifications

Reply with the complete updated action as one JSON object."""


def format_schema(schema: Optional[CrmSchema]) -> dict[str, str]:
    if schema is None:
        return {"objects": "(unknown)", "lists": "(none)", "members": "(none)"}
    return {
        "objects": ", ".join(schema.objects) or "(unknown)",
        "lists": "\n".join(f"- {item.name} ({item.api_slug}): for {item.parent_object} records" for item in schema.lists)
        or "(none)",
        "members": "\n".join(f"- {m.full_name} ({m.email})" for m in schema.workspace_members) or "(none)",
    }


def format_messages(messages: Sequence[ForwardedMessage]) -> str:
    if not messages:
        return "## No forwarded messages provided"
    blocks = []
    for i, message in enumerate(messages, start=1):
        when = datetime.fromtimestamp(message.date, timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
        text = message.text or (f"[{message.media_type}]" if message.has_media else "")
        blocks.append(f"[Message {i}] From: {message.sender} ({message.chat_name}) at {when}\n{text}")
    return "## Forwarded messages\n\n" + "\n\n".join(blocks)


def build_analyze_messages(
    messages: Sequence[ForwardedMessage], instruction: str, schema: Optional[CrmSchema]
) -> list[dict]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT.format(**format_schema(schema))},
        {"role": "user", "content": USER_PROMPT.format(messages=format_messages(messages), instruction=instruction)},
    ]


def build_clarification_messages(
    action: SuggestedAction, field: str, answer: str, schema: Optional[CrmSchema]
) -> list[dict]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT.format(**format_schema(schema))},
        {
            "role": "user",
            "content": CLARIFICATION_PROMPT.format(
                action=json.dumps(action.model_dump(mode="json"), indent=2, ensure_ascii=False),
                field=field,
                answer=answer,
            ),
        },
    ]
