from typing import Any, Optional

import httpx

from crm_intake.logging_config import get_logger
from crm_intake.schemas.action import SearchResult
from crm_intake.schemas.session import CrmList, CrmSchema, WorkspaceMember
from crm_intake.services.crm.base import CrmApiError, CrmRegistry, RecordRef

logger = get_logger("crm.attio")


def _record_link(object_type: str, record_id: str) -> dict:
    return {"target_object": object_type, "target_record_id": record_id}


def person_values(fields: dict[str, Any]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    name = fields.get("name")
    if name:
        first, _, last = name.partition(" ")
        values["name"] = [{"first_name": first, "last_name": last, "full_name": name}]
    if fields.get("email"):
        values["email_addresses"] = [fields["email"]]
    if fields.get("phone"):
        values["phone_numbers"] = [{"original_phone_number": fields["phone"]}]
    if fields.get("company_id"):
        values["company"] = [_record_link("companies", fields["company_id"])]
    if fields.get("job_title"):
        values["job_title"] = fields["job_title"]
    if fields.get("description"):
        values["description"] = fields["description"]
    return values


def company_values(fields: dict[str, Any]) -> dict[str, Any]:
    values: dict[str, Any] = {"name": fields.get("name") or ""}
    if fields.get("domain"):
        values["domains"] = [fields["domain"]]
    if fields.get("location"):
        values["primary_location"] = fields["location"]
    if fields.get("description"):
        values["description"] = fields["description"]
    return values


def deal_values(fields: dict[str, Any]) -> dict[str, Any]:
    values: dict[str, Any] = {"name": fields.get("name") or ""}
    if fields.get("value") is not None:
        values["value"] = fields["value"]
    if fields.get("stage"):
        values["stage"] = fields["stage"]
    if fields.get("company_id"):
        values["associated_company"] = _record_link("companies", fields["company_id"])
    if fields.get("owner"):
        values["owner"] = fields["owner"]
    return values


def task_payload(fields: dict[str, Any]) -> dict[str, Any]:
    linked = []
    if fields.get("linked_record_id") and fields.get("linked_record_object"):
        linked.append(_record_link(fields["linked_record_object"], fields["linked_record_id"]))
    assignees = []
    if fields.get("assignee_id"):
        assignees.append({"referenced_actor_type": "workspace-member", "referenced_actor_id": fields["assignee_id"]})
    elif fields.get("assignee_email"):
        assignees.append({"workspace_member_email_address": fields["assignee_email"]})
    return {
        "content": fields.get("content") or "",
        "format": "plaintext",
        "is_completed": False,
        "deadline_at": fields.get("deadline_at"),
        "linked_records": linked,
        "assignees": assignees,
    }


VALUE_BUILDERS = {
    "people": person_values,
    "companies": company_values,
    "deals": deal_values,
}


class AttioClient(CrmRegistry):
    """Attio REST v2 over httpx."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.attio.com/v2",
        timeout_seconds: float = 30.0,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._deal_stage: Optional[str] = None

    def _make_request(self, method: str, path: str, json: Optional[dict] = None) -> dict:
        """Make request to Attio API. Raises CrmApiError on any failure."""
        url = f"{self.base_url}{path}"
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.request(
                    method,
                    url,
                    headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
                    json=json,
                )
        except httpx.HTTPError as e:
            logger.error(f"Attio request failed: {method} {path}: {e}")
            raise CrmApiError(f"Attio request failed: {e}") from e

        if response.status_code >= 300:
            logger.error(f"Attio API error: {method} {path} {response.status_code} {response.text}")
            raise CrmApiError(f"Attio API error: {response.status_code} - {response.text}", response.status_code)
        return response.json() if response.content else {}

    def search_records(self, object_type: str, query: str, limit: int = 10) -> list[SearchResult]:
        if object_type == "lists":
            return self._search_lists(query, limit)

        data = self._make_request(
            "POST",
            "/objects/records/search",
            json={
                "query": query,
                "objects": [object_type],
                "request_as": {"type": "workspace"},
                "limit": limit,
            },
        )
        results = []
        for record in data.get("data", []):
            domains = record.get("domains") or []
            results.append(
                SearchResult(
                    id=record["id"]["record_id"],
                    name=record.get("record_text") or "Unknown",
                    extra=domains[0] if domains else None,
                )
            )
        return results

    def _search_lists(self, query: str, limit: int) -> list[SearchResult]:
        needle = query.lower().strip()
        matches = [
            SearchResult(id=crm_list.id, name=crm_list.name, extra=crm_list.parent_object)
            for crm_list in self._fetch_lists()
            if needle in crm_list.name.lower() or needle in crm_list.api_slug.lower()
        ]
        return matches[:limit]

    def create_record(self, object_type: str, fields: dict[str, Any]) -> RecordRef:
        if object_type == "tasks":
            data = self._make_request("POST", "/tasks", json={"data": task_payload(fields)})
            return RecordRef(id=data["data"]["id"]["task_id"])

        if object_type == "deals" and not fields.get("stage"):
            stage = self._default_deal_stage()
            if stage:
                fields = {**fields, "stage": stage}

        build = VALUE_BUILDERS.get(object_type)
        values = build(fields) if build else dict(fields)
        data = self._make_request("POST", f"/objects/{object_type}/records", json={"data": {"values": values}})
        record = data["data"]
        logger.info(f"Created {object_type} record {record['id']['record_id']}")
        return RecordRef(id=record["id"]["record_id"], url=record.get("web_url"))

    def create_note(self, parent_object: str, parent_record_id: str, title: str, content: str) -> RecordRef:
        data = self._make_request(
            "POST",
            "/notes",
            json={
                "data": {
                    "parent_object": parent_object,
                    "parent_record_id": parent_record_id,
                    "title": title,
                    "format": "markdown",
                    "content": content,
                }
            },
        )
        return RecordRef(id=data["data"]["id"]["note_id"])

    def add_to_list(self, list_id: str, record_id: str, parent_object: Optional[str] = None) -> RecordRef:
        entry: dict[str, Any] = {"parent_record_id": record_id, "entry_values": {}}
        if parent_object:
            entry["parent_object"] = parent_object
        data = self._make_request("POST", f"/lists/{list_id}/entries", json={"data": entry})
        return RecordRef(id=data["data"]["id"]["entry_id"])

    def record_url(self, object_type: str, record_id: str) -> Optional[str]:
        try:
            data = self._make_request("GET", f"/objects/{object_type}/records/{record_id}")
        except CrmApiError:
            return None
        return data.get("data", {}).get("web_url")

    def _fetch_lists(self) -> list[CrmList]:
        data = self._make_request("GET", "/lists")
        return [
            CrmList(
                id=item["id"]["list_id"],
                api_slug=item.get("api_slug") or item["id"]["list_id"],
                name=item.get("name") or "",
                parent_object=(item.get("parent_object") or [None])[0]
                if isinstance(item.get("parent_object"), list)
                else item.get("parent_object"),
            )
            for item in data.get("data", [])
        ]

    def _fetch_members(self) -> list[WorkspaceMember]:
        data = self._make_request("GET", "/workspace_members")
        return [
            WorkspaceMember(
                id=item["id"]["workspace_member_id"],
                first_name=item.get("first_name") or "",
                last_name=item.get("last_name") or "",
                email=item.get("email_address") or "",
            )
            for item in data.get("data", [])
        ]

    def fetch_schema(self) -> CrmSchema:
        objects = self._make_request("GET", "/objects")
        return CrmSchema(
            objects=[item.get("api_slug") for item in objects.get("data", []) if item.get("api_slug")],
            lists=self._fetch_lists(),
            workspace_members=self._fetch_members(),
        )

    def _default_deal_stage(self) -> Optional[str]:
        if self._deal_stage is None:
            try:
                data = self._make_request("GET", "/objects/deals/attributes/stage/statuses")
            except CrmApiError as e:
                logger.warning(f"Could not load deal stages: {e}")
                return None
            active = [s["title"] for s in data.get("data", []) if not s.get("is_archived")]
            self._deal_stage = active[0] if active else ""
        return self._deal_stage or None
