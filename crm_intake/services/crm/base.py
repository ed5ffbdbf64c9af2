from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from crm_intake.schemas.action import SearchResult
from crm_intake.schemas.session import CrmSchema


class CrmApiError(Exception):
    """Non-success answer or transport failure from the CRM."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


@dataclass
class RecordRef:
    id: str
    url: Optional[str] = None


class CrmRegistry(ABC):
    """Record search and mutation primitives the executor and matcher rely on.

    ``fields`` are plain values keyed by the names used in schemas.fields
    (name, email, phone, company_id, ...); adapters translate them to the
    CRM's own attribute format.
    """

    @abstractmethod
    def search_records(self, object_type: str, query: str, limit: int = 10) -> list[SearchResult]:
        """Ordered by the CRM's own relevance. Must not have side effects."""

    @abstractmethod
    def create_record(self, object_type: str, fields: dict[str, Any]) -> RecordRef:
        pass

    @abstractmethod
    def create_note(self, parent_object: str, parent_record_id: str, title: str, content: str) -> RecordRef:
        pass

    @abstractmethod
    def add_to_list(self, list_id: str, record_id: str, parent_object: Optional[str] = None) -> RecordRef:
        pass

    @abstractmethod
    def fetch_schema(self) -> CrmSchema:
        pass

    def record_url(self, object_type: str, record_id: str) -> Optional[str]:
        return None
