import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from crm_intake.config import settings
from crm_intake.logging_config import get_logger
from crm_intake.schemas.session import CrmSchema

logger = get_logger("schema_cache")


class SchemaCache:
    """Workspace-wide CRM schema with an explicit expiry checked on read."""

    def __init__(self, ttl_seconds: Optional[int] = None, clock: Callable[[], float] = time.time):
        self.ttl_seconds = settings.schema_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self.clock = clock
        self._lock = threading.Lock()
        self._schema: Optional[CrmSchema] = None
        self._expires_at = 0.0

    def get(self) -> Optional[CrmSchema]:
        with self._lock:
            if self._schema is None:
                return None
            if self.clock() >= self._expires_at:
                logger.debug("Schema cache expired")
                self._schema = None
                return None
            return self._schema

    def put(self, schema: CrmSchema) -> CrmSchema:
        now = self.clock()
        if schema.fetched_at is None:
            schema = schema.model_copy(update={"fetched_at": datetime.fromtimestamp(now, timezone.utc)})
        with self._lock:
            self._schema = schema
            self._expires_at = now + self.ttl_seconds
        return schema

    def invalidate(self) -> None:
        with self._lock:
            self._schema = None
            self._expires_at = 0.0

    def get_or_fetch(self, fetch: Callable[[], CrmSchema]) -> CrmSchema:
        cached = self.get()
        if cached is not None:
            return cached
        logger.info("Fetching CRM schema")
        return self.put(fetch())
