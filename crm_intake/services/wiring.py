from typing import Optional

from crm_intake.config import settings
from crm_intake.database import SessionLocal
from crm_intake.services.clarification import ClarificationLoop
from crm_intake.services.classifier.llm_classifier import get_classifier
from crm_intake.services.conversation_engine import ConversationEngine
from crm_intake.services.correlator import Correlator
from crm_intake.services.crm import AttioClient
from crm_intake.services.executor import CompositeExecutor
from crm_intake.services.pending_store import SqlPendingStore
from crm_intake.services.schema_cache import SchemaCache
from crm_intake.services.session_store import SqlSessionStore
from crm_intake.services.telegram_service import get_telegram_service
from crm_intake.services.turn import EngineServices
from crm_intake.services.workflow_dispatcher import LocalWorkflowHost, WorkflowDispatcher


def build_engine_services() -> EngineServices:
    registry = AttioClient(settings.attio_api_key or "", base_url=settings.attio_base_url)
    classifier = get_classifier()
    return EngineServices(
        store=SqlSessionStore(SessionLocal),
        chat=get_telegram_service(),
        classifier=classifier,
        registry=registry,
        correlator=Correlator(SqlPendingStore(SessionLocal)),
        schema_cache=SchemaCache(),
        executor=CompositeExecutor(registry),
        clarifier=ClarificationLoop(classifier, registry),
    )


def build_dispatcher(services: EngineServices) -> WorkflowDispatcher:
    engine = ConversationEngine(services)
    return WorkflowDispatcher(LocalWorkflowHost(engine.handle), services.chat)


_dispatcher: Optional[WorkflowDispatcher] = None


def get_dispatcher() -> WorkflowDispatcher:
    """Get or create the process-wide dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = build_dispatcher(build_engine_services())
    return _dispatcher
