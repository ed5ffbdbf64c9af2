from crm_intake.services.llm.base import LLMError, LLMProvider, LLMResponse
from crm_intake.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMError", "LLMProvider", "LLMResponse", "OpenAIProvider"]
