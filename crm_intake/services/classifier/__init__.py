from crm_intake.services.classifier.base import ClassifierError, IntentClassifier
from crm_intake.services.classifier.llm_classifier import LLMIntentClassifier

__all__ = ["ClassifierError", "IntentClassifier", "LLMIntentClassifier"]
