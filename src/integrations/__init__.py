"""Thin clients for external services: LLM, email and payment webhooks."""

from .ai_client import ContentGenerationError, LLMClient, OpenAIClient
from .email_service import EmailService, get_email_service
from .payments import verify_square_signature, handle_payment_event

__all__ = [
    "ContentGenerationError",
    "LLMClient",
    "OpenAIClient",
    "EmailService",
    "get_email_service",
    "verify_square_signature",
    "handle_payment_event",
]
