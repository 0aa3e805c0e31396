"""CRM connectors, keyed by connector type."""

from typing import Dict

from ...catalog import ConnectorType
from .base import CRMAdapter, DeliveryResult, build_envelope, TRIGGER_SUBMISSION_CREATED
from .generic import GenericAdapter, register_generic_handler, unregister_generic_handler
from .webhook import WebhookAdapter


def build_default_adapters(http_timeout: float = 10.0) -> Dict[ConnectorType, CRMAdapter]:
    return {
        ConnectorType.WEBHOOK: WebhookAdapter(timeout=http_timeout),
        ConnectorType.GENERIC: GenericAdapter(),
    }


__all__ = [
    "CRMAdapter",
    "DeliveryResult",
    "build_envelope",
    "build_default_adapters",
    "TRIGGER_SUBMISSION_CREATED",
    "WebhookAdapter",
    "GenericAdapter",
    "register_generic_handler",
    "unregister_generic_handler",
]
