"""Generic connector: delivery handed to an integrator-registered callable."""

import logging
from typing import Callable, Dict

from ...catalog import CRMConnection
from ...errors import PermanentDeliveryError
from ...storage.models import Submission
from .base import CRMAdapter, DeliveryResult

logger = logging.getLogger(__name__)

Handler = Callable[[Submission, CRMConnection], DeliveryResult]

_handlers: Dict[str, Handler] = {}


def register_generic_handler(name: str, handler: Handler):
    """Register a delivery callable under the name used in ``config["handler"]``."""
    _handlers[name] = handler
    logger.info(f"Registered generic CRM handler: {name}")


def unregister_generic_handler(name: str) -> bool:
    return _handlers.pop(name, None) is not None


class GenericAdapter(CRMAdapter):
    """Same contract as the webhook connector; the handler does the transport."""

    name = "generic"

    def deliver(self, submission: Submission, connection: CRMConnection) -> DeliveryResult:
        handler_name = connection.config.get("handler")
        handler = _handlers.get(handler_name) if handler_name else None
        if handler is None:
            raise PermanentDeliveryError(
                f"No generic handler registered for connection {connection.id}"
                + (f" ({handler_name})" if handler_name else "")
            )
        return handler(submission, connection)
