"""Generic webhook connector: POSTs the envelope as JSON."""

import hashlib
import hmac
import json
import logging
import os
from typing import Optional, Dict, Any

import requests

from ...catalog import CRMConnection
from ...errors import RetryableDeliveryError, PermanentDeliveryError
from ...storage.models import Submission, AttemptOutcome
from ..retry import classify_http_status
from .base import CRMAdapter, DeliveryResult, build_envelope

logger = logging.getLogger(__name__)

USER_AGENT = "Lead-Lander/1.0"
DEFAULT_LEAD_ID_FIELD = "id"


def extract_field(data: Any, dotted_path: str) -> Optional[str]:
    """Walk a dotted path ("data.lead.id") through nested dicts."""
    current = data
    for part in dotted_path.split("."):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    if current is None or isinstance(current, (dict, list)):
        return None
    return str(current)


class WebhookAdapter(CRMAdapter):
    """Delivers to any HTTP endpoint that accepts a JSON POST.

    Connection config keys:
        url (or endpoint)   target URL, required
        headers             static headers merged into every request
        authHeaderName      header carrying a credential
        authHeaderValue     literal credential
        authHeaderEnv       environment variable holding the credential
        secret              HMAC-SHA256 key; signature sent as X-Webhook-Signature
        leadIdField         dotted path of the CRM lead id in the response JSON (default "id")
        events              trigger events this connection subscribes to
    """

    name = "webhook"

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    def build_headers(self, connection: CRMConnection, submission: Submission, body: str) -> Dict[str, str]:
        config = connection.config
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "Idempotency-Key": submission.idempotency_key,
            **(config.get("headers") or {}),
        }

        auth_name = config.get("authHeaderName")
        if auth_name:
            value = config.get("authHeaderValue")
            if not value and config.get("authHeaderEnv"):
                value = os.getenv(config["authHeaderEnv"])
            if not value:
                raise PermanentDeliveryError(
                    f"Connection {connection.id} has no credential for header {auth_name}"
                )
            headers[auth_name] = value

        if config.get("secret"):
            signature = hmac.new(
                config["secret"].encode(),
                body.encode(),
                hashlib.sha256,
            ).hexdigest()
            headers["X-Webhook-Signature"] = f"sha256={signature}"

        return headers

    def deliver(self, submission: Submission, connection: CRMConnection) -> DeliveryResult:
        url = connection.config.get("url") or connection.config.get("endpoint")
        if not url:
            raise PermanentDeliveryError(f"Connection {connection.id} has no webhook url")

        body = json.dumps(build_envelope(submission))
        headers = self.build_headers(connection, submission, body)

        try:
            response = requests.post(url, data=body, headers=headers, timeout=self.timeout)
        except requests.Timeout as e:
            raise RetryableDeliveryError(f"Timeout after {self.timeout}s: {e}")
        except requests.RequestException as e:
            raise RetryableDeliveryError(f"Request error: {e}")

        outcome = classify_http_status(response.status_code)
        text = response.text
        if outcome == AttemptOutcome.RETRYABLE_FAILURE:
            raise RetryableDeliveryError(
                f"HTTP {response.status_code} from {connection.id}",
                http_status=response.status_code,
                response_body=text,
            )
        if outcome == AttemptOutcome.PERMANENT_FAILURE:
            raise PermanentDeliveryError(
                f"HTTP {response.status_code} from {connection.id}",
                http_status=response.status_code,
                response_body=text,
            )

        crm_lead_id = None
        lead_id_field = connection.config.get("leadIdField") or DEFAULT_LEAD_ID_FIELD
        if text:
            try:
                crm_lead_id = extract_field(response.json(), lead_id_field)
            except ValueError:
                logger.warning(f"[{submission.id}] Response from {connection.id} is not JSON")

        logger.info(f"[{submission.id}] Webhook delivered to {connection.id} (status: {response.status_code})")
        return DeliveryResult(
            crm_lead_id=crm_lead_id,
            http_status=response.status_code,
            response_body=text,
        )
