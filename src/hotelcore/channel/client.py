"""HTTP client for the external ARI channel.

Request body (canonical JSON):
    {"partner_id", "property_id", "kind", "batch_id",
     "items": [{"key": <dedupe key>, "payload": {...}}]}

Response body:
    {"status": "ok" | "partial" | "error",
     "errors":   [{"key": <dedupe key>, "code": str, "message": str}],
     "warnings": [{"key": <dedupe key>, "code": str, "message": str}]}

Transport failures, timeouts, 429 and 5xx raise TransientIntegrationError.
Other 4xx and a whole-batch "error" status raise PermanentIntegrationError.
Per-item errors come back in ChannelResponse.item_errors.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import requests
from google.auth.transport.requests import AuthorizedSession
from google.oauth2 import service_account

from hotelcore.domain.errors import PermanentIntegrationError, TransientIntegrationError
from hotelcore.infra.hashing import canonical_json
from hotelcore.infra.settings import ChannelSettings
from hotelcore.observability.correlation import CORRELATION_ID_HEADER

logger = logging.getLogger(__name__)

ARI_SCOPE = "https://www.googleapis.com/auth/travelpartner"

# Raw response text kept for diagnostics
_MAX_RAW_BODY = 4000


@dataclass(frozen=True)
class ChannelResponse:
    status_code: int
    status: str
    item_errors: dict[str, str] = field(default_factory=dict)
    warnings: list[dict[str, Any]] = field(default_factory=list)
    body: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status_code": self.status_code,
            "status": self.status,
            "item_errors": self.item_errors,
            "warnings": self.warnings,
        }


class ChannelClient(Protocol):
    def send(self, body: dict[str, Any], *, correlation_id: str | None = None) -> ChannelResponse: ...


def _describe(entry: dict[str, Any]) -> str:
    code = entry.get("code") or "error"
    message = entry.get("message") or ""
    return f"{code}: {message}" if message else str(code)


def parse_response(status_code: int, text: str) -> ChannelResponse:
    """Classify a channel HTTP response.

    Raises:
        TransientIntegrationError: 429, 5xx, or a 2xx body that cannot be parsed.
        PermanentIntegrationError: Other 4xx, or a 2xx whole-batch error.
    """
    raw = text[:_MAX_RAW_BODY] if text else ""

    if status_code == 429 or status_code >= 500:
        raise TransientIntegrationError(
            f"channel returned HTTP {status_code}",
            status_code=status_code,
            response={"raw": raw},
        )
    if status_code >= 400:
        raise PermanentIntegrationError(
            f"channel rejected batch with HTTP {status_code}",
            status_code=status_code,
            response={"raw": raw},
        )

    try:
        body = json.loads(text) if text else {}
    except ValueError as e:
        raise TransientIntegrationError(
            "channel response is not valid JSON",
            status_code=status_code,
            response={"raw": raw},
        ) from e
    if not isinstance(body, dict):
        raise TransientIntegrationError(
            "channel response has unexpected shape",
            status_code=status_code,
            response={"raw": raw},
        )

    status = str(body.get("status") or "ok")
    errors = [e for e in body.get("errors") or [] if isinstance(e, dict)]
    warnings = [w for w in body.get("warnings") or [] if isinstance(w, dict)]

    keyed = {e["key"]: _describe(e) for e in errors if e.get("key")}
    unkeyed = [e for e in errors if not e.get("key")]

    if status == "error" and not keyed:
        detail = "; ".join(_describe(e) for e in unkeyed) or "batch rejected"
        raise PermanentIntegrationError(detail, status_code=status_code, response=body)

    return ChannelResponse(
        status_code=status_code,
        status=status,
        item_errors=keyed,
        warnings=warnings,
        body=body,
    )


class HttpChannelClient:
    """Sends batches with requests, authenticated by a service account when configured."""

    def __init__(
        self,
        settings: ChannelSettings,
        session: requests.Session | None = None,
    ) -> None:
        if not settings.endpoint_url:
            raise RuntimeError("ARI_ENDPOINT_URL is not configured")
        self.settings = settings
        self.session = session or self._build_session(settings)

    @staticmethod
    def _build_session(settings: ChannelSettings) -> requests.Session:
        if settings.credentials_file:
            credentials = service_account.Credentials.from_service_account_file(
                settings.credentials_file,
                scopes=[ARI_SCOPE],
            )
            return AuthorizedSession(credentials)
        return requests.Session()

    def send(self, body: dict[str, Any], *, correlation_id: str | None = None) -> ChannelResponse:
        headers = {"Content-Type": "application/json"}
        if correlation_id:
            headers[CORRELATION_ID_HEADER] = correlation_id
        try:
            response = self.session.post(
                self.settings.endpoint_url,
                data=canonical_json(body).encode(),
                headers=headers,
                timeout=self.settings.timeout_seconds,
            )
        except requests.Timeout as e:
            raise TransientIntegrationError("channel request timed out") from e
        except requests.RequestException as e:
            raise TransientIntegrationError(f"channel request failed: {e.__class__.__name__}") from e

        return parse_response(response.status_code, response.text)
