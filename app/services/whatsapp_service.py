"""WhatsApp Cloud API client (Graph API) for sends and media downloads."""

from dataclasses import dataclass
from typing import Optional

import httpx

from app.config import settings
from app.logging_config import get_logger

logger = get_logger("whatsapp_service")

AUTH_ERROR_CODE = 190
AUTH_ERROR_TYPE = "OAuthException"
ENGLISH_TEMPLATES = {"hello_world"}


@dataclass
class SendResult:
    ok: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[int] = None
    error_type: Optional[str] = None

    @property
    def is_auth_error(self) -> bool:
        return self.error_code == AUTH_ERROR_CODE or self.error_type == AUTH_ERROR_TYPE


def graph_url(path: str) -> str:
    base = settings.whatsapp_graph_base_url.rstrip("/")
    return f"{base}/{settings.whatsapp_graph_version}/{path.lstrip('/')}"


def template_language(name: str, language: Optional[str] = None) -> str:
    if language:
        return language
    if name in ENGLISH_TEMPLATES:
        return "en_US"
    return settings.default_template_language


def build_text_payload(to: str, body: str) -> dict:
    return {
        "messaging_product": "whatsapp",
        "to": to,
        "type": "text",
        "text": {"body": body},
    }


def build_template_payload(to: str, name: str, params: list[str], language: Optional[str] = None) -> dict:
    template: dict = {"name": name, "language": {"code": template_language(name, language)}}
    if params:
        template["components"] = [
            {"type": "body", "parameters": [{"type": "text", "text": str(value)} for value in params]}
        ]
    return {
        "messaging_product": "whatsapp",
        "to": to,
        "type": "template",
        "template": template,
    }


def _parse_send_response(response: httpx.Response) -> SendResult:
    try:
        data = response.json() if response.content else {}
    except ValueError:
        data = {}
    if not isinstance(data, dict):
        data = {}

    if response.status_code >= 400 or data.get("error"):
        error = data.get("error") if isinstance(data.get("error"), dict) else {}
        return SendResult(
            ok=False,
            error=error.get("message") or response.text[:500] or f"HTTP {response.status_code}",
            error_code=error.get("code"),
            error_type=error.get("type"),
        )

    messages = data.get("messages") or [{}]
    return SendResult(ok=True, message_id=messages[0].get("id"))


def send_payload(phone_number_id: str, access_token: str, payload: dict) -> SendResult:
    """POST a message payload. No retries; failures are returned, not raised."""
    url = graph_url(f"{phone_number_id}/messages")
    try:
        with httpx.Client(timeout=settings.whatsapp_timeout_seconds) as client:
            response = client.post(url, json=payload, headers={"Authorization": f"Bearer {access_token}"})
    except httpx.HTTPError as exc:
        logger.error(
            "WhatsApp send transport error",
            extra={"context": {"phone_number_id": phone_number_id, "error": str(exc)}},
        )
        return SendResult(ok=False, error=f"Falha de conexão com o WhatsApp: {exc}")

    result = _parse_send_response(response)
    if not result.ok:
        logger.warning(
            "WhatsApp send rejected",
            extra={
                "context": {
                    "phone_number_id": phone_number_id,
                    "status": response.status_code,
                    "error_code": result.error_code,
                    "error_type": result.error_type,
                    "error": result.error,
                }
            },
        )
    return result


def fetch_media_info(media_id: str, access_token: str) -> dict:
    """Resolve a media id to its short-lived download URL. Raises httpx errors."""
    with httpx.Client(timeout=settings.whatsapp_timeout_seconds) as client:
        response = client.get(graph_url(media_id), headers={"Authorization": f"Bearer {access_token}"})
        response.raise_for_status()
        return response.json()


def download_media(url: str, access_token: str) -> tuple[bytes, Optional[str]]:
    with httpx.Client(timeout=max(settings.whatsapp_timeout_seconds, 15.0)) as client:
        response = client.get(url, headers={"Authorization": f"Bearer {access_token}"})
        response.raise_for_status()
        return response.content, response.headers.get("content-type")
