"""Evolution API (WhatsApp gateway) client."""

import re
from typing import Any, Optional

import httpx
from sqlalchemy.orm import Session

from app.config import settings
from app.logging_config import get_logger
from app.models import Agent
from app.services.credentials_service import GatewayCredentials, resolve_gateway_credentials

logger = get_logger("evolution")

DOWNLOAD_TIMEOUT_SECONDS = 60.0


class GatewayError(Exception):
    """Gateway call failed (transport error or non-2xx status)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


def extract_base64(payload: Any) -> Optional[str]:
    """Pull a bare base64 string out of the gateway's varying response shapes."""
    raw = None
    if isinstance(payload, str):
        raw = payload
    elif isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(payload.get("base64"), str):
            raw = payload["base64"]
        elif isinstance(data, dict) and isinstance(data.get("base64"), str):
            raw = data["base64"]
        elif isinstance(data, str):
            raw = data
    if not raw:
        return None

    b64 = raw.strip()
    marker = "base64,"
    if b64.startswith("data:") and marker in b64:
        b64 = b64.split(marker, 1)[1]
    return re.sub(r"\s+", "", b64) or None


class EvolutionClient:
    def __init__(self, api_url: str, api_key: str, timeout_seconds: float = 30.0):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_credentials(cls, credentials: GatewayCredentials) -> "EvolutionClient":
        return cls(credentials.api_url, credentials.api_key, timeout_seconds=settings.evolution_timeout_seconds)

    def _headers(self) -> dict:
        return {"apikey": self.api_key, "Content-Type": "application/json"}

    def _request(self, method: str, path: str, *, json: Optional[dict] = None, timeout: Optional[float] = None) -> Any:
        url = f"{self.api_url}{path}"
        try:
            with httpx.Client(timeout=timeout or self.timeout_seconds) as client:
                response = client.request(method, url, headers=self._headers(), json=json)
        except httpx.HTTPError as exc:
            raise GatewayError(f"Evolution request failed: {path}: {exc}") from exc

        if response.status_code >= 400:
            raise GatewayError(
                f"Evolution API error: {response.status_code} - {response.text[:300]}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError:
            return response.text

    def send_text(self, instance: str, phone: str, text: str) -> Any:
        logger.debug(f"Evolution sendText: instance={instance}, chars={len(text)}")
        return self._request(
            "POST",
            f"/message/sendText/{instance}",
            json={"number": phone, "text": text},
        )

    def send_media(
        self,
        instance: str,
        phone: str,
        media_base64: str,
        mime_type: str,
        caption: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> Any:
        mime_type = mime_type or "image/jpeg"
        data_url = f"data:{mime_type};base64,{media_base64}"
        if mime_type.startswith("video/"):
            path = f"/message/sendVideo/{instance}"
            body = {"number": phone, "video": data_url, "caption": caption or ""}
        elif mime_type.startswith("image/"):
            path = f"/message/sendImage/{instance}"
            body = {"number": phone, "image": data_url, "caption": caption or ""}
        else:
            path = f"/message/sendMedia/{instance}"
            body = {
                "number": phone,
                "mediatype": "document",
                "mimetype": mime_type,
                "media": media_base64,
                "caption": caption or "",
                "fileName": file_name or "documento",
            }
        logger.debug(f"Evolution {path.split('/')[2]}: instance={instance}, mime={mime_type}")
        return self._request("POST", path, json=body)

    def get_connection_state(self, instance: str) -> str:
        data = self._request("GET", f"/instance/connectionState/{instance}")
        if isinstance(data, dict):
            inner = data.get("instance")
            if isinstance(inner, dict) and inner.get("state"):
                return str(inner["state"])
            if data.get("state"):
                return str(data["state"])
        return "unknown"

    def download_media_base64(self, instance: str, event_id: str) -> Optional[str]:
        """Base64 of an inbound media message, or None when the gateway has none."""
        data = self._request(
            "POST",
            f"/chat/getBase64FromMediaMessage/{instance}",
            json={"message": {"key": {"id": event_id}}, "convertToMp4": False},
            timeout=DOWNLOAD_TIMEOUT_SECONDS,
        )
        return extract_base64(data)


def get_gateway_client(db: Session, agent: Agent | None) -> EvolutionClient:
    """Gateway client for a tenant. Raises CredentialsNotConfiguredError."""
    return EvolutionClient.from_credentials(resolve_gateway_credentials(db, agent))
