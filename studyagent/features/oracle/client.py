"""
studyagent/features/oracle/client.py

Gemini generateContent client.

Two auth modes, picked from settings:
- Vertex AI with a service account (GOOGLE_SERVICE_ACCOUNT_BASE64 or
  GOOGLE_SERVICE_ACCOUNT_FILE); access tokens come from google-auth and are
  cached on the provider instance
- Generative Language API with GEMINI_API_KEY

One GeminiOracle is created per app lifespan and injected into the router.
There are no retries; the caller's deadline bounds the whole call.
"""

import asyncio
import base64
import json
import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from studyagent.core.config import Settings, settings
from studyagent.core.errors import UpstreamError, UpstreamPermissionDeniedError, UpstreamTimeoutError

logger = logging.getLogger("studyagent")

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
GENERATIVE_LANGUAGE_BASE = "https://generativelanguage.googleapis.com/v1beta"


class GenerationOracle(Protocol):
    async def generate(
        self,
        prompt: str,
        function_declarations: List[Dict[str, Any]],
        *,
        temperature: float,
        max_output_tokens: int,
        timeout: float,
    ) -> Dict[str, Any]:
        ...

    async def aclose(self) -> None:
        ...


def load_service_account_info(cfg: Settings) -> Optional[Dict[str, Any]]:
    """Service account key from base64 env (preferred) or a key file."""
    if cfg.GOOGLE_SERVICE_ACCOUNT_BASE64:
        try:
            return json.loads(base64.b64decode(cfg.GOOGLE_SERVICE_ACCOUNT_BASE64).decode("utf-8"))
        except (ValueError, UnicodeDecodeError) as exc:
            logger.error("oracle.service_account_invalid", extra={"error_code": "oracle_not_configured"})
            raise UpstreamError(
                f"GOOGLE_SERVICE_ACCOUNT_BASE64 is not valid base64 JSON: {exc}",
                code="oracle_not_configured",
            ) from exc

    if cfg.GOOGLE_SERVICE_ACCOUNT_FILE:
        try:
            with open(cfg.GOOGLE_SERVICE_ACCOUNT_FILE, "r", encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, ValueError) as exc:
            logger.error("oracle.service_account_invalid", extra={"error_code": "oracle_not_configured"})
            raise UpstreamError(
                f"Could not read service account file {cfg.GOOGLE_SERVICE_ACCOUNT_FILE}: {exc}",
                code="oracle_not_configured",
            ) from exc

    return None


class ServiceAccountTokenProvider:
    """OAuth access tokens for a service account, refreshed when expired."""

    def __init__(self, info: Dict[str, Any]):
        self.project_id: Optional[str] = info.get("project_id")
        self.client_email: str = info.get("client_email") or "your service account"
        self._credentials = service_account.Credentials.from_service_account_info(
            info, scopes=[CLOUD_PLATFORM_SCOPE]
        )
        self._lock = asyncio.Lock()

    async def token(self) -> str:
        async with self._lock:
            if not self._credentials.valid:
                # google-auth refresh is blocking I/O
                await asyncio.to_thread(self._credentials.refresh, GoogleAuthRequest())
            return self._credentials.token


class GeminiOracle:
    def __init__(
        self,
        cfg: Optional[Settings] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        token_provider: Optional[ServiceAccountTokenProvider] = None,
    ):
        self.cfg = cfg or settings
        self.model = self.cfg.GEMINI_MODEL
        self.location = self.cfg.VERTEX_LOCATION
        self.api_key = self.cfg.GEMINI_API_KEY
        self.token_provider = token_provider
        self._client = http_client or httpx.AsyncClient()

    @classmethod
    def from_settings(cls, cfg: Optional[Settings] = None, **kwargs) -> "GeminiOracle":
        cfg = cfg or settings
        provider = None
        info = load_service_account_info(cfg)
        if info:
            provider = ServiceAccountTokenProvider(info)
            logger.info("oracle.configured", extra={"event_type": "oracle.vertex"})
        elif cfg.GEMINI_API_KEY:
            logger.info("oracle.configured", extra={"event_type": "oracle.api_key"})
        else:
            logger.warning("oracle.not_configured", extra={"error_code": "oracle_not_configured"})
        return cls(cfg, token_provider=provider, **kwargs)

    @property
    def uses_vertex(self) -> bool:
        return self.token_provider is not None and bool(self.token_provider.project_id)

    @property
    def configured(self) -> bool:
        return self.uses_vertex or bool(self.api_key)

    def endpoint(self) -> str:
        if self.uses_vertex:
            project_id = self.token_provider.project_id
            return (
                f"https://{self.location}-aiplatform.googleapis.com/v1/projects/{project_id}"
                f"/locations/{self.location}/publishers/google/models/{self.model}:generateContent"
            )
        return f"{GENERATIVE_LANGUAGE_BASE}/models/{self.model}:generateContent"

    async def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.uses_vertex:
            try:
                headers["Authorization"] = f"Bearer {await self.token_provider.token()}"
            except GoogleAuthError as exc:
                raise UpstreamError(f"Failed to obtain Vertex AI access token: {exc}") from exc
        else:
            headers["x-goog-api-key"] = self.api_key
        return headers

    @staticmethod
    def build_body(
        prompt: str,
        function_declarations: List[Dict[str, Any]],
        temperature: float,
        max_output_tokens: int,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_output_tokens,
            },
        }
        if function_declarations:
            body["tools"] = [{"functionDeclarations": function_declarations}]
        return body

    def _not_configured(self) -> UpstreamError:
        return UpstreamError(
            "Gemini is not configured. Set GOOGLE_SERVICE_ACCOUNT_BASE64 or GOOGLE_SERVICE_ACCOUNT_FILE "
            "for Vertex AI (the service account needs the \"Vertex AI User\" role), or GEMINI_API_KEY.",
            code="oracle_not_configured",
        )

    def _error_for_status(self, response: httpx.Response) -> UpstreamError:
        try:
            error = response.json().get("error") or {}
        except (ValueError, AttributeError):
            error = {}
        if not isinstance(error, dict):
            error = {}
        message = error.get("message") or response.text[:500]

        if response.status_code == 403 and error.get("status") == "PERMISSION_DENIED":
            account = self.token_provider.client_email if self.token_provider else "your service account"
            return UpstreamPermissionDeniedError(
                "Service account lacks Vertex AI permissions. Please grant the \"Vertex AI User\" role "
                f"to the service account ({account}) in Google Cloud Console."
            )
        return UpstreamError(f"Gemini API error: {response.status_code} {message}")

    async def _post(self, body: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        headers = await self._headers()
        response = await self._client.post(self.endpoint(), json=body, headers=headers, timeout=timeout)
        if response.status_code >= 400:
            raise self._error_for_status(response)
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError("Gemini returned a non-JSON response") from exc

    async def generate(
        self,
        prompt: str,
        function_declarations: List[Dict[str, Any]],
        *,
        temperature: float,
        max_output_tokens: int,
        timeout: float,
    ) -> Dict[str, Any]:
        """POST one generateContent request and return the raw response JSON."""
        if not self.configured:
            raise self._not_configured()

        body = self.build_body(prompt, function_declarations, temperature, max_output_tokens)
        try:
            return await asyncio.wait_for(self._post(body, timeout), timeout=timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise UpstreamTimeoutError(f"Gemini did not respond within {timeout:g}s") from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Gemini request failed: {exc}") from exc

    async def aclose(self) -> None:
        await self._client.aclose()
