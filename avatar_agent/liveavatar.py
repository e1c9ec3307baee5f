# avatar_agent/liveavatar.py
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

import httpx

from avatar_agent.app_config import AppConfig
from avatar_agent.errors import ExternalServiceError, NotConfigured

logger = logging.getLogger("avatar_agent")

LIVEKIT_MEET_URL = "https://meet.livekit.io/custom"


@dataclass(frozen=True)
class SessionToken:
    session_id: str
    session_token: str


@dataclass(frozen=True)
class StreamCredentials:
    livekit_url: str
    livekit_token: str

    def meet_url(self) -> str:
        return f"{LIVEKIT_MEET_URL}?liveKitUrl={quote(self.livekit_url, safe='')}&token={quote(self.livekit_token, safe='')}"


class LiveAvatarClient:
    """
    Streaming-session provider. Two calls: a session token for the chosen
    avatar/voice/language/prompt, then start() which yields LiveKit room
    credentials for the player page.
    """

    def __init__(self, config: AppConfig, client: Optional[httpx.Client] = None) -> None:
        self.config = config
        self._client = client or httpx.Client(timeout=config.HTTP_TIMEOUT_SECONDS)

    def is_configured(self) -> bool:
        return bool(self.config.LIVEAVATAR_API_KEY)

    def _error_detail(self, response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        if isinstance(data, dict) and data.get("message"):
            return str(data["message"])
        return response.reason_phrase

    def _data(self, response: httpx.Response) -> dict:
        try:
            data = response.json()["data"]
        except (ValueError, KeyError, TypeError) as e:
            raise ExternalServiceError("LiveAvatar", f"unexpected response body: {e}") from e
        if not isinstance(data, dict):
            raise ExternalServiceError("LiveAvatar", "unexpected response body: data is not an object")
        return data

    def create_session(
        self,
        avatar_id: str,
        voice_id: str,
        language: str,
        prompt: Optional[str] = None,
    ) -> SessionToken:
        if not self.is_configured():
            raise NotConfigured("LiveAvatar is not configured. Please set the API credentials.")

        persona = {
            "voice_id": voice_id,
            "context_id": self.config.LIVEAVATAR_CONTEXT_ID,
            "language": language,
        }
        if prompt:
            persona["prompt"] = prompt

        try:
            response = self._client.post(
                f"{self.config.LIVEAVATAR_API_URL}/v1/sessions/token",
                headers={"X-API-KEY": self.config.LIVEAVATAR_API_KEY},
                json={"mode": "FULL", "avatar_id": avatar_id, "avatar_persona": persona},
            )
        except httpx.HTTPError as e:
            raise ExternalServiceError("LiveAvatar", f"create session token: {e}") from e

        if response.status_code >= 400:
            raise ExternalServiceError(
                "LiveAvatar",
                f"Failed to create session token: {self._error_detail(response)}",
                response.status_code,
            )

        data = self._data(response)
        return SessionToken(session_id=data["session_id"], session_token=data["session_token"])

    def create_default_session(self) -> SessionToken:
        return self.create_session(
            self.config.LIVEAVATAR_AVATAR_ID,
            self.config.LIVEAVATAR_VOICE_ID,
            self.config.LIVEAVATAR_LANGUAGE,
        )

    def start_session(self, session_token: str) -> StreamCredentials:
        try:
            response = self._client.post(
                f"{self.config.LIVEAVATAR_API_URL}/v1/sessions/start",
                headers={"Authorization": f"Bearer {session_token}", "Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise ExternalServiceError("LiveAvatar", f"start session: {e}") from e

        if response.status_code >= 400:
            raise ExternalServiceError(
                "LiveAvatar",
                f"Failed to start session: {self._error_detail(response)}",
                response.status_code,
            )

        data = self._data(response)
        return StreamCredentials(livekit_url=data["livekit_url"], livekit_token=data["livekit_client_token"])

    def close(self) -> None:
        self._client.close()
