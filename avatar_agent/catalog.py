# avatar_agent/catalog.py
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, TypeVar

from avatar_agent.app_config import AppConfig

logger = logging.getLogger("avatar_agent")

T = TypeVar("T")

CATALOG_TTL_SECONDS = 5 * 60


@dataclass(frozen=True)
class CatalogAvatar:
    id: str
    name: str
    gender: str = "unknown"
    preview_url: str = ""
    type: str = "configured"


@dataclass(frozen=True)
class CatalogVoice:
    id: str
    name: str
    language: str = "any"
    gender: str = "unknown"
    preview_url: str = ""


class CatalogCache:
    """
    In-memory catalog listings with a fixed TTL.
    - thread-safe (webhooks are served from a threadpool)
    - a failed loader call is not cached
    """

    def __init__(self, ttl_seconds: int = CATALOG_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        # key -> {"data": list, "expires_at": float}
        self._items: dict[str, dict[str, object]] = {}

    def get_or_load(self, key: str, loader: Callable[[], List[T]]) -> List[T]:
        now = time.time()
        with self._lock:
            item = self._items.get(key)
            if item is not None and float(item["expires_at"]) > now:
                return list(item["data"])  # type: ignore[arg-type]

        data = loader()

        with self._lock:
            self._items[key] = {"data": list(data), "expires_at": time.time() + self.ttl_seconds}
        return list(data)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def sweep_expired(self) -> int:
        now = time.time()
        with self._lock:
            expired = [k for k, v in self._items.items() if float(v["expires_at"]) <= now]
            for k in expired:
                del self._items[k]
        return len(expired)


class LiveAvatarCatalog:
    """
    Avatar/voice catalog for the wizard.

    The LiveAvatar API has no listing endpoint, so the catalog offers the
    operator-configured default avatar and voice; anything else is entered
    by id through the wizard's manual-entry option.
    """

    def __init__(self, config: AppConfig, cache: Optional[CatalogCache] = None) -> None:
        self.config = config
        self.cache = cache or CatalogCache()

    def list_avatars(self) -> List[CatalogAvatar]:
        return self.cache.get_or_load("avatars", self._load_avatars)

    def list_voices(self) -> List[CatalogVoice]:
        return self.cache.get_or_load("voices", self._load_voices)

    def _load_avatars(self) -> List[CatalogAvatar]:
        avatars = []
        if self.config.LIVEAVATAR_AVATAR_ID:
            avatars.append(CatalogAvatar(id=self.config.LIVEAVATAR_AVATAR_ID, name="Default Avatar (from config)"))
        return avatars

    def _load_voices(self) -> List[CatalogVoice]:
        voices = []
        if self.config.LIVEAVATAR_VOICE_ID:
            voices.append(
                CatalogVoice(
                    id=self.config.LIVEAVATAR_VOICE_ID,
                    name="Default Voice (from config)",
                    language=self.config.LIVEAVATAR_LANGUAGE or "en",
                )
            )
        return voices

    def resolve_avatar_by_id(self, avatar_id: str) -> Optional[CatalogAvatar]:
        if not avatar_id:
            return None
        for avatar in self.list_avatars():
            if avatar.id == avatar_id:
                return avatar
        return CatalogAvatar(id=avatar_id, name=f"Avatar {avatar_id[:8]}...", type="custom")

    def resolve_voice_by_id(self, voice_id: str) -> Optional[CatalogVoice]:
        if not voice_id:
            return None
        for voice in self.list_voices():
            if voice.id == voice_id:
                return voice
        return CatalogVoice(id=voice_id, name=f"Voice {voice_id[:8]}...", language=self.config.LIVEAVATAR_LANGUAGE or "en")
