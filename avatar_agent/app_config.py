# avatar_agent/app_config.py
import os
import logging

from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

logger = logging.getLogger("avatar_agent")


class AppConfig:
    """
    Process configuration read once from the environment (.env supported).

    Keyword overrides win over the environment, which keeps tests free of
    os.environ patching.
    """

    def __init__(self, **overrides) -> None:
        # ---- http surface ----
        self.PORT = int(os.getenv("PORT", "4001"))
        self.PUBLIC_URL = os.getenv("PUBLIC_URL", "http://localhost:4001").rstrip("/")
        self.VS_AGENT_URL = os.getenv("VS_AGENT_URL", "http://localhost:3000").rstrip("/")
        self.HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "15"))

        # ---- database ----
        self.DATABASE_URL = os.getenv("DATABASE_URL", "")
        self.DB_HOST = os.getenv("DB_HOST", "localhost")
        self.DB_PORT = int(os.getenv("DB_PORT", "5432"))
        self.DB_NAME = os.getenv("DB_NAME", "avatar_agent")
        self.DB_USER = os.getenv("DB_USER", "postgres")
        self.DB_PASSWORD = os.getenv("DB_PASSWORD", "")
        self.DB_SECRET_ID = os.getenv("DB_SECRET_ID", "")
        self.PROJECT_ID = os.getenv("GOOGLE_CLOUD_PROJECT", "")

        # ---- liveavatar (streaming provider + catalog defaults) ----
        self.LIVEAVATAR_API_KEY = os.getenv("LIVEAVATAR_API_KEY", "")
        self.LIVEAVATAR_API_URL = os.getenv("LIVEAVATAR_API_URL", "https://api.liveavatar.com").rstrip("/")
        self.LIVEAVATAR_AVATAR_ID = os.getenv("LIVEAVATAR_AVATAR_ID", "")
        self.LIVEAVATAR_VOICE_ID = os.getenv("LIVEAVATAR_VOICE_ID", "")
        self.LIVEAVATAR_CONTEXT_ID = os.getenv("LIVEAVATAR_CONTEXT_ID", "")
        self.LIVEAVATAR_LANGUAGE = os.getenv("LIVEAVATAR_LANGUAGE", "en")

        # ---- credentials ----
        self.AVATAR_CREDENTIAL_DEFINITION_ID = os.getenv("AVATAR_CREDENTIAL_DEFINITION_ID", "")
        self.ISSUER_DID = os.getenv("ISSUER_DID", "")

        # ---- sweeper ----
        self.SWEEP_INTERVAL_SECONDS = float(os.getenv("SWEEP_INTERVAL_SECONDS", "60"))

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise ValueError(f"Unknown config key: {key}")
            setattr(self, key, value)

    @property
    def presentation_callback_url(self) -> str:
        return f"{self.PUBLIC_URL}/api/presentation/callback"

    def liveavatar_defaults_configured(self) -> bool:
        return bool(
            self.LIVEAVATAR_API_KEY
            and self.LIVEAVATAR_AVATAR_ID
            and self.LIVEAVATAR_VOICE_ID
            and self.LIVEAVATAR_CONTEXT_ID
        )
