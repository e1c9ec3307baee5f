# avatar_agent/container.py
import logging
from typing import Optional

from avatar_agent.app_config import AppConfig
from avatar_agent.avatar_config_store import AvatarConfigStore
from avatar_agent.catalog import CatalogCache, LiveAvatarCatalog
from avatar_agent.command_router import CommandRouter
from avatar_agent.credential_coordinator import CredentialCoordinator
from avatar_agent.db_connection import DbConnection
from avatar_agent.errors import ExternalServiceError
from avatar_agent.liveavatar import LiveAvatarClient
from avatar_agent.presentation_tracker import PresentationTracker
from avatar_agent.vs_agent import VsAgentCredentialAuthority, VsAgentGateway
from avatar_agent.wizard_engine import WizardEngine
from avatar_agent.wizard_session_store import WizardSessionStore

logger = logging.getLogger("avatar_agent")


class AppContainer:
    """
    Process-scoped object graph. Built once at startup; every collaborator
    can be swapped through keyword arguments (tests pass fakes).
    """

    def __init__(
        self,
        config: AppConfig,
        db: DbConnection,
        *,
        gateway=None,
        authority=None,
        catalog=None,
        streaming=None,
    ) -> None:
        self.config = config
        self.db = db

        session_factory = db.build_db_session_factory()
        self.sessions = WizardSessionStore(session_factory)
        self.configs = AvatarConfigStore(session_factory)
        self.presentations = PresentationTracker(session_factory)

        self.gateway = gateway or VsAgentGateway(config.VS_AGENT_URL, timeout=config.HTTP_TIMEOUT_SECONDS)
        self.authority = authority or VsAgentCredentialAuthority(config.VS_AGENT_URL, timeout=config.HTTP_TIMEOUT_SECONDS)
        self.catalog = catalog or LiveAvatarCatalog(config, CatalogCache())
        self.streaming = streaming or LiveAvatarClient(config)

        self.coordinator = CredentialCoordinator(
            self.authority,
            self.configs,
            self.presentations,
            credential_definition_id=config.AVATAR_CREDENTIAL_DEFINITION_ID,
            issuer_did=config.ISSUER_DID,
            callback_url=config.presentation_callback_url,
        )
        self.wizard = WizardEngine(db, self.sessions, self.configs, self.catalog)
        self.router = CommandRouter(
            self.wizard,
            self.coordinator,
            self.configs,
            self.gateway,
            self.streaming,
            config.PUBLIC_URL,
            default_session_available=config.liveavatar_defaults_configured(),
        )

    def startup(self) -> None:
        self.db.create_all()
        try:
            self.coordinator.register_credential_type()
        except ExternalServiceError as e:
            # avatars can still be created, just without credentials
            logger.error(f"Credential type registration failed, continuing without credentials: {e}")

    def shutdown(self) -> None:
        for client in (self.gateway, self.authority, self.streaming):
            close = getattr(client, "close", None)
            if callable(close):
                close()
        self.db.dispose()


def build_container(config: Optional[AppConfig] = None, db: Optional[DbConnection] = None, **collaborators) -> AppContainer:
    config = config or AppConfig()
    db = db or DbConnection(config)
    return AppContainer(config, db, **collaborators)
