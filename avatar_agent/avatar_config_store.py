# avatar_agent/avatar_config_store.py

from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from avatar_agent.db_connection import session_scope
from avatar_agent.entities import AvatarConfig, utcnow


def name_key(name: str) -> str:
    return (name or "").strip().lower()


class AvatarConfigStore:
    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.SessionFactory = session_factory

    def create(
        self,
        *,
        connection_id: str,
        name: str,
        avatar_id: str,
        voice_id: str,
        language: str,
        system_prompt: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> AvatarConfig:
        """
        Insert a new configuration. A duplicate (owner, name) raises
        sqlalchemy.exc.IntegrityError from the unique constraint.
        """
        clean_name = name.strip()
        with session_scope(self.SessionFactory, session) as s:
            config = AvatarConfig(
                connection_id=str(connection_id),
                name=clean_name,
                name_key=name_key(clean_name),
                avatar_id=avatar_id,
                voice_id=voice_id,
                language=language,
                system_prompt=system_prompt or None,
            )
            s.add(config)
            return config

    def find_by_id(self, config_id: str) -> Optional[AvatarConfig]:
        session = self.SessionFactory()
        try:
            return session.get(AvatarConfig, str(config_id))
        finally:
            session.close()

    def find_by_owner(self, connection_id: str) -> List[AvatarConfig]:
        session = self.SessionFactory()
        try:
            return (
                session.query(AvatarConfig)
                .filter(AvatarConfig.connection_id == str(connection_id))
                .order_by(AvatarConfig.created_at.desc())
                .all()
            )
        finally:
            session.close()

    def find_by_owner_and_name(self, connection_id: str, name: str) -> Optional[AvatarConfig]:
        session = self.SessionFactory()
        try:
            return (
                session.query(AvatarConfig)
                .filter(
                    AvatarConfig.connection_id == str(connection_id),
                    AvatarConfig.name_key == name_key(name),
                )
                .one_or_none()
            )
        finally:
            session.close()

    def mark_credential_offered(
        self,
        config_id: str,
        credential_definition_id: str,
        exchange_ref: Optional[str] = None,
    ) -> Optional[AvatarConfig]:
        with session_scope(self.SessionFactory) as session:
            config = session.get(AvatarConfig, str(config_id))
            if config is None:
                return None
            config.credential_definition_id = credential_definition_id
            config.credential_exchange_ref = exchange_ref
            return config

    def find_awaiting_issuance(self, connection_id: str, exchange_ref: Optional[str] = None) -> Optional[AvatarConfig]:
        """
        The config an issuance-completion signal refers to: the one carrying
        exchange_ref when given and known, else the owner's oldest config
        that has a definition but no issued timestamp.
        """
        session = self.SessionFactory()
        try:
            base = session.query(AvatarConfig).filter(
                AvatarConfig.connection_id == str(connection_id),
                AvatarConfig.credential_definition_id.is_not(None),
                AvatarConfig.credential_issued_at.is_(None),
            )
            if exchange_ref:
                match = base.filter(AvatarConfig.credential_exchange_ref == exchange_ref).first()
                if match is not None:
                    return match
            return base.order_by(AvatarConfig.created_at.asc()).first()
        finally:
            session.close()

    def mark_credential_issued(self, config_id: str) -> bool:
        """
        Stamp credential_issued_at once. Returns False when the row is
        missing, has no definition yet, or was already stamped.
        """
        with session_scope(self.SessionFactory) as session:
            updated = (
                session.query(AvatarConfig)
                .filter(
                    AvatarConfig.id == str(config_id),
                    AvatarConfig.credential_definition_id.is_not(None),
                    AvatarConfig.credential_issued_at.is_(None),
                )
                .update(
                    {
                        AvatarConfig.credential_issued_at: utcnow(),
                        AvatarConfig.updated_at: utcnow(),
                    },
                    synchronize_session=False,
                )
            )
            return updated > 0
