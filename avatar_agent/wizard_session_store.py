# avatar_agent/wizard_session_store.py

from typing import Callable, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from avatar_agent.db_connection import session_scope
from avatar_agent.entities import SESSION_TTL, WizardSession, WizardStep, utcnow

_UNSET = object()


class WizardSessionStore:
    """
    Durable wizard progress, keyed by connection id.

    Expiry is enforced at read time; delete_expired() is housekeeping only.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.SessionFactory = session_factory

    def create(
        self,
        connection_id: str,
        step: WizardStep = WizardStep.AVATAR_SELECTION,
        rendered_options: Optional[list[str]] = None,
    ) -> WizardSession:
        """
        Create the session, or reset an existing one to a blank state.
        """
        now = utcnow()
        with session_scope(self.SessionFactory) as session:
            row = session.get(WizardSession, str(connection_id))
            if row is None:
                row = WizardSession(connection_id=str(connection_id))
                session.add(row)

            row.current_step = step.value
            row.selected_avatar_id = None
            row.selected_voice_id = None
            row.selected_language = None
            row.custom_name = None
            row.system_prompt = None
            row.rendered_options = list(rendered_options or [])
            row.started_at = now
            row.expires_at = now + SESSION_TTL
            return row

    def find(self, connection_id: str) -> Optional[WizardSession]:
        now = utcnow()
        session = self.SessionFactory()
        try:
            return (
                session.query(WizardSession)
                .filter(
                    WizardSession.connection_id == str(connection_id),
                    or_(WizardSession.expires_at.is_(None), WizardSession.expires_at > now),
                )
                .one_or_none()
            )
        finally:
            session.close()

    def update(
        self,
        connection_id: str,
        *,
        step: Optional[WizardStep] = None,
        selected_avatar_id=_UNSET,
        selected_voice_id=_UNSET,
        selected_language=_UNSET,
        custom_name=_UNSET,
        system_prompt=_UNSET,
        rendered_options=_UNSET,
    ) -> Optional[WizardSession]:
        fields = {
            "selected_avatar_id": selected_avatar_id,
            "selected_voice_id": selected_voice_id,
            "selected_language": selected_language,
            "custom_name": custom_name,
            "system_prompt": system_prompt,
            "rendered_options": rendered_options,
        }
        with session_scope(self.SessionFactory) as session:
            row = session.get(WizardSession, str(connection_id))
            if row is None:
                return None
            if step is not None:
                row.current_step = step.value
            for name, value in fields.items():
                if value is not _UNSET:
                    setattr(row, name, list(value) if name == "rendered_options" else value)
            return row

    def delete(self, connection_id: str, session: Optional[Session] = None) -> bool:
        with session_scope(self.SessionFactory, session) as s:
            removed = (
                s.query(WizardSession)
                .filter(WizardSession.connection_id == str(connection_id))
                .delete(synchronize_session=False)
            )
            return removed > 0

    def delete_expired(self) -> int:
        now = utcnow()
        with session_scope(self.SessionFactory) as session:
            return (
                session.query(WizardSession)
                .filter(
                    WizardSession.expires_at.is_not(None),
                    WizardSession.expires_at < now,
                )
                .delete(synchronize_session=False)
            )
