# avatar_agent/presentation_tracker.py

from datetime import datetime
from typing import Callable, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from avatar_agent.db_connection import session_scope
from avatar_agent.entities import (
    PRESENTATION_TTL,
    PendingPresentation,
    PresentationStatus,
    utcnow,
)


class PresentationTracker:
    """
    Correlates outstanding credential-verification requests with the
    AvatarConfig they guard.

    Status only moves pending -> verified | rejected | expired; every
    transition is a conditional UPDATE on status='pending', so a second
    terminal transition never overwrites the first.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.SessionFactory = session_factory

    def create(
        self,
        *,
        proof_exchange_id: str,
        avatar_config_id: str,
        connection_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> PendingPresentation:
        with session_scope(self.SessionFactory) as session:
            row = PendingPresentation(
                proof_exchange_id=str(proof_exchange_id),
                avatar_config_id=str(avatar_config_id),
                connection_id=connection_id,
                status=PresentationStatus.PENDING.value,
                expires_at=expires_at or (utcnow() + PRESENTATION_TTL),
            )
            session.add(row)
            return row

    def find_by_proof_exchange_id(self, proof_exchange_id: str) -> Optional[PendingPresentation]:
        session = self.SessionFactory()
        try:
            return (
                session.query(PendingPresentation)
                .filter(PendingPresentation.proof_exchange_id == str(proof_exchange_id))
                .one_or_none()
            )
        finally:
            session.close()

    def find_pending_by_connection(self, connection_id: str) -> List[PendingPresentation]:
        now = utcnow()
        session = self.SessionFactory()
        try:
            return (
                session.query(PendingPresentation)
                .filter(
                    PendingPresentation.connection_id == str(connection_id),
                    PendingPresentation.status == PresentationStatus.PENDING.value,
                    or_(PendingPresentation.expires_at.is_(None), PendingPresentation.expires_at > now),
                )
                .order_by(PendingPresentation.created_at.desc())
                .all()
            )
        finally:
            session.close()

    def _transition(
        self,
        proof_exchange_id: str,
        status: PresentationStatus,
        only_unexpired: bool = False,
    ) -> Tuple[Optional[PendingPresentation], bool]:
        now = utcnow()
        values = {PendingPresentation.status: status.value}
        if status == PresentationStatus.VERIFIED:
            values[PendingPresentation.verified_at] = now

        with session_scope(self.SessionFactory) as session:
            q = session.query(PendingPresentation).filter(
                PendingPresentation.proof_exchange_id == str(proof_exchange_id),
                PendingPresentation.status == PresentationStatus.PENDING.value,
            )
            if only_unexpired:
                q = q.filter(
                    or_(PendingPresentation.expires_at.is_(None), PendingPresentation.expires_at > now)
                )
            applied = q.update(values, synchronize_session=False) > 0

            row = (
                session.query(PendingPresentation)
                .filter(PendingPresentation.proof_exchange_id == str(proof_exchange_id))
                .populate_existing()
                .one_or_none()
            )
            return row, applied

    def mark_verified(self, proof_exchange_id: str) -> Tuple[Optional[PendingPresentation], bool]:
        """
        pending -> verified, unless the request already expired, in which
        case it is moved to expired and (row, False) is returned.
        """
        row, applied = self._transition(proof_exchange_id, PresentationStatus.VERIFIED, only_unexpired=True)
        if not applied and row is not None and row.is_pending:
            row, _ = self._transition(proof_exchange_id, PresentationStatus.EXPIRED)
        return row, applied

    def mark_rejected(self, proof_exchange_id: str) -> Tuple[Optional[PendingPresentation], bool]:
        return self._transition(proof_exchange_id, PresentationStatus.REJECTED)

    def supersede_pending(self, connection_id: str, avatar_config_id: str) -> int:
        """Expire the requester's outstanding requests for one avatar before a new one is issued."""
        with session_scope(self.SessionFactory) as session:
            return (
                session.query(PendingPresentation)
                .filter(
                    PendingPresentation.connection_id == str(connection_id),
                    PendingPresentation.avatar_config_id == str(avatar_config_id),
                    PendingPresentation.status == PresentationStatus.PENDING.value,
                )
                .update(
                    {PendingPresentation.status: PresentationStatus.EXPIRED.value},
                    synchronize_session=False,
                )
            )

    def delete(self, presentation_id: str) -> bool:
        with session_scope(self.SessionFactory) as session:
            removed = (
                session.query(PendingPresentation)
                .filter(PendingPresentation.id == str(presentation_id))
                .delete(synchronize_session=False)
            )
            return removed > 0

    def expire_pending(self) -> int:
        now = utcnow()
        with session_scope(self.SessionFactory) as session:
            return (
                session.query(PendingPresentation)
                .filter(
                    PendingPresentation.status == PresentationStatus.PENDING.value,
                    PendingPresentation.expires_at.is_not(None),
                    PendingPresentation.expires_at < now,
                )
                .update(
                    {PendingPresentation.status: PresentationStatus.EXPIRED.value},
                    synchronize_session=False,
                )
            )
