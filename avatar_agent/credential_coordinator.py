# avatar_agent/credential_coordinator.py
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from uuid import uuid4

from avatar_agent import messages as M
from avatar_agent.avatar_config_store import AvatarConfigStore
from avatar_agent.entities import AvatarConfig, PendingPresentation, PresentationStatus
from avatar_agent.errors import (
    AvatarAgentError,
    NotConfigured,
    NotFound,
    OwnershipViolation,
    ValidationError,
)
from avatar_agent.presentation_tracker import PresentationTracker

logger = logging.getLogger("avatar_agent")

CREDENTIAL_SCHEMA_NAME = "HologramAvatarOwnership"
CREDENTIAL_VERSION = "1.0.0"
CREDENTIAL_ATTRIBUTES = [
    "avatar_config_id",
    "avatar_name",
    "owner_connection_id",
    "heygen_avatar_id",
    "heygen_voice_id",
    "language",
    "created_at",
    "issuer_did",
]
PROOF_ATTRIBUTES = ["avatar_config_id", "avatar_name", "owner_connection_id"]
PRESENTATION_ATTRIBUTES = ["avatar_config_id", "owner_connection_id"]


@dataclass
class VerificationOutcome:
    """
    Result of applying a verification callback to a tracked presentation.
    reason is a short machine-readable code when verified is False.
    """
    verified: bool
    presentation: Optional[PendingPresentation] = None
    avatar_config: Optional[AvatarConfig] = None
    reason: Optional[str] = None


def claims_to_dict(claims: Any) -> Dict[str, str]:
    """
    Claims arrive either as [{"name": .., "value": ..}, ...] or as a flat
    mapping; normalise to a dict.
    """
    if isinstance(claims, dict):
        return {str(k): "" if v is None else str(v) for k, v in claims.items()}
    out: Dict[str, str] = {}
    for claim in claims or []:
        if isinstance(claim, dict) and claim.get("name"):
            value = claim.get("value")
            out[str(claim["name"])] = "" if value is None else str(value)
    return out


class CredentialCoordinator:
    """
    Issues ownership credentials for completed avatar configurations and
    verifies presented credentials against the configuration they guard.

    Every proof request is tracked: a PendingPresentation row exists before
    (or atomically with) the outbound request, so a callback always has a
    row to land on.
    """

    def __init__(
        self,
        authority,
        configs: AvatarConfigStore,
        presentations: PresentationTracker,
        *,
        credential_definition_id: Optional[str] = None,
        issuer_did: Optional[str] = None,
        callback_url: str = "",
    ) -> None:
        self.authority = authority
        self.configs = configs
        self.presentations = presentations
        self.credential_definition_id = credential_definition_id or None
        self.issuer_did = issuer_did or "unknown"
        self.callback_url = callback_url

    def is_configured(self) -> bool:
        return bool(self.credential_definition_id)

    def get_credential_definition_id(self) -> Optional[str]:
        return self.credential_definition_id

    def is_protected(self, config: AvatarConfig) -> bool:
        return bool(config.credential_definition_id) and self.is_configured()

    def _require_definition(self) -> str:
        if not self.credential_definition_id:
            raise NotConfigured("Ownership credentials are not configured on this agent.")
        return self.credential_definition_id

    # -----------------------
    # Registration
    # -----------------------

    def register_credential_type(self) -> str:
        """
        Register the ownership schema once. Skipped when a definition id is
        already configured.
        """
        if self.credential_definition_id:
            logger.info(f"Using existing credential definition: {self.credential_definition_id}")
            return self.credential_definition_id

        logger.info("Registering avatar ownership credential type with VS Agent...")
        self.credential_definition_id = self.authority.register_credential_type(
            CREDENTIAL_SCHEMA_NAME,
            CREDENTIAL_VERSION,
            CREDENTIAL_ATTRIBUTES,
        )
        logger.info(f"Credential type registered: {self.credential_definition_id}")
        logger.info(f"Add this to your .env file: AVATAR_CREDENTIAL_DEFINITION_ID={self.credential_definition_id}")
        return self.credential_definition_id

    # -----------------------
    # Issuance
    # -----------------------

    def build_claims(self, config: AvatarConfig) -> List[Dict[str, str]]:
        values = {
            "avatar_config_id": config.id,
            "avatar_name": config.name,
            "owner_connection_id": config.connection_id,
            "heygen_avatar_id": config.avatar_id,
            "heygen_voice_id": config.voice_id,
            "language": config.language,
            "created_at": config.created_at.isoformat() if config.created_at else "",
            "issuer_did": self.issuer_did,
        }
        return [{"name": name, "mimeType": "text/plain", "value": str(values[name])} for name in CREDENTIAL_ATTRIBUTES]

    def issue_avatar_credential(self, config: AvatarConfig) -> AvatarConfig:
        """
        Send the ownership credential to the config's owner and record the
        definition id on the row. The issued timestamp is set later by
        confirm_issuance() when the holder accepts.
        """
        definition_id = self._require_definition()

        logger.info(f"Issuing credential for avatar {config.id} to {config.connection_id}...")
        exchange_ref = self.authority.issue_credential(
            config.connection_id,
            definition_id,
            self.build_claims(config),
        )

        updated = self.configs.mark_credential_offered(config.id, definition_id, exchange_ref)
        logger.info(f"Credential issuance initiated for avatar {config.id} (ref={exchange_ref})")
        return updated or config

    def confirm_issuance(self, connection_id: str, thread_id: Optional[str] = None) -> Optional[AvatarConfig]:
        config = self.configs.find_awaiting_issuance(connection_id, thread_id)
        if config is None:
            logger.info(f"Credential reception from {connection_id} matched no pending issuance")
            return None
        if not self.configs.mark_credential_issued(config.id):
            return None
        logger.info(f"Credential for avatar {config.id} accepted by {connection_id}")
        return self.configs.find_by_id(config.id)

    # -----------------------
    # Verification
    # -----------------------

    def request_identity_proof(
        self,
        connection_id: str,
        config_id: str,
        description: str = "Present your avatar ownership credential",
    ) -> PendingPresentation:
        definition_id = self._require_definition()

        superseded = self.presentations.supersede_pending(connection_id, config_id)
        if superseded:
            logger.info(f"Expired {superseded} earlier proof request(s) from {connection_id} for avatar {config_id}")

        proof_item_id = str(uuid4())
        presentation = self.presentations.create(
            proof_exchange_id=proof_item_id,
            avatar_config_id=config_id,
            connection_id=connection_id,
        )

        proof_item = {
            "id": proof_item_id,
            "type": "verifiable-credential",
            "description": description,
            "credentialDefinitionId": definition_id,
            "attributes": list(PROOF_ATTRIBUTES),
        }
        try:
            self.authority.request_proof(connection_id, [proof_item])
        except Exception:
            # nothing was sent, so no callback can ever reference this row
            self.presentations.delete(presentation.id)
            raise

        logger.info(f"Identity proof request {proof_item_id} sent to {connection_id} for avatar {config_id}")
        return presentation

    def create_presentation_request(self, config_id: str, connection_id: Optional[str] = None) -> Dict[str, Any]:
        definition_id = self._require_definition()

        data = self.authority.create_presentation_request(
            definition_id,
            self.callback_url,
            config_id,
            PRESENTATION_ATTRIBUTES,
        )
        proof_exchange_id = str(data["proofExchangeId"])
        self.presentations.create(
            proof_exchange_id=proof_exchange_id,
            avatar_config_id=config_id,
            connection_id=connection_id,
        )
        logger.info(f"Presentation request {proof_exchange_id} created for avatar {config_id}")
        return {"proofExchangeId": proof_exchange_id, "shortUrl": data.get("shortUrl")}

    def _find_tracked(
        self,
        connection_id: str,
        proof_item_id: Optional[str],
        thread_id: Optional[str],
        config_id: Optional[str],
    ) -> Optional[PendingPresentation]:
        for token in (proof_item_id, thread_id):
            if token:
                row = self.presentations.find_by_proof_exchange_id(token)
                if row is not None:
                    return row
        if config_id:
            for row in self.presentations.find_pending_by_connection(connection_id):
                if row.avatar_config_id == config_id:
                    return row
        return None

    def verify_submitted_proof(
        self,
        connection_id: str,
        proof_item: Dict[str, Any],
        thread_id: Optional[str] = None,
    ) -> AvatarConfig:
        """
        Check a proof the user submitted in-band (identity-proof-submit) and
        return the AvatarConfig it unlocks. Any rejection marks the tracked
        presentation rejected and raises.
        """
        values = claims_to_dict(proof_item.get("claims"))
        config_id = values.get("avatar_config_id") or None
        owner_id = values.get("owner_connection_id") or None

        tracked = self._find_tracked(connection_id, proof_item.get("id"), thread_id, config_id)

        def reject(error: AvatarAgentError) -> AvatarAgentError:
            if tracked is not None and tracked.is_pending:
                self.presentations.mark_rejected(tracked.proof_exchange_id)
            logger.info(f"Proof from {connection_id} rejected: {error.__class__.__name__}: {error}")
            return error

        if tracked is not None and not tracked.is_pending:
            raise reject(ValidationError(M.PROOF_STALE))
        if not proof_item.get("verified"):
            raise reject(ValidationError(M.PROOF_NOT_VERIFIED))
        if not config_id:
            raise reject(ValidationError(M.PROOF_MISSING_CONFIG))
        if owner_id != connection_id:
            raise reject(OwnershipViolation(M.PROOF_WRONG_OWNER))
        if tracked is not None and tracked.avatar_config_id != config_id:
            raise reject(ValidationError(M.PROOF_WRONG_AVATAR))

        config = self.configs.find_by_id(config_id)
        if config is None or config.connection_id != connection_id:
            raise reject(NotFound(M.AVATAR_CONFIG_MISSING))

        if tracked is not None:
            _, applied = self.presentations.mark_verified(tracked.proof_exchange_id)
            if not applied:
                raise ValidationError(M.PROOF_STALE)

        logger.info(f"Proof from {connection_id} verified for avatar {config.id}")
        return config

    def apply_verification(
        self,
        proof_exchange_id: str,
        verified: bool,
        claims: Any = None,
    ) -> VerificationOutcome:
        """
        Verification callback: settle the tracked presentation. A verified
        proof is accepted only when its claims name the tracked avatar config
        and, when the requester is known, carry that requester as owner.
        """
        presentation = self.presentations.find_by_proof_exchange_id(proof_exchange_id)
        if presentation is None:
            logger.warning(f"Verification callback for unknown proof exchange {proof_exchange_id}")
            return VerificationOutcome(verified=False, reason="unknown_presentation")

        if not presentation.is_pending:
            return VerificationOutcome(verified=False, presentation=presentation, reason="not_pending")

        values = claims_to_dict(claims)
        reason = None
        if not verified:
            reason = "not_verified"
        elif values.get("avatar_config_id") != presentation.avatar_config_id:
            reason = "wrong_avatar"
        elif presentation.connection_id and values.get("owner_connection_id") != presentation.connection_id:
            reason = "wrong_owner"

        if reason is not None:
            row, _ = self.presentations.mark_rejected(proof_exchange_id)
            return VerificationOutcome(verified=False, presentation=row or presentation, reason=reason)

        row, applied = self.presentations.mark_verified(proof_exchange_id)
        if not applied:
            expired = row is not None and row.status == PresentationStatus.EXPIRED.value
            return VerificationOutcome(verified=False, presentation=row, reason="expired" if expired else "not_pending")

        config = self.configs.find_by_id(presentation.avatar_config_id)
        if config is None:
            return VerificationOutcome(verified=False, presentation=row, reason="unknown_avatar")
        return VerificationOutcome(verified=True, presentation=row, avatar_config=config)
