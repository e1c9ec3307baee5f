# avatar_agent/command_router.py
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from avatar_agent import messages as M
from avatar_agent.avatar_config_store import AvatarConfigStore
from avatar_agent.credential_coordinator import CredentialCoordinator
from avatar_agent.entities import AvatarConfig
from avatar_agent.errors import AvatarAgentError, ExternalServiceError, NotFound
from avatar_agent.utils import Utils
from avatar_agent.wizard_engine import WizardEngine, WizardResponse

logger = logging.getLogger("avatar_agent")

COMMANDS = ("create", "access", "cancel", "list", "help", "start", "avatar")
# recognised without the leading slash even while a wizard is running
WIZARD_SAFE_COMMANDS = ("cancel", "help")

PROOF_STALE_REASONS = ("unknown_presentation", "not_pending", "expired")


@dataclass(frozen=True)
class ParsedCommand:
    name: str
    argument: str
    slash: bool


def parse_command(text: str) -> Optional[ParsedCommand]:
    """
    "/access My Helper" -> ParsedCommand("access", "My Helper", True).
    Only "access" takes an argument; "help me" is not a command.
    """
    stripped = (text or "").strip()
    slash = stripped.startswith("/")
    body = stripped[1:] if slash else stripped
    parts = body.split(None, 1)
    if not parts:
        return None

    name = parts[0].lower()
    argument = parts[1].strip() if len(parts) > 1 else ""
    if name not in COMMANDS:
        return None
    if argument and name != "access" and not slash:
        return None
    return ParsedCommand(name=name, argument=argument, slash=slash)


class CommandRouter(Utils):
    """
    Entry point for every inbound webhook. Decides whether text is a command
    or wizard input, runs it, and delivers the reply through the gateway.
    """

    def __init__(
        self,
        wizard: WizardEngine,
        coordinator: CredentialCoordinator,
        configs: AvatarConfigStore,
        gateway,
        streaming,
        public_url: str,
        default_session_available: bool = False,
    ) -> None:
        self.wizard = wizard
        self.coordinator = coordinator
        self.configs = configs
        self.gateway = gateway
        self.streaming = streaming
        self.public_url = public_url.rstrip("/")
        self.default_session_available = default_session_available

    # -----------------------
    # Webhooks
    # -----------------------

    def handle_message_received(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        message = payload.get("message") or {}
        connection_id = message.get("connectionId")
        message_type = message.get("type")

        try:
            preview = json.dumps(payload)
        except (TypeError, ValueError):
            preview = str(payload)
        logger.debug(f"message-received {preview}")

        response_data = {"status": "success", "type": message_type}
        if not connection_id:
            response_data["status"] = "ignored"
            return response_data

        try:
            if message_type == "text":
                self._handle_text(connection_id, message.get("content") or "")

            elif message_type == "identity-proof-submit":
                self._handle_proof_submit(connection_id, message)

            elif message_type == "credential-reception":
                self._handle_credential_reception(connection_id, message)

            elif message_type == "profile":
                logger.info(f"Profile received from {connection_id}")

            else:
                logger.info(f"Ignoring message type '{message_type}' from {connection_id}")
                response_data["status"] = "ignored"

        except AvatarAgentError as e:
            logger.info(f"{message_type} from {connection_id} ended with {e.__class__.__name__}: {e}")
            self._reply(connection_id, e.user_message())

        return response_data

    def handle_connection_established(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        connection_id = payload.get("connectionId")
        if not connection_id:
            return {"status": "ignored"}
        logger.info(f"New connection: {connection_id}")
        self._reply(connection_id, self.unsafe_string_format(M.WELCOME, HELP=M.HELP))
        if self.default_session_available:
            self._send_link(
                connection_id,
                f"{self.public_url}/avatar",
                self.unsafe_string_format(M.SESSION_LINK_TITLE, NAME=M.DEFAULT_AVATAR_NAME),
            )
        return {"status": "success"}

    def handle_presentation_callback(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        proof_exchange_id = payload.get("proofExchangeId") or payload.get("ref")
        if not proof_exchange_id:
            return {"status": "ignored"}

        outcome = self.coordinator.apply_verification(
            str(proof_exchange_id),
            bool(payload.get("verified")),
            payload.get("claims"),
        )
        connection_id = outcome.presentation.connection_id if outcome.presentation else None

        if outcome.verified:
            logger.info(f"Presentation {proof_exchange_id} verified")
            if connection_id:
                self._reply(connection_id, self.unsafe_string_format(M.PROOF_ACCEPTED, NAME=outcome.avatar_config.name))
                self._start_session(connection_id, outcome.avatar_config)
            return {"status": "verified", "avatarConfigId": outcome.avatar_config.id}

        logger.info(f"Presentation {proof_exchange_id} not accepted: {outcome.reason}")
        if connection_id and outcome.reason not in PROOF_STALE_REASONS:
            self._reply(connection_id, self._rejection_message(outcome.reason))
        return {"status": "rejected", "reason": outcome.reason}

    # -----------------------
    # Text / commands
    # -----------------------

    def _handle_text(self, connection_id: str, content: str) -> None:
        command = parse_command(content)
        in_wizard = self.wizard.has_active_session(connection_id)

        if command and in_wizard and not command.slash and command.name not in WIZARD_SAFE_COMMANDS:
            # "list" typed as an avatar name is wizard input
            command = None

        if command is None:
            if in_wizard:
                self._deliver_wizard(connection_id, self.wizard.process_input(connection_id, content))
            else:
                self._reply(connection_id, M.GREETING)
            return

        logger.info(f"Command '{command.name}' from {connection_id}")

        if command.name == "create":
            self._deliver_wizard(connection_id, self.wizard.start_wizard(connection_id))

        elif command.name == "cancel":
            self._deliver_wizard(connection_id, self.wizard.cancel_wizard(connection_id))

        elif command.name == "list":
            self._list(connection_id)

        elif command.name == "help":
            self._reply(connection_id, M.HELP)

        elif command.name == "access":
            self._access(connection_id, command.argument)

        elif command.name in ("start", "avatar"):
            self._start_default(connection_id)

    def _deliver_wizard(self, connection_id: str, response: WizardResponse) -> None:
        self._reply(connection_id, response.message)
        if response.is_complete and response.avatar_config is not None:
            self._after_creation(connection_id, response.avatar_config)

    def _after_creation(self, connection_id: str, config: AvatarConfig) -> None:
        if not self.coordinator.is_configured():
            self._reply(connection_id, self.unsafe_string_format(M.CREDENTIAL_NOT_AVAILABLE, NAME=config.name))
            return
        try:
            self.coordinator.issue_avatar_credential(config)
        except ExternalServiceError as e:
            logger.error(f"Credential issuance failed for avatar {config.id}: {e}")
            self._reply(
                connection_id,
                self.unsafe_string_format(M.CREDENTIAL_ISSUE_FAILED, NAME=config.name, ERROR=e.detail),
            )
            return
        self._reply(connection_id, self.unsafe_string_format(M.CREDENTIAL_OFFERED, NAME=config.name))

    def _list(self, connection_id: str) -> None:
        configs = self.configs.find_by_owner(connection_id)
        if not configs:
            self._reply(connection_id, M.LIST_EMPTY)
            return
        lines = [M.LIST_HEADER]
        for i, config in enumerate(configs, start=1):
            lines.append(self.unsafe_string_format(
                M.LIST_ITEM,
                INDEX=i,
                NAME=config.name,
                LANGUAGE=config.language,
                CREDENTIAL=config.credential_state,
            ))
        self._reply(connection_id, "\n".join(lines))

    def _access(self, connection_id: str, name: str) -> None:
        if not name:
            self._reply(connection_id, M.ACCESS_USAGE)
            return

        config = self.configs.find_by_owner_and_name(connection_id, name)
        if config is None:
            raise NotFound(self.unsafe_string_format(M.AVATAR_NOT_FOUND, NAME=name))

        if self.coordinator.is_protected(config):
            self.coordinator.request_identity_proof(
                connection_id,
                config.id,
                description=self.unsafe_string_format(M.PROOF_DESCRIPTION, NAME=config.name),
            )
            self._reply(connection_id, self.unsafe_string_format(M.PROOF_REQUESTED, NAME=config.name))
            return

        self._start_session(connection_id, config)

    def _start_default(self, connection_id: str) -> None:
        if not self.default_session_available:
            self._reply(connection_id, M.DEFAULT_SESSION_NOT_CONFIGURED)
            return
        self._reply(connection_id, self.unsafe_string_format(M.SESSION_READY, NAME=M.DEFAULT_AVATAR_NAME))
        if not self._send_link(
            connection_id,
            f"{self.public_url}/avatar",
            self.unsafe_string_format(M.SESSION_LINK_TITLE, NAME=M.DEFAULT_AVATAR_NAME),
        ):
            self._reply(connection_id, self.unsafe_string_format(M.SESSION_LINK_FAILED, ACCESS="/start"))

    def _start_session(self, connection_id: str, config: AvatarConfig) -> bool:
        try:
            token = self.streaming.create_session(
                config.avatar_id,
                config.voice_id,
                config.language,
                config.system_prompt,
            )
        except AvatarAgentError as e:
            logger.error(f"Session start failed for avatar {config.id}: {e}")
            detail = e.detail if isinstance(e, ExternalServiceError) else e.user_message()
            self._reply(connection_id, self.unsafe_string_format(M.SESSION_FAILED, ERROR=detail))
            return False

        self._reply(connection_id, self.unsafe_string_format(M.SESSION_READY, NAME=config.name))
        if not self._send_link(
            connection_id,
            f"{self.public_url}/avatar?session={token.session_token}",
            self.unsafe_string_format(M.SESSION_LINK_TITLE, NAME=config.name),
        ):
            self._reply(
                connection_id,
                self.unsafe_string_format(M.SESSION_LINK_FAILED, ACCESS=f"/access {config.name}"),
            )
            return False
        logger.info(f"Session {token.session_id} started for avatar {config.id}")
        return True

    # -----------------------
    # Credentials
    # -----------------------

    def _handle_proof_submit(self, connection_id: str, message: Dict[str, Any]) -> None:
        items = message.get("submittedProofItems") or []
        if not items:
            self._reply(connection_id, M.PROOF_EMPTY)
            return
        if len(items) > 1:
            self._reply(connection_id, M.PROOF_TOO_MANY)
            return

        config = self.coordinator.verify_submitted_proof(connection_id, items[0], message.get("threadId"))
        self._reply(connection_id, self.unsafe_string_format(M.PROOF_ACCEPTED, NAME=config.name))
        self._start_session(connection_id, config)

    def _handle_credential_reception(self, connection_id: str, message: Dict[str, Any]) -> None:
        state = message.get("state")
        if state != "done":
            logger.info(f"Credential reception from {connection_id} in state '{state}'")
            return
        config = self.coordinator.confirm_issuance(connection_id, message.get("threadId"))
        if config is not None:
            self._reply(connection_id, self.unsafe_string_format(M.CREDENTIAL_RECEIVED, NAME=config.name))

    def _rejection_message(self, reason: Optional[str]) -> str:
        return {
            "not_verified": M.PROOF_NOT_VERIFIED,
            "wrong_avatar": M.PROOF_WRONG_AVATAR,
            "wrong_owner": M.PROOF_WRONG_OWNER,
            "unknown_avatar": M.AVATAR_CONFIG_MISSING,
        }.get(reason or "", M.PROOF_NOT_VERIFIED)

    # -----------------------
    # Delivery
    # -----------------------

    def _reply(self, connection_id: str, text: str) -> None:
        try:
            self.gateway.send_text(connection_id, text)
        except ExternalServiceError as e:
            # nowhere left to report it
            logger.error(f"Failed to deliver reply to {connection_id}: {e}")

    def _send_link(self, connection_id: str, uri: str, title: str) -> bool:
        try:
            self.gateway.send_link(connection_id, uri, title, M.SESSION_LINK_DESCRIPTION)
        except ExternalServiceError as e:
            logger.error(f"Failed to deliver link to {connection_id}: {e}")
            return False
        return True
