# avatar_agent/wizard_engine.py
"""
Avatar creation wizard.

A per-connection step machine driven purely by text input:

    avatar_selection -> [avatar_manual_entry] -> voice_selection
      -> [voice_manual_entry] -> language_selection -> name_input
      -> prompt_input -> confirmation -> committed | cancelled

Progress lives in the WizardSessionStore, so a restart (or another worker)
picks up where the user left off. Invalid input never moves the step: the
user gets a re-prompt and the row stays as it was.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError

from avatar_agent import messages as M
from avatar_agent.avatar_config_store import AvatarConfigStore
from avatar_agent.db_connection import DbConnection
from avatar_agent.entities import AvatarConfig, WizardSession, WizardStep
from avatar_agent.errors import CatalogUnavailable, ExternalServiceError
from avatar_agent.utils import Utils
from avatar_agent.wizard_session_store import WizardSessionStore

logger = logging.getLogger("avatar_agent")

MANUAL_ENTRY = "MANUAL_ENTRY"
MAX_LISTED = 20
MIN_MANUAL_ID_LENGTH = 8
MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 100
PROMPT_PREVIEW_LENGTH = 100

SUPPORTED_LANGUAGES = [
    ("en", "English"),
    ("es", "Spanish"),
    ("fr", "French"),
    ("de", "German"),
    ("zh", "Chinese"),
    ("ja", "Japanese"),
    ("ko", "Korean"),
    ("pt", "Portuguese"),
    ("it", "Italian"),
]
LANGUAGE_NAMES = dict(SUPPORTED_LANGUAGES)

CANCEL_WORDS = ("cancel", "/cancel")
CONFIRM_WORDS = ("confirm", "yes")
DECLINE_WORDS = ("cancel", "no")


@dataclass
class WizardResponse:
    message: str
    is_complete: bool = False
    avatar_config: Optional[AvatarConfig] = None
    session_ended: bool = False


class WizardEngine(Utils):
    def __init__(
        self,
        db: DbConnection,
        sessions: WizardSessionStore,
        configs: AvatarConfigStore,
        catalog,
    ) -> None:
        self.db = db
        self.sessions = sessions
        self.configs = configs
        self.catalog = catalog

        self._handlers: Dict[WizardStep, Callable[[WizardSession, str], WizardResponse]] = {
            WizardStep.AVATAR_SELECTION: self._handle_avatar_selection,
            WizardStep.AVATAR_MANUAL_ENTRY: self._handle_avatar_manual_entry,
            WizardStep.VOICE_SELECTION: self._handle_voice_selection,
            WizardStep.VOICE_MANUAL_ENTRY: self._handle_voice_manual_entry,
            WizardStep.LANGUAGE_SELECTION: self._handle_language_selection,
            WizardStep.NAME_INPUT: self._handle_name_input,
            WizardStep.PROMPT_INPUT: self._handle_prompt_input,
            WizardStep.CONFIRMATION: self._handle_confirmation,
        }

    # -----------------------
    # Session lifecycle
    # -----------------------

    def start_wizard(self, connection_id: str) -> WizardResponse:
        self.sessions.create(connection_id, WizardStep.AVATAR_SELECTION)

        try:
            avatars = self._fetch_avatars()
        except CatalogUnavailable as e:
            logger.warning(f"start_wizard({connection_id}): {e}")
            self.sessions.delete(connection_id)
            return WizardResponse(
                message=self.unsafe_string_format(M.WIZARD_CATALOG_UNAVAILABLE, ERROR=e.detail),
                session_ended=True,
            )

        options = [a.id for a in avatars[:MAX_LISTED]] + [MANUAL_ENTRY]
        self.sessions.update(connection_id, rendered_options=options)

        logger.info(f"Wizard started for {connection_id} ({len(options) - 1} catalog avatars)")
        return WizardResponse(
            message=self.unsafe_string_format(M.WIZARD_WELCOME, AVATAR_LIST=self._format_avatar_list(options, avatars)),
        )

    def process_input(self, connection_id: str, text: str) -> WizardResponse:
        session = self.sessions.find(connection_id)
        if session is None:
            return WizardResponse(message=M.WIZARD_NO_SESSION, session_ended=True)

        if (text or "").strip().lower() in CANCEL_WORDS:
            self.sessions.delete(connection_id)
            return WizardResponse(message=M.WIZARD_CANCELLED, session_ended=True)

        try:
            step = session.step
        except ValueError:
            logger.error(f"Unknown wizard step '{session.current_step}' for {connection_id}")
            return WizardResponse(message=M.WIZARD_UNKNOWN_STEP, session_ended=True)

        return self._handlers[step](session, text or "")

    def cancel_wizard(self, connection_id: str) -> WizardResponse:
        if self.sessions.delete(connection_id):
            return WizardResponse(message=M.WIZARD_CANCELLED, session_ended=True)
        return WizardResponse(message=M.WIZARD_NOTHING_TO_CANCEL, session_ended=True)

    def has_active_session(self, connection_id: str) -> bool:
        return self.sessions.find(connection_id) is not None

    # -----------------------
    # Step handlers
    # -----------------------

    def _handle_avatar_selection(self, session: WizardSession, text: str) -> WizardResponse:
        options = list(session.rendered_options or [])
        if not options:
            options = [a.id for a in self._fetch_avatars_or_empty()[:MAX_LISTED]] + [MANUAL_ENTRY]
            self.sessions.update(session.connection_id, rendered_options=options)

        idx = self.parse_choice(text, len(options))
        if idx is None:
            return self._invalid_choice(options, self._format_avatar_list(options, self._fetch_avatars_or_empty()))

        chosen = options[idx]
        if chosen == MANUAL_ENTRY:
            self.sessions.update(session.connection_id, step=WizardStep.AVATAR_MANUAL_ENTRY, rendered_options=[])
            return WizardResponse(message=M.WIZARD_AVATAR_MANUAL)

        avatar = self._resolve_avatar(chosen)
        name = avatar.name if avatar else chosen
        return self._advance_to_voice(session, chosen, f"Avatar: {name} selected.")

    def _handle_avatar_manual_entry(self, session: WizardSession, text: str) -> WizardResponse:
        avatar_id = text.strip()
        if len(avatar_id) < MIN_MANUAL_ID_LENGTH:
            return WizardResponse(message=M.WIZARD_AVATAR_MANUAL_INVALID)
        return self._advance_to_voice(session, avatar_id, f"Avatar ID: {avatar_id} set.")

    def _advance_to_voice(self, session: WizardSession, avatar_id: str, selected: str) -> WizardResponse:
        try:
            voices = self._fetch_voices()
        except ExternalServiceError as e:
            # avatar choice is not recorded; the user can simply answer again
            logger.warning(f"voice catalog for {session.connection_id}: {e}")
            return WizardResponse(message=self.unsafe_string_format(M.GENERIC_ERROR, ERROR=e.user_message()))

        options = [v.id for v in voices[:MAX_LISTED]] + [MANUAL_ENTRY]
        self.sessions.update(
            session.connection_id,
            step=WizardStep.VOICE_SELECTION,
            selected_avatar_id=avatar_id,
            rendered_options=options,
        )
        return WizardResponse(
            message=self.unsafe_string_format(
                M.WIZARD_VOICE_STEP,
                SELECTED=selected,
                VOICE_LIST=self._format_voice_list(options, voices),
            )
        )

    def _handle_voice_selection(self, session: WizardSession, text: str) -> WizardResponse:
        options = list(session.rendered_options or [])
        if not options:
            options = [v.id for v in self._fetch_voices_or_empty()[:MAX_LISTED]] + [MANUAL_ENTRY]
            self.sessions.update(session.connection_id, rendered_options=options)

        idx = self.parse_choice(text, len(options))
        if idx is None:
            return self._invalid_choice(options, self._format_voice_list(options, self._fetch_voices_or_empty()))

        chosen = options[idx]
        if chosen == MANUAL_ENTRY:
            self.sessions.update(session.connection_id, step=WizardStep.VOICE_MANUAL_ENTRY, rendered_options=[])
            return WizardResponse(message=M.WIZARD_VOICE_MANUAL)

        voice = self._resolve_voice(chosen)
        selected = f"Voice: {voice.name} ({voice.language}) selected." if voice else f"Voice: {chosen} selected."
        return self._advance_to_language(session, chosen, selected)

    def _handle_voice_manual_entry(self, session: WizardSession, text: str) -> WizardResponse:
        voice_id = text.strip()
        if len(voice_id) < MIN_MANUAL_ID_LENGTH:
            return WizardResponse(message=M.WIZARD_VOICE_MANUAL_INVALID)
        return self._advance_to_language(session, voice_id, f"Voice ID: {voice_id} set.")

    def _advance_to_language(self, session: WizardSession, voice_id: str, selected: str) -> WizardResponse:
        options = [code for code, _ in SUPPORTED_LANGUAGES]
        self.sessions.update(
            session.connection_id,
            step=WizardStep.LANGUAGE_SELECTION,
            selected_voice_id=voice_id,
            rendered_options=options,
        )
        return WizardResponse(
            message=self.unsafe_string_format(
                M.WIZARD_LANGUAGE_STEP,
                SELECTED=selected,
                LANGUAGE_LIST=self._format_language_list(options),
            )
        )

    def _handle_language_selection(self, session: WizardSession, text: str) -> WizardResponse:
        options = list(session.rendered_options or []) or [code for code, _ in SUPPORTED_LANGUAGES]

        idx = self.parse_choice(text, len(options))
        if idx is None:
            return self._invalid_choice(options, self._format_language_list(options))

        code = options[idx]
        self.sessions.update(
            session.connection_id,
            step=WizardStep.NAME_INPUT,
            selected_language=code,
            rendered_options=[],
        )
        return WizardResponse(
            message=self.unsafe_string_format(M.WIZARD_NAME_STEP, LANGUAGE=LANGUAGE_NAMES.get(code, code))
        )

    def _handle_name_input(self, session: WizardSession, text: str) -> WizardResponse:
        name = text.strip()

        if len(name) < MIN_NAME_LENGTH:
            return WizardResponse(message=M.WIZARD_NAME_TOO_SHORT)
        if len(name) > MAX_NAME_LENGTH:
            return WizardResponse(message=M.WIZARD_NAME_TOO_LONG)

        if self.configs.find_by_owner_and_name(session.connection_id, name) is not None:
            return WizardResponse(message=self.unsafe_string_format(M.WIZARD_NAME_TAKEN, NAME=name))

        self.sessions.update(session.connection_id, step=WizardStep.PROMPT_INPUT, custom_name=name)
        return WizardResponse(message=self.unsafe_string_format(M.WIZARD_PROMPT_STEP, NAME=name))

    def _handle_prompt_input(self, session: WizardSession, text: str) -> WizardResponse:
        prompt = text.strip()
        is_skip = prompt.lower() == "skip"

        updated = self.sessions.update(
            session.connection_id,
            step=WizardStep.CONFIRMATION,
            system_prompt=None if is_skip else prompt,
        )
        if updated is None:
            return WizardResponse(message=M.WIZARD_NO_SESSION, session_ended=True)

        return WizardResponse(message=self._summary(updated))

    def _handle_confirmation(self, session: WizardSession, text: str) -> WizardResponse:
        answer = text.strip().lower()

        if answer not in CONFIRM_WORDS:
            if answer in DECLINE_WORDS:
                self.sessions.delete(session.connection_id)
                return WizardResponse(message=M.WIZARD_CANCELLED, session_ended=True)
            return WizardResponse(message=M.WIZARD_CONFIRM_REPROMPT)

        if not (
            session.selected_avatar_id
            and session.selected_voice_id
            and session.selected_language
            and session.custom_name
        ):
            logger.error(f"Incomplete wizard session at confirmation for {session.connection_id}")
            self.sessions.delete(session.connection_id)
            return WizardResponse(message=M.WIZARD_INCOMPLETE, session_ended=True)

        try:
            with self.db.transaction() as tx:
                config = self.configs.create(
                    connection_id=session.connection_id,
                    name=session.custom_name,
                    avatar_id=session.selected_avatar_id,
                    voice_id=session.selected_voice_id,
                    language=session.selected_language,
                    system_prompt=session.system_prompt,
                    session=tx,
                )
                self.sessions.delete(session.connection_id, session=tx)
        except IntegrityError:
            # a concurrent commit took the name between name_input and now
            logger.info(f"Duplicate avatar name '{session.custom_name}' at commit for {session.connection_id}")
            self.sessions.update(session.connection_id, step=WizardStep.NAME_INPUT, custom_name=None)
            return WizardResponse(message=self.unsafe_string_format(M.WIZARD_NAME_TAKEN, NAME=session.custom_name))

        logger.info(f"Avatar config {config.id} '{config.name}' created for {session.connection_id}")
        return WizardResponse(
            message=self.unsafe_string_format(M.WIZARD_CREATING, NAME=config.name),
            is_complete=True,
            avatar_config=config,
            session_ended=True,
        )

    # -----------------------
    # Catalog helpers
    # -----------------------

    def _fetch_avatars(self) -> list:
        try:
            return list(self.catalog.list_avatars())
        except CatalogUnavailable:
            raise
        except ExternalServiceError as e:
            raise CatalogUnavailable(e.detail) from e
        except Exception as e:
            raise CatalogUnavailable(str(e)) from e

    def _fetch_voices(self) -> list:
        try:
            return list(self.catalog.list_voices())
        except CatalogUnavailable:
            raise
        except ExternalServiceError as e:
            raise CatalogUnavailable(e.detail) from e
        except Exception as e:
            raise CatalogUnavailable(str(e)) from e

    def _fetch_avatars_or_empty(self) -> list:
        try:
            return self._fetch_avatars()
        except CatalogUnavailable as e:
            logger.warning(f"avatar catalog unavailable while re-rendering: {e}")
            return []

    def _fetch_voices_or_empty(self) -> list:
        try:
            return self._fetch_voices()
        except CatalogUnavailable as e:
            logger.warning(f"voice catalog unavailable while re-rendering: {e}")
            return []

    def _resolve_avatar(self, avatar_id: str):
        try:
            return self.catalog.resolve_avatar_by_id(avatar_id)
        except Exception as e:
            logger.warning(f"resolve_avatar_by_id({avatar_id}): {e}")
            return None

    def _resolve_voice(self, voice_id: str):
        try:
            return self.catalog.resolve_voice_by_id(voice_id)
        except Exception as e:
            logger.warning(f"resolve_voice_by_id({voice_id}): {e}")
            return None

    # -----------------------
    # Rendering
    # -----------------------

    def _invalid_choice(self, options: List[str], rendered: str) -> WizardResponse:
        return WizardResponse(
            message=self.unsafe_string_format(M.WIZARD_INVALID_NUMBER, MAX=len(options), LIST=rendered)
        )

    def _format_avatar_list(self, options: List[str], avatars: list) -> str:
        by_id = {a.id: a for a in avatars}
        lines = []
        for i, option in enumerate(options, start=1):
            if option == MANUAL_ENTRY:
                lines.append(f"{i}. Enter avatar ID manually")
                continue
            avatar = by_id.get(option)
            lines.append(f"{i}. {avatar.name} ({avatar.gender})" if avatar else f"{i}. {option}")
        return "\n".join(lines)

    def _format_voice_list(self, options: List[str], voices: list) -> str:
        by_id = {v.id: v for v in voices}
        lines = []
        for i, option in enumerate(options, start=1):
            if option == MANUAL_ENTRY:
                lines.append(f"{i}. Enter voice ID manually")
                continue
            voice = by_id.get(option)
            lines.append(f"{i}. {voice.name} ({voice.language}, {voice.gender})" if voice else f"{i}. {option}")
        return "\n".join(lines)

    def _format_language_list(self, options: List[str]) -> str:
        return "\n".join(f"{i}. {LANGUAGE_NAMES.get(code, code)}" for i, code in enumerate(options, start=1))

    def _summary(self, session: WizardSession) -> str:
        avatar = self._resolve_avatar(session.selected_avatar_id)
        voice = self._resolve_voice(session.selected_voice_id)

        prompt = session.system_prompt
        if prompt:
            preview = prompt[:PROMPT_PREVIEW_LENGTH] + ("..." if len(prompt) > PROMPT_PREVIEW_LENGTH else "")
            personality = f'"{preview}"'
        else:
            personality = "(Default)"

        return self.unsafe_string_format(
            M.WIZARD_SUMMARY,
            NAME=session.custom_name,
            AVATAR=avatar.name if avatar else session.selected_avatar_id,
            VOICE=voice.name if voice else session.selected_voice_id,
            LANGUAGE=LANGUAGE_NAMES.get(session.selected_language, session.selected_language),
            PERSONALITY=personality,
        )
