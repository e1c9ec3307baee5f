import itertools

import pytest

from avatar_agent.app_config import AppConfig
from avatar_agent.avatar_config_store import AvatarConfigStore
from avatar_agent.catalog import CatalogAvatar, CatalogVoice
from avatar_agent.container import AppContainer
from avatar_agent.db_connection import DbConnection
from avatar_agent.errors import CatalogUnavailable, ExternalServiceError
from avatar_agent.liveavatar import SessionToken, StreamCredentials
from avatar_agent.presentation_tracker import PresentationTracker
from avatar_agent.wizard_session_store import WizardSessionStore

AVATAR_A = "avatar-aaaa-1111"
AVATAR_B = "avatar-bbbb-2222"
VOICE_A = "voice-aaaa-1111"
VOICE_B = "voice-bbbb-2222"


class FakeCatalog:
    def __init__(self):
        self.avatars = [
            CatalogAvatar(id=AVATAR_A, name="Anna", gender="female"),
            CatalogAvatar(id=AVATAR_B, name="Bruno", gender="male"),
        ]
        self.voices = [
            CatalogVoice(id=VOICE_A, name="Warm", language="en", gender="female"),
            CatalogVoice(id=VOICE_B, name="Deep", language="en", gender="male"),
        ]
        self.fail_avatars = False
        self.fail_voices = False

    def list_avatars(self):
        if self.fail_avatars:
            raise CatalogUnavailable("catalog is down")
        return list(self.avatars)

    def list_voices(self):
        if self.fail_voices:
            raise ExternalServiceError("catalog", "voices are down")
        return list(self.voices)

    def resolve_avatar_by_id(self, avatar_id):
        return next((a for a in self.avatars if a.id == avatar_id), None)

    def resolve_voice_by_id(self, voice_id):
        return next((v for v in self.voices if v.id == voice_id), None)


class FakeGateway:
    def __init__(self):
        self.texts = []
        self.links = []
        self.invitation = {"url": "https://hologram.example/invite?oob=abc"}
        self.fail = False
        self.fail_links = False

    def send_text(self, connection_id, content):
        if self.fail:
            raise ExternalServiceError("VS Agent", "gateway is down")
        self.texts.append((connection_id, content))

    def send_link(self, connection_id, uri, title, description=""):
        if self.fail or self.fail_links:
            raise ExternalServiceError("VS Agent", "gateway is down")
        self.links.append((connection_id, uri, title, description))

    def get_invitation_url(self):
        return self.invitation.get("url")

    def get_invitation(self):
        return dict(self.invitation)

    def texts_for(self, connection_id):
        return [content for cid, content in self.texts if cid == connection_id]


class FakeAuthority:
    def __init__(self):
        self.registered = []
        self.issued = []
        self.proof_requests = []
        self.presentation_requests = []
        self.fail_issue = False
        self.fail_proof = False
        self._ids = itertools.count(1)

    def register_credential_type(self, name, version, attributes):
        self.registered.append((name, version, list(attributes)))
        return "cred-def-registered"

    def issue_credential(self, connection_id, definition_id, claims):
        if self.fail_issue:
            raise ExternalServiceError("credential authority", "issuance refused")
        ref = f"issue-{next(self._ids)}"
        self.issued.append((connection_id, definition_id, claims, ref))
        return ref

    def request_proof(self, connection_id, proof_items):
        if self.fail_proof:
            raise ExternalServiceError("credential authority", "proof request refused")
        self.proof_requests.append((connection_id, proof_items))
        return f"msg-{next(self._ids)}"

    def create_presentation_request(self, definition_id, callback_url, ref, attributes):
        self.presentation_requests.append((definition_id, callback_url, ref, list(attributes)))
        return {"proofExchangeId": f"pex-{next(self._ids)}", "shortUrl": "https://short.example/p"}


class FakeLiveAvatar:
    def __init__(self, configured=True):
        self.configured = configured
        self.sessions = []
        self.started = []
        self.fail_create = False
        self.fail_start_detail = None

    def is_configured(self):
        return self.configured

    def create_session(self, avatar_id, voice_id, language, prompt=None):
        if self.fail_create:
            raise ExternalServiceError("LiveAvatar", "Failed to create session token: quota")
        self.sessions.append((avatar_id, voice_id, language, prompt))
        n = len(self.sessions)
        return SessionToken(session_id=f"sess-{n}", session_token=f"tok-{n}")

    def create_default_session(self):
        return self.create_session("default-avatar", "default-voice", "en")

    def start_session(self, session_token):
        if self.fail_start_detail:
            raise ExternalServiceError("LiveAvatar", self.fail_start_detail)
        self.started.append(session_token)
        return StreamCredentials(livekit_url="wss://lk.example", livekit_token=f"lk-{session_token}")


def make_config(**overrides):
    values = dict(
        PUBLIC_URL="https://agent.example",
        VS_AGENT_URL="http://vs-agent.local",
        DATABASE_URL="sqlite://",
        LIVEAVATAR_API_KEY="key",
        LIVEAVATAR_AVATAR_ID="default-avatar",
        LIVEAVATAR_VOICE_ID="default-voice",
        LIVEAVATAR_CONTEXT_ID="ctx",
        AVATAR_CREDENTIAL_DEFINITION_ID="cred-def-1",
        ISSUER_DID="did:web:agent.example",
    )
    values.update(overrides)
    return AppConfig(**values)


@pytest.fixture
def app_config():
    return make_config()


@pytest.fixture
def db(app_config):
    conn = DbConnection(app_config, database_url="sqlite://")
    conn.create_all()
    yield conn
    conn.dispose()


@pytest.fixture
def session_factory(db):
    return db.build_db_session_factory()


@pytest.fixture
def sessions(session_factory):
    return WizardSessionStore(session_factory)


@pytest.fixture
def configs(session_factory):
    return AvatarConfigStore(session_factory)


@pytest.fixture
def presentations(session_factory):
    return PresentationTracker(session_factory)


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def authority():
    return FakeAuthority()


@pytest.fixture
def streaming():
    return FakeLiveAvatar()


@pytest.fixture
def container(app_config, db, gateway, authority, catalog, streaming):
    return AppContainer(
        app_config,
        db,
        gateway=gateway,
        authority=authority,
        catalog=catalog,
        streaming=streaming,
    )


def make_avatar(configs, connection_id="conn-1", name="My Helper", **kwargs):
    values = dict(avatar_id=AVATAR_A, voice_id=VOICE_A, language="en", system_prompt=None)
    values.update(kwargs)
    return configs.create(connection_id=connection_id, name=name, **values)


def text_event(connection_id, content):
    return {"message": {"connectionId": connection_id, "type": "text", "content": content}}
