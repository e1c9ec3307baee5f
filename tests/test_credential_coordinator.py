from datetime import timedelta

import pytest

from avatar_agent.credential_coordinator import (
    CREDENTIAL_ATTRIBUTES,
    CREDENTIAL_SCHEMA_NAME,
    CredentialCoordinator,
    claims_to_dict,
)
from avatar_agent.entities import PresentationStatus, utcnow
from avatar_agent.errors import (
    ExternalServiceError,
    NotConfigured,
    NotFound,
    OwnershipViolation,
    ValidationError,
)

from conftest import make_avatar

CID = "conn-1"


@pytest.fixture
def coordinator(authority, configs, presentations):
    return CredentialCoordinator(
        authority,
        configs,
        presentations,
        credential_definition_id="cred-def-1",
        issuer_did="did:web:agent.example",
        callback_url="https://agent.example/api/presentation/callback",
    )


@pytest.fixture
def unconfigured(authority, configs, presentations):
    return CredentialCoordinator(authority, configs, presentations)


def claims(config_id, owner=CID):
    return [
        {"name": "avatar_config_id", "value": config_id},
        {"name": "avatar_name", "value": "My Helper"},
        {"name": "owner_connection_id", "value": owner},
    ]


def proof_item(presentation, config_id, owner=CID, verified=True):
    return {"id": presentation.proof_exchange_id, "verified": verified, "claims": claims(config_id, owner)}


def test_claims_to_dict_accepts_both_shapes():
    assert claims_to_dict([{"name": "a", "value": 1}, {"name": "b"}]) == {"a": "1", "b": ""}
    assert claims_to_dict({"a": 1, "b": None}) == {"a": "1", "b": ""}
    assert claims_to_dict(None) == {}


def test_register_is_skipped_when_definition_present(coordinator, authority):
    assert coordinator.register_credential_type() == "cred-def-1"
    assert authority.registered == []


def test_register_once(unconfigured, authority):
    assert not unconfigured.is_configured()

    assert unconfigured.register_credential_type() == "cred-def-registered"
    assert unconfigured.register_credential_type() == "cred-def-registered"

    assert len(authority.registered) == 1
    name, version, attributes = authority.registered[0]
    assert name == CREDENTIAL_SCHEMA_NAME
    assert version == "1.0.0"
    assert attributes == CREDENTIAL_ATTRIBUTES
    assert unconfigured.get_credential_definition_id() == "cred-def-registered"


def test_issue_sends_eight_claims_and_marks_offered(coordinator, authority, configs):
    config = make_avatar(configs)

    updated = coordinator.issue_avatar_credential(config)

    connection_id, definition_id, sent_claims, ref = authority.issued[0]
    assert connection_id == CID
    assert definition_id == "cred-def-1"
    assert [c["name"] for c in sent_claims] == CREDENTIAL_ATTRIBUTES
    values = {c["name"]: c["value"] for c in sent_claims}
    assert values["avatar_config_id"] == config.id
    assert values["heygen_avatar_id"] == config.avatar_id
    assert values["issuer_did"] == "did:web:agent.example"

    assert updated.credential_definition_id == "cred-def-1"
    assert updated.credential_exchange_ref == ref
    assert updated.credential_issued_at is None


def test_issue_without_definition_raises(unconfigured, configs, authority):
    with pytest.raises(NotConfigured):
        unconfigured.issue_avatar_credential(make_avatar(configs))
    assert authority.issued == []


def test_issue_failure_leaves_config_untouched(coordinator, authority, configs):
    config = make_avatar(configs)
    authority.fail_issue = True

    with pytest.raises(ExternalServiceError):
        coordinator.issue_avatar_credential(config)

    assert configs.find_by_id(config.id).credential_definition_id is None


def test_confirm_issuance_by_thread_id(coordinator, authority, configs):
    first = coordinator.issue_avatar_credential(make_avatar(configs, name="First"))
    second = coordinator.issue_avatar_credential(make_avatar(configs, name="Second"))

    confirmed = coordinator.confirm_issuance(CID, second.credential_exchange_ref)

    assert confirmed.id == second.id
    assert confirmed.credential_issued_at is not None
    assert configs.find_by_id(first.id).credential_issued_at is None
    assert coordinator.confirm_issuance(CID, second.credential_exchange_ref).id == first.id
    assert coordinator.confirm_issuance(CID) is None


def test_is_protected(coordinator, unconfigured, configs):
    config = make_avatar(configs)
    assert not coordinator.is_protected(config)

    offered = coordinator.issue_avatar_credential(config)
    assert coordinator.is_protected(offered)
    assert not unconfigured.is_protected(offered)


def test_request_identity_proof_tracks_before_sending(coordinator, authority, configs, presentations):
    config = make_avatar(configs)

    presentation = coordinator.request_identity_proof(CID, config.id, description="show it")

    connection_id, items = authority.proof_requests[0]
    assert connection_id == CID
    assert len(items) == 1
    assert items[0]["id"] == presentation.proof_exchange_id
    assert items[0]["credentialDefinitionId"] == "cred-def-1"
    assert items[0]["description"] == "show it"
    tracked = presentations.find_by_proof_exchange_id(presentation.proof_exchange_id)
    assert tracked.is_pending
    assert tracked.avatar_config_id == config.id


def test_request_identity_proof_expires_earlier_request_for_same_avatar(coordinator, configs, presentations):
    config = make_avatar(configs)
    other = make_avatar(configs, CID, "Other")
    first = coordinator.request_identity_proof(CID, config.id)
    unrelated = coordinator.request_identity_proof(CID, other.id)

    second = coordinator.request_identity_proof(CID, config.id)

    assert presentations.find_by_proof_exchange_id(first.proof_exchange_id).status == PresentationStatus.EXPIRED.value
    assert presentations.find_by_proof_exchange_id(second.proof_exchange_id).is_pending
    assert presentations.find_by_proof_exchange_id(unrelated.proof_exchange_id).is_pending


def test_request_identity_proof_send_failure_removes_row(coordinator, authority, configs, presentations):
    config = make_avatar(configs)
    authority.fail_proof = True

    with pytest.raises(ExternalServiceError):
        coordinator.request_identity_proof(CID, config.id)

    assert presentations.find_pending_by_connection(CID) == []


def test_create_presentation_request(coordinator, authority, configs, presentations):
    config = make_avatar(configs)

    result = coordinator.create_presentation_request(config.id, CID)

    assert result == {"proofExchangeId": "pex-1", "shortUrl": "https://short.example/p"}
    definition_id, callback_url, ref, attributes = authority.presentation_requests[0]
    assert callback_url == "https://agent.example/api/presentation/callback"
    assert ref == config.id
    assert attributes == ["avatar_config_id", "owner_connection_id"]
    assert presentations.find_by_proof_exchange_id("pex-1").connection_id == CID


# -----------------------
# apply_verification (callback)
# -----------------------

def test_apply_verification_success(coordinator, configs, presentations):
    config = make_avatar(configs)
    presentations.create(proof_exchange_id="pex-9", avatar_config_id=config.id, connection_id=CID)

    outcome = coordinator.apply_verification("pex-9", True, claims(config.id))

    assert outcome.verified
    assert outcome.avatar_config.id == config.id
    assert outcome.presentation.status == PresentationStatus.VERIFIED.value


@pytest.mark.parametrize(
    "verified, claim_config, claim_owner, reason",
    [
        (False, None, CID, "not_verified"),
        (True, "another-config", CID, "wrong_avatar"),
        (True, None, "someone-else", "wrong_owner"),
    ],
)
def test_apply_verification_rejections(coordinator, configs, presentations, verified, claim_config, claim_owner, reason):
    config = make_avatar(configs)
    presentations.create(proof_exchange_id="pex-9", avatar_config_id=config.id, connection_id=CID)

    outcome = coordinator.apply_verification("pex-9", verified, claims(claim_config or config.id, claim_owner))

    assert not outcome.verified
    assert outcome.reason == reason
    assert presentations.find_by_proof_exchange_id("pex-9").status == PresentationStatus.REJECTED.value


def test_apply_verification_second_callback_is_not_applied(coordinator, configs, presentations):
    config = make_avatar(configs)
    presentations.create(proof_exchange_id="pex-9", avatar_config_id=config.id, connection_id=CID)
    coordinator.apply_verification("pex-9", True, claims(config.id))

    outcome = coordinator.apply_verification("pex-9", False, [])

    assert outcome.reason == "not_pending"
    assert presentations.find_by_proof_exchange_id("pex-9").status == PresentationStatus.VERIFIED.value


def test_apply_verification_expired(coordinator, configs, presentations):
    config = make_avatar(configs)
    presentations.create(
        proof_exchange_id="pex-9",
        avatar_config_id=config.id,
        connection_id=CID,
        expires_at=utcnow() - timedelta(seconds=1),
    )

    outcome = coordinator.apply_verification("pex-9", True, claims(config.id))

    assert not outcome.verified
    assert outcome.reason == "expired"


def test_apply_verification_unknown(coordinator):
    assert coordinator.apply_verification("nope", True, []).reason == "unknown_presentation"


# -----------------------
# verify_submitted_proof (in-band)
# -----------------------

def test_verify_submitted_proof_success(coordinator, configs, presentations):
    config = make_avatar(configs)
    presentation = coordinator.request_identity_proof(CID, config.id)

    unlocked = coordinator.verify_submitted_proof(CID, proof_item(presentation, config.id))

    assert unlocked.id == config.id
    assert presentations.find_by_proof_exchange_id(presentation.proof_exchange_id).status == "verified"


def test_verify_submitted_proof_matches_by_config_when_item_id_missing(coordinator, configs, presentations):
    config = make_avatar(configs)
    presentation = coordinator.request_identity_proof(CID, config.id)

    coordinator.verify_submitted_proof(CID, {"verified": True, "claims": claims(config.id)})

    assert presentations.find_by_proof_exchange_id(presentation.proof_exchange_id).status == "verified"


@pytest.mark.parametrize(
    "item_overrides, error",
    [
        ({"verified": False}, ValidationError),
        ({"claims": [{"name": "owner_connection_id", "value": CID}]}, ValidationError),
        ({"owner": "intruder"}, OwnershipViolation),
    ],
)
def test_verify_submitted_proof_rejections(coordinator, configs, presentations, item_overrides, error):
    config = make_avatar(configs)
    presentation = coordinator.request_identity_proof(CID, config.id)
    item = proof_item(
        presentation,
        config.id,
        owner=item_overrides.pop("owner", CID),
        verified=item_overrides.pop("verified", True),
    )
    item.update(item_overrides)

    with pytest.raises(error):
        coordinator.verify_submitted_proof(CID, item)

    assert presentations.find_by_proof_exchange_id(presentation.proof_exchange_id).status == "rejected"


def test_verify_submitted_proof_for_other_avatar(coordinator, configs, presentations):
    requested = make_avatar(configs, name="Requested")
    other = make_avatar(configs, name="Other")
    presentation = coordinator.request_identity_proof(CID, requested.id)

    with pytest.raises(ValidationError):
        coordinator.verify_submitted_proof(CID, proof_item(presentation, other.id))

    assert presentations.find_by_proof_exchange_id(presentation.proof_exchange_id).status == "rejected"


def test_verify_submitted_proof_stale_row(coordinator, configs, presentations):
    config = make_avatar(configs)
    presentation = coordinator.request_identity_proof(CID, config.id)
    presentations.mark_rejected(presentation.proof_exchange_id)

    with pytest.raises(ValidationError):
        coordinator.verify_submitted_proof(CID, proof_item(presentation, config.id))

    assert presentations.find_by_proof_exchange_id(presentation.proof_exchange_id).status == "rejected"


def test_verify_submitted_proof_unknown_config(coordinator):
    item = {"id": "untracked", "verified": True, "claims": claims("deleted-config")}

    with pytest.raises(NotFound):
        coordinator.verify_submitted_proof(CID, item)
