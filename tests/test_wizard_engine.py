import pytest

from avatar_agent import messages as M
from avatar_agent.entities import WizardStep
from avatar_agent.wizard_engine import MANUAL_ENTRY, WizardEngine

from conftest import AVATAR_A, AVATAR_B, VOICE_A, VOICE_B, make_avatar

CID = "conn-1"


@pytest.fixture
def engine(db, sessions, configs, catalog):
    return WizardEngine(db, sessions, configs, catalog)


def run(engine, inputs, connection_id=CID):
    engine.start_wizard(connection_id)
    response = None
    for text in inputs:
        response = engine.process_input(connection_id, text)
    return response


def test_start_wizard_lists_catalog_plus_manual_entry(engine, sessions):
    response = engine.start_wizard(CID)

    assert "1. Anna (female)" in response.message
    assert "2. Bruno (male)" in response.message
    assert "3. Enter avatar ID manually" in response.message
    assert not response.session_ended

    row = sessions.find(CID)
    assert row.step == WizardStep.AVATAR_SELECTION
    assert row.rendered_options == [AVATAR_A, AVATAR_B, MANUAL_ENTRY]
    assert row.expires_at > row.started_at


def test_start_wizard_catalog_failure_ends_session(engine, sessions, catalog):
    catalog.fail_avatars = True

    response = engine.start_wizard(CID)

    assert response.session_ended
    assert "Failed to load avatars" in response.message
    assert "catalog is down" in response.message
    assert sessions.find(CID) is None


def test_full_run_creates_one_config_and_deletes_session(engine, sessions, configs):
    response = run(engine, ["1", "1", "1", "My Helper", "skip", "confirm"])

    assert response.is_complete
    assert response.session_ended
    config = response.avatar_config
    assert config.name == "My Helper"
    assert config.avatar_id == AVATAR_A
    assert config.voice_id == VOICE_A
    assert config.language == "en"
    assert config.system_prompt is None
    assert config.credential_definition_id is None

    assert sessions.find(CID) is None
    assert [c.id for c in configs.find_by_owner(CID)] == [config.id]


def test_custom_prompt_and_other_choices_are_recorded(engine):
    response = run(engine, ["2", "2", "3", "Guide", "  You are a travel guide.  ", "yes"])

    config = response.avatar_config
    assert config.avatar_id == AVATAR_B
    assert config.voice_id == VOICE_B
    assert config.language == "fr"
    assert config.system_prompt == "You are a travel guide."


@pytest.mark.parametrize("bad_input", ["0", "4", "abc", "1.5", "-1", ""])
def test_out_of_range_avatar_choice_keeps_step_and_rerenders(engine, sessions, bad_input):
    engine.start_wizard(CID)

    response = engine.process_input(CID, bad_input)

    assert "between 1 and 3" in response.message
    assert "1. Anna (female)" in response.message
    row = sessions.find(CID)
    assert row.step == WizardStep.AVATAR_SELECTION
    assert row.selected_avatar_id is None


def test_out_of_range_language_choice_lists_languages(engine, sessions):
    response = run(engine, ["1", "1", "10"])

    assert "between 1 and 9" in response.message
    assert "9. Italian" in response.message
    assert sessions.find(CID).step == WizardStep.LANGUAGE_SELECTION


@pytest.mark.parametrize("bad_input", ["0", "9", "two"])
def test_out_of_range_voice_choice_keeps_step_and_rerenders(engine, sessions, bad_input):
    response = run(engine, ["1", bad_input])

    assert "between 1 and 3" in response.message
    assert "1. Warm (en, female)" in response.message
    row = sessions.find(CID)
    assert row.step == WizardStep.VOICE_SELECTION
    assert row.selected_voice_id is None


def test_manual_avatar_entry(engine, sessions):
    engine.start_wizard(CID)

    response = engine.process_input(CID, "3")
    assert response.message == M.WIZARD_AVATAR_MANUAL
    assert sessions.find(CID).step == WizardStep.AVATAR_MANUAL_ENTRY
    assert sessions.find(CID).selected_avatar_id is None

    response = engine.process_input(CID, "short")
    assert response.message == M.WIZARD_AVATAR_MANUAL_INVALID
    assert sessions.find(CID).step == WizardStep.AVATAR_MANUAL_ENTRY

    response = engine.process_input(CID, "  9650a758-1085-4d49  ")
    row = sessions.find(CID)
    assert row.step == WizardStep.VOICE_SELECTION
    assert row.selected_avatar_id == "9650a758-1085-4d49"
    assert "Avatar ID: 9650a758-1085-4d49 set." in response.message


def test_manual_voice_entry(engine, sessions):
    run(engine, ["1", "3"])
    assert sessions.find(CID).step == WizardStep.VOICE_MANUAL_ENTRY

    engine.process_input(CID, "b952f553-f7f3")
    row = sessions.find(CID)
    assert row.step == WizardStep.LANGUAGE_SELECTION
    assert row.selected_voice_id == "b952f553-f7f3"


def test_voice_catalog_failure_keeps_avatar_step(engine, sessions, catalog):
    engine.start_wizard(CID)
    catalog.fail_voices = True

    response = engine.process_input(CID, "1")

    assert "voices are down" in response.message
    row = sessions.find(CID)
    assert row.step == WizardStep.AVATAR_SELECTION
    assert row.selected_avatar_id is None


@pytest.mark.parametrize(
    "inputs",
    [
        [],
        ["3"],
        ["1"],
        ["1", "3"],
        ["1", "1"],
        ["1", "1", "1"],
        ["1", "1", "1", "My Helper"],
        ["1", "1", "1", "My Helper", "skip"],
    ],
)
def test_cancel_at_any_step(engine, sessions, configs, inputs):
    run(engine, inputs)

    response = engine.process_input(CID, "Cancel")

    assert response.message == M.WIZARD_CANCELLED
    assert response.session_ended
    assert sessions.find(CID) is None
    assert configs.find_by_owner(CID) == []


def test_decline_at_confirmation(engine, sessions, configs):
    response = run(engine, ["1", "1", "1", "My Helper", "skip", "no"])

    assert response.message == M.WIZARD_CANCELLED
    assert sessions.find(CID) is None
    assert configs.find_by_owner(CID) == []


def test_confirmation_reprompts_on_other_text(engine, sessions):
    response = run(engine, ["1", "1", "1", "My Helper", "skip", "maybe"])

    assert response.message == M.WIZARD_CONFIRM_REPROMPT
    assert sessions.find(CID).step == WizardStep.CONFIRMATION


@pytest.mark.parametrize("name", ["my helper", "MY HELPER", "  My Helper  "])
def test_duplicate_name_is_rejected_case_insensitively(engine, sessions, configs, name):
    make_avatar(configs, CID, "My Helper")

    response = run(engine, ["1", "1", "1", name])

    assert "already have an avatar named" in response.message
    assert sessions.find(CID).step == WizardStep.NAME_INPUT


def test_same_name_allowed_for_another_owner(engine, sessions, configs):
    make_avatar(configs, "someone-else", "My Helper")

    run(engine, ["1", "1", "1", "My Helper"])

    assert sessions.find(CID).step == WizardStep.PROMPT_INPUT


@pytest.mark.parametrize(
    "name, expected",
    [
        ("A", M.WIZARD_NAME_TOO_SHORT),
        ("   ", M.WIZARD_NAME_TOO_SHORT),
        ("x" * 101, M.WIZARD_NAME_TOO_LONG),
    ],
)
def test_name_length_bounds(engine, sessions, name, expected):
    response = run(engine, ["1", "1", "1", name])

    assert response.message == expected
    assert sessions.find(CID).step == WizardStep.NAME_INPUT


def test_duplicate_created_concurrently_returns_to_name_input(engine, sessions, configs):
    run(engine, ["1", "1", "1", "My Helper", "skip"])
    # another request commits the same name before confirmation
    make_avatar(configs, CID, "MY HELPER")

    response = engine.process_input(CID, "confirm")

    assert not response.is_complete
    assert "already have an avatar named" in response.message
    row = sessions.find(CID)
    assert row.step == WizardStep.NAME_INPUT
    assert row.custom_name is None
    assert len(configs.find_by_owner(CID)) == 1


def test_summary_resolves_names_and_previews_prompt(engine):
    response = run(engine, ["2", "2", "1", "Guide", "p" * 150])

    assert "Appearance: Bruno" in response.message
    assert "Voice: Deep" in response.message
    assert "Language: English" in response.message
    assert '"' + "p" * 100 + '..."' in response.message


def test_process_input_without_session_writes_nothing(engine, sessions, configs):
    response = engine.process_input(CID, "1")

    assert response.message == M.WIZARD_NO_SESSION
    assert response.session_ended
    assert sessions.find(CID) is None
    assert configs.find_by_owner(CID) == []


def test_start_wizard_replaces_existing_session(engine, sessions):
    run(engine, ["1", "1"])

    engine.start_wizard(CID)

    row = sessions.find(CID)
    assert row.step == WizardStep.AVATAR_SELECTION
    assert row.selected_avatar_id is None
    assert row.selected_voice_id is None


def test_cancel_wizard_without_session(engine):
    assert engine.cancel_wizard(CID).message == M.WIZARD_NOTHING_TO_CANCEL
    assert not engine.has_active_session(CID)
