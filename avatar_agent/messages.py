# avatar_agent/messages.py
# User-facing reply texts. Placeholders are filled with Utils.unsafe_string_format.

# -----------------------
# Wizard
# -----------------------

WIZARD_WELCOME = """Welcome to Avatar Creation! Let's build your personalized AI avatar.

Step 1/5: Choose Your Avatar Appearance

{AVATAR_LIST}

Reply with the number of your choice (e.g., "1")"""

WIZARD_CATALOG_UNAVAILABLE = "Failed to load avatars. Please try again later.\nError: {ERROR}"

WIZARD_NO_SESSION = "No active creation session. Use /create to start creating an avatar."
WIZARD_CANCELLED = "Avatar creation cancelled."
WIZARD_NOTHING_TO_CANCEL = "No active creation session."
WIZARD_INVALID_NUMBER = "Please enter a valid number between 1 and {MAX}.\n\n{LIST}"

WIZARD_AVATAR_MANUAL = """Step 1/5: Enter Avatar ID

Please enter your HeyGen avatar ID (e.g., "9650a758-1085-4d49-8bf3-f347565ec229"):"""

WIZARD_AVATAR_MANUAL_INVALID = 'Please enter a valid avatar ID (should be a UUID like "9650a758-1085-4d49-8bf3-f347565ec229"):'

WIZARD_VOICE_STEP = """{SELECTED}

Step 2/5: Choose a Voice

{VOICE_LIST}

Reply with the number of your choice."""

WIZARD_VOICE_MANUAL = """Step 2/5: Enter Voice ID

Please enter your HeyGen voice ID (e.g., "b952f553-f7f3-4e52-8625-86b4c415384f"):"""

WIZARD_VOICE_MANUAL_INVALID = 'Please enter a valid voice ID (should be a UUID like "b952f553-f7f3-4e52-8625-86b4c415384f"):'

WIZARD_LANGUAGE_STEP = """{SELECTED}

Step 3/5: Select Language

{LANGUAGE_LIST}

Reply with the number of your choice."""

WIZARD_NAME_STEP = """Language: {LANGUAGE} selected.

Step 4/5: Name Your Avatar

Give your avatar a memorable name (e.g., "Business Helper", "Travel Guide")."""

WIZARD_NAME_TOO_SHORT = "Please enter a name with at least 2 characters."
WIZARD_NAME_TOO_LONG = "Name is too long. Please use 100 characters or less."
WIZARD_NAME_TAKEN = 'You already have an avatar named "{NAME}". Please choose a different name.'

WIZARD_PROMPT_STEP = """Name: "{NAME}" set.

Step 5/5: Personality Prompt (Optional)

Describe how your avatar should behave (e.g., "You are a friendly business consultant who helps with strategy.").

Or type "skip" to use the default personality."""

WIZARD_SUMMARY = """Configuration Complete!

Name: {NAME}
Appearance: {AVATAR}
Voice: {VOICE}
Language: {LANGUAGE}
Personality: {PERSONALITY}

Reply "confirm" to create your avatar and receive your ownership credential.
Reply "cancel" to discard."""

WIZARD_CONFIRM_REPROMPT = 'Please reply "confirm" to create the avatar or "cancel" to discard.'
WIZARD_INCOMPLETE = "Session is incomplete. Please start again with /create."
WIZARD_CREATING = 'Creating your avatar "{NAME}"...'
WIZARD_UNKNOWN_STEP = "Unknown step. Please use /cancel and start again."

# -----------------------
# Credentials
# -----------------------

CREDENTIAL_OFFERED = 'Your avatar "{NAME}" is ready. An ownership credential is on its way, accept it to keep access to this avatar.'
CREDENTIAL_NOT_AVAILABLE = 'Your avatar "{NAME}" is saved. Ownership credentials are not available right now, so access will not require one.'
CREDENTIAL_ISSUE_FAILED = 'Your avatar "{NAME}" is saved, but the ownership credential could not be issued: {ERROR}'
CREDENTIAL_RECEIVED = 'Ownership credential for "{NAME}" stored. Use "/access {NAME}" to open your avatar.'

PROOF_REQUESTED = 'Avatar "{NAME}" is protected. Please present your ownership credential to continue.'
PROOF_DESCRIPTION = 'Present your ownership credential for avatar "{NAME}"'
PROOF_EMPTY = "No credential was presented. Please try again with /access NAME."
PROOF_TOO_MANY = "Please present exactly one ownership credential."
PROOF_NOT_VERIFIED = "The presented credential could not be verified. Access denied."
PROOF_MISSING_CONFIG = "The presented credential does not reference an avatar. Access denied."
PROOF_WRONG_OWNER = "This credential belongs to another user. Access denied."
PROOF_WRONG_AVATAR = "The presented credential is for a different avatar than the one requested. Access denied."
PROOF_STALE = "This access request is no longer valid. Please use /access NAME again."
PROOF_ACCEPTED = 'Credential verified. Welcome back to "{NAME}"!'

# -----------------------
# Sessions / commands
# -----------------------

AVATAR_NOT_FOUND = 'No avatar named "{NAME}" found. Use /list to see your avatars.'
AVATAR_CONFIG_MISSING = "The avatar referenced by this credential no longer exists."
ACCESS_USAGE = "Usage: /access NAME"
SESSION_READY = '"{NAME}" is ready. Tap the link below to begin:'
SESSION_LINK_TITLE = "Start {NAME}"
SESSION_LINK_DESCRIPTION = "Tap to start a video conversation"
SESSION_FAILED = "Unable to start the avatar session: {ERROR}"
SESSION_LINK_FAILED = "The session link could not be delivered. Send {ACCESS} to try again."
DEFAULT_SESSION_NOT_CONFIGURED = "The Live Avatar is not configured. Please set up the HeyGen API credentials in the .env file."
DEFAULT_AVATAR_NAME = "Live Avatar"

LIST_EMPTY = "You have no avatars yet. Use /create to build one."
LIST_HEADER = "Your avatars:"
LIST_ITEM = "{INDEX}. {NAME} ({LANGUAGE}) - credential: {CREDENTIAL}"

HELP = """Avatar Agent commands:

- /create - Create a new personalized avatar
- /access NAME - Open one of your avatars
- /list - List your avatars
- /start - Start a session with the default avatar
- /cancel - Cancel the avatar creation in progress
- /help - Show this help message"""

GREETING = """Hi! I'm the Live Avatar agent.

Say "/create" to build your own avatar or "/help" to see everything I can do."""

WELCOME = """Welcome! I'm your Live Avatar assistant.

{HELP}"""

GENERIC_ERROR = "Something went wrong: {ERROR}"
