"""Shared constants for mindcore.

Import-safe module with no dependencies, so it can be imported from anywhere
without risk of circular imports.
"""

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
OPENAI_BASE_URL = "https://api.openai.com/v1"
OLLAMA_BASE_URL = "http://127.0.0.1:11434/v1"

# Conversation buffer
DEFAULT_MAX_MESSAGES = 15
DEFAULT_SUMMARY_CHUNK_SIZE = 5

# Consolidated memory hard cap (characters, suffix included)
MEMORY_CHAR_LIMIT = 500
MEMORY_TRUNCATION_SUFFIX = "...(Memory truncated to 500 chars. Compress it more next time)"

# Dispatch
CONVERSATION_ATTEMPTS = 3
HALLUCINATION_MARKER = "(FROM OTHER BOT)"
NO_CODE_RESPONSE = "```//no response```"
RESPOND_KEYWORD = "respond"
NO_CODE_TASK = "No specific task provided in !newAction command."
GOAL_USER_TEMPLATE = (
    "Use the below info to determine what goal to target next\n\n"
    "$LAST_GOALS\n$STATS\n$INVENTORY\n$CONVO"
)
