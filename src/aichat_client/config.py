"""Environment-driven configuration and platform-aware data paths."""

import os
import sys
from pathlib import Path

CONVERSATIONS_KEY = "ai-chatbot-conversations"
MODEL_PREFERENCE_KEY = "ai-chatbot-model-preference"
SENTINEL_TITLE = "New Conversation"

DEFAULT_MODEL = "openai/gpt-oss-120b"
DEFAULT_NANOGPT_BASE_URL = "https://nano-gpt.com/api/v1"
PLACEHOLDER_API_KEY = "your_nanogpt_api_key_here"
MAX_OUTPUT_TOKENS = 2000
MAX_TOOL_STEPS = 5
DEFAULT_MAX_DURATION = 30.0


def get_data_dir() -> Path:
    """Return the directory holding persisted conversations and preferences."""
    env = os.environ.get("AICHAT_DATA_DIR")
    if env:
        return Path(env)

    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "aichat-client"
    elif sys.platform == "win32":
        return Path(os.environ.get("APPDATA", "")) / "aichat-client"
    else:  # Linux
        return Path.home() / ".local" / "share" / "aichat-client"


def get_models_source() -> str:
    """Return the URL or file path of the model registry document."""
    env = os.environ.get("AICHAT_MODELS_SOURCE")
    if env:
        return env
    return str(Path(__file__).parent / "models.json")


def get_nanogpt_api_key() -> str | None:
    return os.environ.get("NANOGPT_API_KEY") or None


def get_nanogpt_base_url() -> str:
    return os.environ.get("NANOGPT_BASE_URL", DEFAULT_NANOGPT_BASE_URL).rstrip("/")


def get_brave_api_key() -> str | None:
    return os.environ.get("BRAVE_SEARCH_API_KEY") or None


def get_max_duration() -> float:
    """Return the ceiling, in seconds, for one streamed exchange."""
    env = os.environ.get("AICHAT_MAX_DURATION")
    if env:
        try:
            value = float(env)
        except ValueError:
            return DEFAULT_MAX_DURATION
        if value > 0:
            return value
    return DEFAULT_MAX_DURATION
