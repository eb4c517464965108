"""Central configuration for endpoints and constants."""

import os

# Host server root, override with the SCRATCHPAD_BASE_URL env var
DEFAULT_BASE_URL = os.environ.get("SCRATCHPAD_BASE_URL", "http://127.0.0.1:8000")
DEFAULT_API_KEY = os.environ.get("SCRATCHPAD_API_KEY", "")
DEFAULT_TIMEOUT = float(os.environ.get("SCRATCHPAD_TIMEOUT", "120"))

# Completion endpoint
GENERATE_PATH = "/api/backends/chat-completions/generate"

# Key under which threads are stored in the chat metadata
METADATA_KEY = "scratchPad"

# Titles
FALLBACK_TITLE_LENGTH = 30
AI_TITLE_MAX_LENGTH = 60
DEFAULT_THREAD_NAME = "New Thread"

# Characters of an error response body kept in TransportError messages
ERROR_EXCERPT_CHARS = 200
