"""Central configuration for paths, limits and constants."""

import os
from pathlib import Path

_MB = 1024 * 1024

# Data directory: override with EXPORTDIVER_DATA_DIR env var
DATA_DIR = Path(
    os.environ.get("EXPORTDIVER_DATA_DIR", str(Path.home() / ".exportdiver"))
)

# Storage layout
SETS_DIR = DATA_DIR / "sets"
REGISTRY_PATH = DATA_DIR / "registry.db"
CONVERSATIONS_DIRNAME = "conversations"
MEDIA_DIRNAME = "media"
ASSET_INDEX_FILENAME = "assets.json"
EXTRAS_DIRNAME = "extras"

# Temporary workspaces; None means the system temp dir
TEMP_DIR = os.environ.get("EXPORTDIVER_TEMP_DIR") or None
TEMP_PREFIX = "exportdiver-"

# Archive limits
MAX_UPLOAD_SIZE = int(os.environ.get("EXPORTDIVER_MAX_UPLOAD_MB", "500")) * _MB
MAX_EXTRACTED_SIZE = int(os.environ.get("EXPORTDIVER_MAX_EXTRACTED_MB", "2048")) * _MB
MAX_COMPRESSION_RATIO = float(os.environ.get("EXPORTDIVER_MAX_COMPRESSION_RATIO", "100"))
MAX_FILES_IN_ZIP = int(os.environ.get("EXPORTDIVER_MAX_FILES", "10000"))

ZIP_SIGNATURES = (
    b"PK\x03\x04",
    b"PK\x05\x06",  # empty archive
    b"PK\x07\x08",  # spanned archive
)

# Export structure
CONVERSATION_DOCUMENT = "conversations.json"
COMPANION_HTML = "chat.html"
LEGACY_MEDIA_SUBDIR = "Test-Chat-Combine"

MEDIA_PREFIXES = ("file-", "file_")
MEDIA_DIR_PREFIXES = ("audio/", "dalle-generations/")
IMAGE_EXTENSIONS = {".jpeg", ".jpg", ".png", ".gif", ".webp"}
AUDIO_EXTENSIONS = {".dat", ".wav", ".mp3", ".m4a", ".ogg"}
VIDEO_EXTENSIONS = {".mp4", ".webm", ".mov"}

# Splitting
TITLE_MAX_LENGTH = 100
SET_NAME_MAX_LENGTH = 50

# Asset pointers
FILE_SERVICE_PREFIX = "file-service://"
SEDIMENT_PREFIX = "sediment://"
SEDIMENT_STRIP_EXTENSIONS = (".dat", ".wav", ".mp3", ".m4a")
FALLBACK_IMAGE_EXTENSIONS = (".jpeg", ".jpg", ".png")

# File-search cache entries kept per process
SEARCH_CACHE_SIZE = int(os.environ.get("EXPORTDIVER_SEARCH_CACHE_SIZE", "1000"))

# Rendering / search
BOT_DISPLAY_NAME = "ChatGPT"
TOOL_DISPLAY_NAME = "Tool"
SNIPPET_CONTEXT_CHARS = 50
PREVIEW_LENGTH = 200
DEFAULT_MESSAGE_LIMIT = 10_000
