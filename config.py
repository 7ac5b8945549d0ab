"""
Centralized configuration for certeval.

Loads environment variables from .env and provides validated paths and settings.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def get_path_var(var_name: str, default: str | None = None) -> Path | None:
    """Retrieve a path from environment variables, resolving to absolute."""
    value = os.getenv(var_name, default)
    if not value:
        return None
    return Path(value).expanduser().resolve()


# -- Paths -------------------------------------------------------------------


STATE_DIR = get_path_var("CERTEVAL_STATE_DIR", str(Path.home() / ".certeval"))
LOG_DIR = STATE_DIR / "logs"
STORAGE_DIR = STATE_DIR / "storage"

# -- Settings -----------------------------------------------------------------

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def validate_config() -> None:
    """Validate that critical paths exist or can be created."""
    for path_var in [STATE_DIR, LOG_DIR]:
        if not path_var.exists():
            try:
                path_var.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                print(f"Warning: Could not create {path_var}: {e}")
