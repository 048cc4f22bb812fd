# core/env_loader.py
"""
Environment access for the assistant.

The .env file next to the project root (or the file named by ENV_FILE) is
loaded once at import and wins over values already in the OS environment.
Secrets (OPENAI_API_KEY, MONGODB_URL, ASSISTANT_ACCESS_TOKEN) are read from
here; tunables live in config.yaml.
"""
import os
from pathlib import Path
from typing import List, Optional, Tuple

from dotenv import load_dotenv

# <root>/core/env_loader.py
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_DEFAULT_ENV_PATH = _PROJECT_ROOT / ".env"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _load_env() -> None:
    env_file = Path(os.getenv("ENV_FILE", str(_DEFAULT_ENV_PATH)))
    if env_file.exists():
        load_dotenv(dotenv_path=env_file, override=True)
    else:
        # python-dotenv searches upward from the working directory
        load_dotenv(override=True)


_load_env()


def get_env(var_name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(var_name, default)


def get_env_bool(var_name: str, default: bool = False) -> bool:
    """True for 1/true/yes/on (case-insensitive); default when unset."""
    value = os.getenv(var_name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def get_env_list(var_name: str) -> List[str]:
    """Whitespace- or comma-separated values ("mail.read calendar.read")."""
    value = os.getenv(var_name) or ""
    return [item for item in value.replace(",", " ").split() if item]


def validate_required_vars(var_names: List[str]) -> Tuple[bool, List[str]]:
    """
    Check that every named variable is set and non-empty.

    Returns:
        (all_present, missing_list)
    """
    missing = [name for name in var_names if not os.getenv(name)]
    return (len(missing) == 0, missing)
