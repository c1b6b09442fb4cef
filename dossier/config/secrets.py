"""
Secret management for API keys.

Usage:
    from dossier.config.secrets import get_openai_key, optional_key

    # Will raise if key is missing
    key = get_openai_key()

    # Returns None instead of raising
    key = optional_key("ALPHA_VANTAGE_KEY")

CLI check:
    python -m dossier.config.secrets --check
"""

import os
import sys
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv

# Find .env file - walk up from this file to repo root
_current = Path(__file__).resolve()
_repo_root = _current.parent.parent.parent  # dossier/config/secrets.py -> repo root
_env_path = _repo_root / ".env"

if _env_path.exists():
    load_dotenv(_env_path)
else:
    # Also try current working directory
    load_dotenv()


OPENAI_KEY_NAME = "OPENAI_API_KEY"
ALPHA_VANTAGE_KEY_NAME = "ALPHA_VANTAGE_KEY"

KNOWN_KEYS = (OPENAI_KEY_NAME, ALPHA_VANTAGE_KEY_NAME)


class MissingAPIKeyError(Exception):
    """Raised when a required API key is not configured."""
    pass


def optional_key(name: str) -> Optional[str]:
    """Return the stripped value of an environment key, or None when unset/blank."""
    value = os.environ.get(name, "").strip()
    return value or None


def _required_key(name: str) -> str:
    key = optional_key(name)
    if not key:
        raise MissingAPIKeyError(
            f"{name} not found. "
            "Copy .env.example to .env and add your key."
        )
    return key


def get_openai_key() -> str:
    """
    Get OpenAI API key from environment.

    Returns:
        str: The API key

    Raises:
        MissingAPIKeyError: If OPENAI_API_KEY is not set
    """
    return _required_key(OPENAI_KEY_NAME)


def check_keys() -> Dict[str, str]:
    """
    Check which API keys are configured.

    Returns:
        dict: Status of each key ("OK" or "MISSING")
    """
    return {name: "OK" if optional_key(name) else "MISSING" for name in KNOWN_KEYS}


def _cli_check() -> int:
    """CLI entry point for --check flag."""
    status = check_keys()
    all_ok = True

    for key_name, key_status in status.items():
        print(f"{key_name}: {key_status}")
        if key_status == "MISSING":
            all_ok = False

    if not all_ok:
        print("\nMissing keys degrade gracefully:")
        print(f"  {ALPHA_VANTAGE_KEY_NAME}: gold/silver/S&P/WTI fall back to chart sources")
        print(f"  {OPENAI_KEY_NAME}: the daily brief falls back to a headline summary")
        return 1

    print("\nAll keys configured.")
    return 0


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(
        description="Check API key configuration"
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Check if API keys are configured"
    )

    args = parser.parse_args()

    if args.check:
        sys.exit(_cli_check())
    else:
        parser.print_help()
