import os
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "model": "anthropic",
    "light_model": None,  # None = provider default; used for per-file summaries
    "heavy_model": None,  # None = provider default; used for consolidation and review
    "light_token_limit": 3000,
    "heavy_token_limit": 12000,
    "model_concurrency_limit": 6,
    "github_concurrency_limit": 6,
    "max_files": 150,  # 0 = unlimited
    "exclude": [],  # fnmatch patterns or directory names to skip (e.g. "migrations/", "*.min.js")
    "review_simple_changes": False,
    "review_comment_lgtm": False,
    "review_draft_prs": False,
    "disable_review": False,
    "disable_release_notes": False,
    "resolve_stale_threads": True,
    "resolve_policy": "touched",  # "touched" or "never"
    "system_message": None,  # None = built-in default; set to a path string to override
}

_POSITIVE_INT_KEYS = (
    "light_token_limit",
    "heavy_token_limit",
    "model_concurrency_limit",
    "github_concurrency_limit",
)


def _validate(config: dict) -> None:
    unknown = sorted(set(config) - set(DEFAULT_CONFIG))
    if unknown:
        raise ValueError(f"Unknown configuration key(s): {', '.join(unknown)}")
    for key in _POSITIVE_INT_KEYS:
        value = config[key]
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValueError(f"{key} must be a positive integer, got {value!r}")
    if not isinstance(config["max_files"], int) or config["max_files"] < 0:
        raise ValueError(f"max_files must be 0 (unlimited) or a positive integer, got {config['max_files']!r}")
    if isinstance(config["exclude"], str):
        config["exclude"] = [config["exclude"]]


def load_config(config_path: str = ".prwarden.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prwarden.yml in the current directory
      3. CLI argument overrides

    Raises ValueError on unknown keys or out-of-range limits so a typo in the
    config file fails the run instead of silently using a default.
    """
    config = {**DEFAULT_CONFIG, "exclude": list(DEFAULT_CONFIG["exclude"])}

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    _validate(config)

    # Resolve credentials from environment variables
    config["github_token"] = os.environ.get("GITHUB_TOKEN") or os.environ.get("GH_TOKEN")
    config["anthropic_api_key"] = os.environ.get("ANTHROPIC_API_KEY")
    config["openai_api_key"] = os.environ.get("OPENAI_API_KEY")

    return config
