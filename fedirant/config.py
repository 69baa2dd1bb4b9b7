"""Settings from the environment (and .env), token storage and UI preferences."""

from dataclasses import dataclass
import json
import os
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit

import dotenv
import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from .models import DEFAULT_HASHTAG, FeedSource, normalize_hashtag

serviceKeyring = "fedirant"

DEFAULT_INSTANCE = "https://mastodon.social"
PREFS_FILENAME = "ui_state.json"


class ConfigError(Exception):
    pass


@dataclass
class Config:
    instance_url: str = DEFAULT_INSTANCE
    hashtag: str = DEFAULT_HASHTAG
    config_dir: str = ""
    token: str = ""  # explicit override; empty means ask the keyring
    debug: bool = False

    @property
    def prefs_path(self) -> str:
        return os.path.join(self.config_dir, PREFS_FILENAME)


@dataclass
class UIPrefs:
    hashtag: str = ""
    feed_source: Optional[FeedSource] = None


def _validate_instance(raw: str) -> str:
    parts = urlsplit(raw.strip())
    if not parts.scheme or not parts.netloc:
        raise ConfigError("invalid FEDIRANT_INSTANCE: must be an absolute URL")
    if parts.scheme != "https":
        raise ConfigError("invalid FEDIRANT_INSTANCE: only https is allowed")
    return raw.strip().rstrip("/")


def load_config(load_env_file: bool = True) -> Config:
    if load_env_file:
        dotenv.load_dotenv()
    instance = _validate_instance(os.getenv("FEDIRANT_INSTANCE") or DEFAULT_INSTANCE)
    hashtag = normalize_hashtag(os.getenv("FEDIRANT_HASHTAG")) or DEFAULT_HASHTAG
    config_dir = os.getenv("FEDIRANT_CONFIG_DIR") or str(Path.home() / ".config" / "fedirant")
    return Config(
        instance_url=instance,
        hashtag=hashtag,
        config_dir=config_dir,
        token=(os.getenv("FEDIRANT_TOKEN") or "").strip(),
        debug=bool(os.getenv("FEDIRANT_DEBUG")),
    )


# --- access token ---

def _token_key(instance_url: str) -> str:
    return f"{instance_url}|token"


def save_token(instance_url: str, token: str) -> None:
    keyring.set_password(serviceKeyring, _token_key(instance_url), token)


def load_token(instance_url: str) -> str:
    try:
        return keyring.get_password(serviceKeyring, _token_key(instance_url)) or ""
    except KeyringError:
        return ""


def clear_token(instance_url: str) -> bool:
    try:
        keyring.delete_password(serviceKeyring, _token_key(instance_url))
    except PasswordDeleteError:
        return False
    return True


def resolve_token(cfg: Config) -> str:
    return cfg.token or load_token(cfg.instance_url)


# --- UI preferences ---

def load_prefs(path: str) -> UIPrefs:
    """Read the saved tab/hashtag. A missing file is an empty record."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError:
        return UIPrefs()
    except json.JSONDecodeError as e:
        raise ConfigError(f"parsing ui state: {e}") from e
    except OSError as e:
        raise ConfigError(f"reading ui state: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError("parsing ui state: expected an object")
    source = raw.get("feed_source")
    return UIPrefs(
        hashtag=normalize_hashtag(raw.get("hashtag")),
        feed_source=FeedSource.parse(source) if source else None,
    )


def save_prefs(path: str, prefs: UIPrefs) -> None:
    if not path or not path.strip():
        raise ConfigError("invalid state path")
    os.makedirs(os.path.dirname(path) or ".", mode=0o700, exist_ok=True)
    data = {
        "hashtag": prefs.hashtag,
        "feed_source": prefs.feed_source.value if prefs.feed_source else "",
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def initial_view(prefs: UIPrefs, default_hashtag: str):
    """Resolve the (source, hashtag) the client starts on."""
    hashtag = prefs.hashtag or default_hashtag
    source = prefs.feed_source or FeedSource.PRIMARY
    if source == FeedSource.CUSTOM and hashtag.lower() == default_hashtag.lower():
        source = FeedSource.PRIMARY
    return source, hashtag
