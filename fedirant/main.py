import argparse
import getpass
import logging
import sys
from typing import List, Optional

from . import __version__, config
from .api_interface import APIError, MastodonAPI
from .app import FedirantApp
from .engine import Model
from .logging_config import configure_logging

logger = logging.getLogger("fedirant.main")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fedirant", description="Terminal client for a hashtag timeline")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("login", help="store an access token in the system keyring")
    sub.add_parser("logout", help="remove the stored access token")
    return parser


def login(cfg: config.Config) -> int:
    token = getpass.getpass(f"Access token for {cfg.instance_url}: ").strip()
    if not token:
        print("No token given.", file=sys.stderr)
        return 1
    api = MastodonAPI(cfg.instance_url, token)
    try:
        profile = api.current_profile()
    except APIError as e:
        print(f"Token rejected: {e}", file=sys.stderr)
        return 1
    config.save_token(cfg.instance_url, token)
    print(f"Logged in as @{profile.handle}")
    return 0


def logout(cfg: config.Config) -> int:
    if config.clear_token(cfg.instance_url):
        print("Token removed.")
    else:
        print("No stored token.")
    return 0


def build_model(cfg: config.Config, api: MastodonAPI) -> Model:
    try:
        prefs = config.load_prefs(cfg.prefs_path)
    except config.ConfigError as e:
        logger.warning("ignoring saved view settings: %s", e)
        prefs = config.UIPrefs()
    source, hashtag = config.initial_view(prefs, cfg.hashtag)
    return Model(
        api,
        account=api,
        posts=api,
        default_hashtag=cfg.hashtag,
        hashtag=hashtag,
        initial_source=source,
        prefs_path=cfg.prefs_path,
    )


def run(cfg: config.Config) -> int:
    token = config.resolve_token(cfg)
    if not token:
        print("No access token. Run `fedirant login` or set FEDIRANT_TOKEN.", file=sys.stderr)
        return 1
    api = MastodonAPI(cfg.instance_url, token)
    try:
        # own posts are recognised by account id
        api.current_account_id()
    except APIError as e:
        logger.warning("could not resolve own account: %s", e)
    FedirantApp(build_model(cfg, api)).run()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        cfg = config.load_config()
    except config.ConfigError as e:
        print(str(e), file=sys.stderr)
        return 2
    configure_logging(cfg.debug)
    logger.debug("starting fedirant %s against %s", __version__, cfg.instance_url)
    try:
        if args.command == "login":
            return login(cfg)
        if args.command == "logout":
            return logout(cfg)
        return run(cfg)
    except Exception:
        logger.exception("Exception occurred while running fedirant:")
        raise


if __name__ == "__main__":
    sys.exit(main())
