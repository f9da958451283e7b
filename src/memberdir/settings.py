import argparse
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

__all__ = ["Settings", "SmtpConfig", "load_settings_from_env", "parse_args"]

ENV_PREFIX = "MEMBERDIR_"


@dataclass
class SmtpConfig:
    """SMTP configuration for sending emails."""

    host: str
    port: int
    sender_email: str
    sender_name: str = ""
    username: str | None = None
    password: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class Settings:
    """Application settings loaded from environment file."""

    db_file: Path = Path("./db.sqlite")
    environment: Literal["test", "demo", "production"] = "production"
    frontend_origin: str = "http://localhost:3000"
    debug_logs: bool = False
    port: int = 8000
    # Bearer token for the member administration routes (None = not configured)
    admin_token: str | None = None
    # Bearer token the scheduler sends to the notification route
    cron_secret: str | None = None
    # Recipient of the birthday notification emails
    admin_email: str | None = None
    organization: str = "Church Member Directory"
    upcoming_days: int = 7
    # Where emails are written when they are not sent over SMTP
    outbox_dir: Path = Path("./outbox")
    # SMTP configuration for sending emails (None = config not provided)
    smtp: SmtpConfig | None = None
    # Whether to actually send emails via SMTP (False = save to files instead)
    smtp_send: bool = False


def load_env_file(env_file: Path) -> dict[str, str]:
    """Load environment variables from a file into a dict."""
    env: dict[str, str] = {}

    if not env_file.exists():
        return env

    with open(env_file) as f:
        for raw_line in f:
            line = raw_line.strip()

            # Skip empty lines and comments
            if not line or line.startswith("#"):
                continue

            if "=" not in line:
                continue

            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip()

            if (value.startswith('"') and value.endswith('"')) or (
                value.startswith("'") and value.endswith("'")
            ):
                value = value[1:-1]

            env[key] = value

    return env


def get_env(env_map: dict[str, str], key: str, default: str = "") -> str:
    """Get a value from the env map or OS environment."""
    value = env_map.get(key)
    if value:
        return value
    return os.environ.get(key, default)


def get_env_bool(env_map: dict[str, str], key: str, default: bool = False) -> bool:
    """Get a boolean value from the env map or OS environment."""
    value = get_env(env_map, key, "")
    if not value:
        return default
    return value.lower() in ("true", "1", "yes")


def get_env_int(env_map: dict[str, str], key: str, default: int) -> int:
    """Get an integer value from the env map or OS environment."""
    value = get_env(env_map, key, "")
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def load_settings_from_env(env_file: Path) -> Settings:
    """Load settings from an environment file."""
    env_map = load_env_file(env_file)

    def env(name: str) -> str:
        return get_env(env_map, f"{ENV_PREFIX}{name}", "")

    config: dict[str, Any] = {}

    if db_file := env("DB_FILE"):
        config["db_file"] = Path(db_file)

    environment = env("ENVIRONMENT")
    if environment in ("test", "demo", "production"):
        config["environment"] = environment

    if frontend_origin := env("FRONTEND_ORIGIN"):
        config["frontend_origin"] = frontend_origin

    if env("DEBUG_LOGS"):
        config["debug_logs"] = get_env_bool(env_map, f"{ENV_PREFIX}DEBUG_LOGS")

    if env("PORT"):
        config["port"] = get_env_int(env_map, f"{ENV_PREFIX}PORT", 8000)

    # Empty secrets count as not configured
    config["admin_token"] = env("ADMIN_TOKEN") or None
    config["cron_secret"] = env("CRON_SECRET") or None
    config["admin_email"] = env("ADMIN_EMAIL") or None

    if organization := env("ORGANIZATION"):
        config["organization"] = organization

    if env("UPCOMING_DAYS"):
        upcoming_days = get_env_int(env_map, f"{ENV_PREFIX}UPCOMING_DAYS", 7)
        if upcoming_days >= 0:
            config["upcoming_days"] = upcoming_days

    if outbox_dir := env("OUTBOX_DIR"):
        config["outbox_dir"] = Path(outbox_dir)

    # SMTP configuration
    smtp_host = env("SMTP_HOST")
    smtp_port = env("SMTP_PORT")
    smtp_sender_email = env("SMTP_SENDER_EMAIL")
    if smtp_host and smtp_port and smtp_sender_email:
        try:
            config["smtp"] = SmtpConfig(
                host=smtp_host,
                port=int(smtp_port),
                sender_email=smtp_sender_email,
                sender_name=env("SMTP_SENDER_NAME"),
                username=env("SMTP_USERNAME") or None,
                password=env("SMTP_PASSWORD") or None,
            )
        except ValueError:
            pass

    # SMTP send toggle (requires smtp config to be set)
    if env("SMTP_SEND"):
        config["smtp_send"] = get_env_bool(env_map, f"{ENV_PREFIX}SMTP_SEND")

    return Settings(**config)


def parse_args(prog: str = "memberdir", description: str | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog=prog,
        description=description or "Church member directory backend server",
    )
    parser.add_argument(
        "--env-file",
        type=str,
        default=".env",
        help="Path to environment file (default: .env)",
    )
    return parser.parse_args()
