from dataclasses import dataclass
import getpass
import logging
import os
from collections.abc import Callable

from dotenv import load_dotenv
from sqlalchemy.engine import URL, make_url

from csvlanding.errors import StoreConnectionError


load_dotenv()

logger = logging.getLogger(__name__)

AUTH_MODES = ("integrated", "credentials")


@dataclass(frozen=True)
class Settings:
    app_name: str
    database_url: str
    db_schema: str | None
    base_name: str
    csv_path: str | None
    enable_staging: bool
    auto_create_tables: bool
    truncate_before_load: bool
    auth_mode: str
    db_username: str | None
    db_password: str | None
    trust_server_certificate: bool
    processed_dir: str
    error_dir: str
    retention_days: int
    inbox_dir: str
    poll_interval_minutes: int
    log_level: str
    fixture_state_path: str
    fixture_registry_path: str
    fixture_output_dir: str


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_optional(name: str) -> str | None:
    raw = os.getenv(name, "").strip()
    return raw or None


def get_settings() -> Settings:
    auth_mode = os.getenv("AUTH_MODE", "integrated").strip().lower()
    if auth_mode not in AUTH_MODES:
        raise ValueError(f"AUTH_MODE must be one of {AUTH_MODES}, got {auth_mode!r}")

    return Settings(
        app_name=os.getenv("APP_NAME", "csvlanding"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./landing.db"),
        db_schema=_env_optional("DB_SCHEMA"),
        base_name=os.getenv("BASE_NAME", "Customers"),
        csv_path=_env_optional("CSV_PATH"),
        enable_staging=_env_bool("ENABLE_STAGING", True),
        auto_create_tables=_env_bool("AUTO_CREATE_TABLES", True),
        truncate_before_load=_env_bool("TRUNCATE_BEFORE_LOAD", False),
        auth_mode=auth_mode,
        db_username=_env_optional("DB_USERNAME"),
        db_password=_env_optional("DB_PASSWORD"),
        trust_server_certificate=_env_bool("TRUST_SERVER_CERTIFICATE", False),
        processed_dir=os.getenv("PROCESSED_DIR", "./data/processed"),
        error_dir=os.getenv("ERROR_DIR", "./data/error"),
        retention_days=int(os.getenv("RETENTION_DAYS", "0")),
        inbox_dir=os.getenv("INBOX_DIR", "./data/inbox"),
        poll_interval_minutes=int(os.getenv("POLL_INTERVAL_MINUTES", "5")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        fixture_state_path=os.getenv("FIXTURE_STATE_PATH", "./data/fixtures/state.json"),
        fixture_registry_path=os.getenv("FIXTURE_REGISTRY_PATH", "./data/fixtures/registry.txt"),
        fixture_output_dir=os.getenv("FIXTURE_OUTPUT_DIR", "./data/inbox"),
    )


def build_database_url(
    settings: Settings,
    prompt: Callable[[str], str] | None = None,
    ask: Callable[[str], str] | None = None,
) -> URL:
    prompt = prompt or getpass.getpass
    ask = ask or input
    url = make_url(settings.database_url)
    is_mssql = url.get_backend_name() == "mssql"
    query: dict[str, str] = {}

    if settings.auth_mode == "credentials":
        username = settings.db_username or url.username
        password = settings.db_password or url.password
        try:
            if not username:
                username = ask("Database username: ").strip()
            if not password:
                password = prompt(f"Password for {username}: ")
        except EOFError as exc:
            raise StoreConnectionError("credentials are required but no terminal is available to prompt") from exc
        url = url.set(username=username, password=password)
    else:
        url = url.set(username=None, password=None)
        if is_mssql:
            query["Trusted_Connection"] = "yes"

    if settings.trust_server_certificate:
        if is_mssql:
            query["TrustServerCertificate"] = "yes"
        else:
            logger.debug("trust_server_certificate ignored", extra={"backend": url.get_backend_name()})

    if query:
        url = url.update_query_dict(query)
    return url
