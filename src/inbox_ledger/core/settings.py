import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from dotenv import find_dotenv, load_dotenv

from inbox_ledger.logger import get_logger

logger = get_logger(__name__)


CONFIG_FILENAME = "config.yaml"

_CONFIG_FILE_PATH: str | None = None
_CONFIG_FILE_VALUES: dict[str, str] = {}

_CONFIG_KEYS = (
    "LOG_LEVEL",
    "LOG_DIR",
    "DATA_DIR",
    "DATABASE_URL",
    "GMAIL_API_URL",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "OPENAI_BASE_URL",
    "DISPLAY_CURRENCY",
    "DEFAULT_CURRENCY",
    "SEARCH_WINDOW_DAYS",
    "MAX_BODY_CHARS",
    "FETCH_ATTEMPTS",
    "BATCH_SIZE",
    "BATCH_PAUSE_SECONDS",
    "AMOUNT_CEILING",
    "DEFAULT_CONFIDENCE",
)


def _resolve_dotenv_path() -> str | None:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        candidate = os.path.join(config_dir, ".env")
        if os.path.exists(candidate):
            return candidate
    resolved = find_dotenv(usecwd=True)
    return resolved or None


def _resolve_config_path() -> str:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        return os.path.join(config_dir, CONFIG_FILENAME)
    cwd = os.getcwd()
    candidate = os.path.join(cwd, "config", CONFIG_FILENAME)
    if os.path.exists(candidate):
        return candidate
    return os.path.join(cwd, CONFIG_FILENAME)


def _strip_inline_comment(raw_value: str) -> str:
    quote: str | None = None
    for index, char in enumerate(raw_value):
        if char in {'"', "'"}:
            if quote is None:
                quote = char
            elif quote == char:
                quote = None
            continue
        if char == "#" and quote is None:
            return raw_value[:index].rstrip()
    return raw_value


def _unquote_value(raw_value: str) -> str:
    if len(raw_value) >= 2 and raw_value[0] == raw_value[-1] and raw_value[0] in {'"', "'"}:
        return raw_value[1:-1]
    return raw_value


def read_config_file(path: str | None) -> dict[str, str]:
    """Read a flat ``KEY: value`` file. Nested YAML structures are not supported."""
    if not path or not os.path.exists(path):
        return {}

    values: dict[str, str] = {}
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            stripped = line.strip()
            if not stripped or stripped.startswith("#") or ":" not in stripped:
                continue
            key, raw_value = stripped.split(":", 1)
            key = key.strip()
            value = _unquote_value(_strip_inline_comment(raw_value).strip())
            if key and value:
                values[key] = value
    return values


def load_environment() -> None:
    global _CONFIG_FILE_PATH
    global _CONFIG_FILE_VALUES

    dotenv_path = _resolve_dotenv_path()
    if dotenv_path:
        load_dotenv(dotenv_path=dotenv_path, override=False)

    _CONFIG_FILE_PATH = _resolve_config_path()
    _CONFIG_FILE_VALUES = read_config_file(_CONFIG_FILE_PATH)

    for key in _CONFIG_KEYS:
        if key not in os.environ and key in _CONFIG_FILE_VALUES:
            os.environ[key] = _CONFIG_FILE_VALUES[key]


def ensure_dir(path: str | None) -> None:
    if path and path not in {".", "./"}:
        os.makedirs(path, exist_ok=True)


def get_env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def get_env_int(name: str, default: int, min_value: int | None = None) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning(
            "[ENV] %s='%s' below minimum %s, using default %s.",
            name,
            raw,
            min_value,
            default,
        )
        return default
    return value


def get_env_float(name: str, default: float = 0.0, min_value: float | None = None) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning("[ENV] %s='%s' below minimum %s, using default %s.", name, raw, min_value, default)
        return default
    return value


def get_env_decimal(name: str, default: Decimal) -> Decimal:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return Decimal(raw)
    except InvalidOperation:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default


_SENSITIVE_ENV_KEYS = (
    "KEY",
    "TOKEN",
    "SECRET",
    "PASSWORD",
    "PASS",
    "AUTH",
    "BEARER",
    "PRIVATE",
)

_ENV_KEYS_TO_LOG = (
    "LOG_LEVEL",
    "DATABASE_URL",
    "GMAIL_API_URL",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "OPENAI_BASE_URL",
    "DISPLAY_CURRENCY",
    "DEFAULT_CURRENCY",
    "SEARCH_WINDOW_DAYS",
    "MAX_BODY_CHARS",
    "BATCH_SIZE",
    "BATCH_PAUSE_SECONDS",
)


def _should_mask_env_value(name: str, value: str) -> bool:
    upper_name = name.upper()
    if any(marker in upper_name for marker in _SENSITIVE_ENV_KEYS):
        return True
    if value.startswith(("sk-", "rk-", "ya29.")):
        return True
    if value.lower().startswith("bearer "):
        return True
    # Database URLs may embed credentials.
    if "://" in value and "@" in value:
        return True
    return False


def _mask_env_value(name: str, value: str) -> str:
    sanitized = value.replace("\r", "\\r").replace("\n", "\\n")
    if not _should_mask_env_value(name, sanitized):
        return sanitized
    if len(sanitized) <= 4:
        return "****"
    return f"{sanitized[:2]}...{sanitized[-2:]}"


def log_environment() -> None:
    logger.info("[ENV] Logging configured environment variables (masked where needed).")
    if _CONFIG_FILE_PATH and _CONFIG_FILE_VALUES:
        logger.info("[ENV] Config file: %s", _CONFIG_FILE_PATH)
    for key in _ENV_KEYS_TO_LOG:
        raw_value = os.getenv(key)
        value = "<unset>" if raw_value is None else _mask_env_value(key, raw_value)
        logger.info("[ENV] %s=%s", key, value)


DEFAULT_GMAIL_API_URL = "https://gmail.googleapis.com/gmail/v1"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_MAX_MESSAGES = 50


@dataclass(frozen=True)
class PipelineSettings:
    display_currency: str = "CAD"
    default_currency: str = "CAD"
    search_window_days: int = 90
    max_body_chars: int = 3000
    fetch_attempts: int = 3
    batch_size: int = 5
    batch_pause_seconds: float = 0.1
    amount_ceiling: Decimal = Decimal("1000000")
    default_confidence: float = 0.85

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        defaults = cls()
        confidence = get_env_float("DEFAULT_CONFIDENCE", defaults.default_confidence, min_value=0.0)
        if confidence > 1.0:
            logger.warning("[ENV] DEFAULT_CONFIDENCE=%s above 1.0, using default.", confidence)
            confidence = defaults.default_confidence
        return cls(
            display_currency=get_env_str("DISPLAY_CURRENCY", defaults.display_currency).upper(),
            default_currency=get_env_str("DEFAULT_CURRENCY", defaults.default_currency).upper(),
            search_window_days=get_env_int("SEARCH_WINDOW_DAYS", defaults.search_window_days, min_value=1),
            max_body_chars=get_env_int("MAX_BODY_CHARS", defaults.max_body_chars, min_value=100),
            fetch_attempts=get_env_int("FETCH_ATTEMPTS", defaults.fetch_attempts, min_value=1),
            batch_size=get_env_int("BATCH_SIZE", defaults.batch_size, min_value=1),
            batch_pause_seconds=get_env_float("BATCH_PAUSE_SECONDS", defaults.batch_pause_seconds, min_value=0.0),
            amount_ceiling=get_env_decimal("AMOUNT_CEILING", defaults.amount_ceiling),
            default_confidence=confidence,
        )


load_environment()

DATA_DIR = os.getenv("DATA_DIR", ".")
LOG_DIR = os.getenv("LOG_DIR")

ensure_dir(DATA_DIR)
ensure_dir(LOG_DIR)

DATABASE_URL = get_env_str(
    "DATABASE_URL",
    f"sqlite:///{os.path.join(DATA_DIR, 'inbox_ledger.db')}",
)
GMAIL_API_URL = get_env_str("GMAIL_API_URL", DEFAULT_GMAIL_API_URL).rstrip("/")
