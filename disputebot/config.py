"""Configuration loading and environment setup."""
import time
from pathlib import Path
from typing import Dict, Any, Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError
from .utils.env import get_bool, get_float, get_int, get_str
from .utils.logging import get_logger

logger = get_logger(__name__)

# Load environment variables from .env file with explicit path
load_dotenv(dotenv_path=Path.cwd() / '.env')

# Also try loading from the project root in case we're running from a subdirectory
load_dotenv(dotenv_path=Path(__file__).parent.parent / '.env')

PROMPTS_DIR = Path(__file__).parent / "prompts"

# Global config cache
_config_cache: Optional[Dict[str, Any]] = None
_cache_timestamp: float = 0
CACHE_TTL = 300  # 5 minute cache TTL


def load_config(reload: bool = False) -> Dict[str, Any]:
    """
    Load configuration from environment variables with caching.
    """
    global _config_cache, _cache_timestamp

    current_time = time.time()
    if not reload and _config_cache and (current_time - _cache_timestamp) < CACHE_TTL:
        return _config_cache

    config = {
        # TELEGRAM SETTINGS
        "TELEGRAM_TOKEN": get_str("TELEGRAM_TOKEN"),
        "TELEGRAM_API_BASE": get_str("TELEGRAM_API_BASE", "https://api.telegram.org"),
        "TELEGRAM_WEBHOOK_SECRET": get_str("TELEGRAM_WEBHOOK_SECRET"),
        "WEBHOOK_URL": get_str("WEBHOOK_URL"),

        # OPENAI SETTINGS
        "OPENAI_API_KEY": get_str("OPENAI_API_KEY"),
        "OPENAI_API_BASE": get_str("OPENAI_API_BASE", "https://api.openai.com/v1"),
        "OPENAI_TEXT_MODEL": get_str("OPENAI_TEXT_MODEL", "gpt-4.1-mini"),
        "TEXTGEN_TIMEOUT_SECONDS": get_float("TEXTGEN_TIMEOUT_SECONDS", 60.0),

        # PROMPT TEMPLATES
        "PROMPT_FILE": get_str("PROMPT_FILE"),
        "PROMPT_TEMPLATE_DIR": Path(get_str("PROMPT_TEMPLATE_DIR", str(PROMPTS_DIR))),
        "PROMPT_TEMPLATE_VERSION": get_str("PROMPT_TEMPLATE_VERSION", "v1"),

        # SESSIONS
        "SESSION_IDLE_TIMEOUT_S": get_float("SESSION_IDLE_TIMEOUT_S", 180.0),
        "SESSION_SWEEP_INTERVAL_S": get_float("SESSION_SWEEP_INTERVAL_S", 60.0),

        # INVOCATION
        "INVOKE_MAX_RETRIES": get_int("INVOKE_MAX_RETRIES", 2),
        "INVOKE_RETRY_DELAY_S": get_float("INVOKE_RETRY_DELAY_S", 0.5),

        # MEDIA / EXTRACTION
        "MEDIA_DOWNLOAD_TIMEOUT_S": get_float("MEDIA_DOWNLOAD_TIMEOUT_S", 30.0),
        "MAX_MEDIA_BYTES": get_int("MAX_MEDIA_BYTES", 20 * 1024 * 1024),
        "EXTRACT_MAX_CHARS": get_int("EXTRACT_MAX_CHARS", 8000),
        "EXTRACTION_WORKERS": get_int("EXTRACTION_WORKERS", 2),
        "OCR_ENABLE": get_bool("OCR_ENABLE", True),
        "OCR_LANGUAGES": get_str("OCR_LANGUAGES", "eng+ara"),

        # STT SETTINGS
        "STT_ENABLE": get_bool("STT_ENABLE", False),
        "WHISPER_MODEL": get_str("WHISPER_MODEL", "whisper-1"),

        # STREAMING REPLIES
        "STREAMING_ENABLE": get_bool("STREAMING_ENABLE", True),
        "STREAMING_MIN_CHARS": get_int("STREAMING_MIN_CHARS", 150),
        "STREAMING_MAX_BUFFER_MS": get_int("STREAMING_MAX_BUFFER_MS", 1500),
        "EDIT_COALESCE_MIN_MS": get_int("EDIT_COALESCE_MIN_MS", 700),

        # SERVER
        "HOST": get_str("HOST", "0.0.0.0"),
        "PORT": get_int("PORT", 3000),
        "LOG_LEVEL": get_str("LOG_LEVEL", "INFO"),
        "LOG_JSONL_PATH": get_str("LOG_JSONL_PATH", "logs/bot.jsonl"),
        "THIRD_PARTY_LOG_LEVEL": get_str("THIRD_PARTY_LOG_LEVEL", "WARNING"),
    }

    _config_cache = config
    _cache_timestamp = current_time
    logger.debug(f"✅ Configuration cached for {CACHE_TTL}s")

    return config


def validate_required_env(config: Optional[Dict[str, Any]] = None) -> None:
    """
    Validate that the variables the bridge cannot run without are present.
    """
    config = config or load_config()

    if not config.get("OPENAI_API_KEY"):
        raise ConfigurationError("Missing required environment variable: OPENAI_API_KEY")

    if not config.get("TELEGRAM_TOKEN"):
        logger.warning("⚠️ TELEGRAM_TOKEN not set - replies cannot be delivered")

    template_dir = Path(config["PROMPT_TEMPLATE_DIR"]) / config["PROMPT_TEMPLATE_VERSION"]
    if not template_dir.is_dir():
        raise ConfigurationError(f"Prompt template directory not found: {template_dir}")

    prompt_file = config.get("PROMPT_FILE")
    if prompt_file and not Path(prompt_file).exists():
        raise ConfigurationError(f"PROMPT_FILE not found: {prompt_file}")
