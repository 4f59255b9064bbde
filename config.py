"""Configuration management for the newsletter digest pipeline.

This module provides centralized configuration for all pipeline components.
All settings are loaded from environment variables with sensible defaults.

Environment Variables:
    Required (one, matching the extraction model provider):
        OPENAI_API_KEY: OpenAI API key ('openai:' models)
        GEMINI_API_KEY: Google Gemini API key ('google-gla:' models)

    Mailbox:
        USER_ID: Owner key for stored rows (default: 'default')
        GMAIL_ACCESS_TOKEN: OAuth access token for the Gmail API
        GMAIL_CLIENT_ID / GMAIL_CLIENT_SECRET / GMAIL_REFRESH_TOKEN:
            Used to exchange a fresh access token when none is given
        GMAIL_QUERY: Gmail search query (default: 'newer_than:1d')
        GMAIL_MAX_RESULTS: Messages listed per run
        GMAIL_MAX_MESSAGES: Messages fetched in full per run

    Models (PydanticAI format - provider:model):
        EXTRACTION_MODEL: Model for news item extraction
        ANALYSIS_MODEL: Model for cluster IDs and story analysis
        SUMMARY_MODEL: Model for period digests
        EMBEDDING_MODEL: sentence-transformers model name

    Clustering:
        STORY_WINDOW_HOURS: Trailing window of candidate stories (default: 168)
        STORY_WINDOW_LIMIT: Max candidate stories per match (default: 50)
        SIMILARITY_THRESHOLD: Cosine threshold for embedding matches
        CLUSTER_ID_LLM_ENABLED: Ask the LLM for cluster slugs
        STORY_ANALYSIS_ENABLED: Refine stories with the LLM as they grow

    Rate Limits (per user, per hour):
        RATE_LIMIT_NEWSLETTERS, RATE_LIMIT_EXTRACTION, RATE_LIMIT_ANALYSIS

    Output:
        DB_PATH: SQLite database file path
        REPORTS_DIR: Directory for markdown digests
        LOG_DIR: Directory for log files

    Optional Features:
        ENABLE_LOGFIRE: Enable Logfire/OpenTelemetry tracing

    Logging:
        LOG_LEVEL: Logging verbosity (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        LOG_BACKUP_COUNT: Number of rotated log files to keep
        LOG_MAX_BYTES: Max log file size in bytes (0 = time-based rotation)
        LOG_FORMAT: Log format ('text' or 'json' for structured logging)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path


def _env(key: str, default: str = "") -> str:
    """Get string environment variable with optional default."""
    return os.environ.get(key, default)


def _env_int(key: str, default: int) -> int:
    """Get integer environment variable with default.

    Raises:
        ValueError: If value is set but cannot be parsed as integer
    """
    val = os.environ.get(key)
    if not val:
        return default
    try:
        return int(val)
    except ValueError:
        raise ValueError(f"Invalid integer value for {key}: '{val}'")


def _env_float(key: str, default: float) -> float:
    """Get float environment variable with default.

    Raises:
        ValueError: If value is set but cannot be parsed as float
    """
    val = os.environ.get(key)
    if not val:
        return default
    try:
        return float(val)
    except ValueError:
        raise ValueError(f"Invalid float value for {key}: '{val}'")


def _env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable with default.

    Recognizes truthy values: '1', 'true', 'yes', 'on'
    Recognizes falsy values: '0', 'false', 'no', 'off'
    """
    val = os.environ.get(key, "").lower()
    if val in ("1", "true", "yes", "on"):
        return True
    if val in ("0", "false", "no", "off"):
        return False
    return default


DEFAULT_MODEL = "openai:gpt-4o-mini"
DEFAULT_EMBEDDING_MODEL = "BAAI/bge-small-en-v1.5"

# Provider prefix -> attribute holding its API key
_PROVIDER_KEYS = {
    "openai": "openai_api_key",
    "google-gla": "gemini_api_key",
}


@dataclass
class Config:
    """Application configuration loaded from environment variables.

    Example:
        >>> config = Config.load()
        >>> if error := config.validate():
        ...     print(f"Config error: {error}")
    """

    # === Credentials ===
    openai_api_key: str = ""  # OPENAI_API_KEY
    gemini_api_key: str = ""  # GEMINI_API_KEY

    # === Mailbox ===
    user_id: str = "default"  # USER_ID - Owner key for all stored rows
    gmail_access_token: str = ""  # GMAIL_ACCESS_TOKEN
    gmail_client_id: str = ""  # GMAIL_CLIENT_ID
    gmail_client_secret: str = ""  # GMAIL_CLIENT_SECRET
    gmail_refresh_token: str = ""  # GMAIL_REFRESH_TOKEN
    gmail_query: str = "newer_than:1d"  # GMAIL_QUERY
    gmail_max_results: int = 10  # GMAIL_MAX_RESULTS - Messages listed
    gmail_max_messages: int = 5  # GMAIL_MAX_MESSAGES - Messages fetched in full
    content_max_chars: int = 5000  # CONTENT_MAX_CHARS - Newsletter body cap
    request_timeout: int = 30  # REQUEST_TIMEOUT - HTTP timeout (seconds)

    # === AI Models ===
    extraction_model: str = DEFAULT_MODEL  # EXTRACTION_MODEL
    analysis_model: str = DEFAULT_MODEL  # ANALYSIS_MODEL
    summary_model: str = DEFAULT_MODEL  # SUMMARY_MODEL
    embedding_model: str = DEFAULT_EMBEDDING_MODEL  # EMBEDDING_MODEL

    # === Story Clustering ===
    story_window_hours: int = 168  # STORY_WINDOW_HOURS - 7 days
    story_window_limit: int = 50  # STORY_WINDOW_LIMIT
    similarity_threshold: float = 0.85  # SIMILARITY_THRESHOLD
    cluster_id_llm_enabled: bool = True  # CLUSTER_ID_LLM_ENABLED
    story_analysis_enabled: bool = True  # STORY_ANALYSIS_ENABLED

    # === Consensus Feed ===
    consensus_threshold: float = 0.85  # CONSENSUS_THRESHOLD
    consensus_max_per_query: int = 20  # CONSENSUS_MAX_PER_QUERY
    consensus_min_mentions: int = 2  # CONSENSUS_MIN_MENTIONS

    # === Rate Limits (per user per hour) ===
    rate_limit_newsletters: int = 20  # RATE_LIMIT_NEWSLETTERS
    rate_limit_extraction: int = 50  # RATE_LIMIT_EXTRACTION
    rate_limit_analysis: int = 100  # RATE_LIMIT_ANALYSIS

    # === Storage ===
    db_path: Path = field(default_factory=lambda: Path("digest.db"))  # DB_PATH

    # === Pipeline Behavior ===
    poll_interval_seconds: int = 900  # POLL_INTERVAL_SECONDS

    # === Output Directories ===
    log_dir: Path = field(default_factory=lambda: Path("log"))  # LOG_DIR
    reports_dir: Path = field(default_factory=lambda: Path("reports"))  # REPORTS_DIR

    # === Logging Configuration ===
    log_level: str = "INFO"  # LOG_LEVEL
    log_backup_count: int = 30  # LOG_BACKUP_COUNT
    log_max_bytes: int = 0  # LOG_MAX_BYTES - 0 = time-based rotation
    log_format: str = "text"  # LOG_FORMAT - 'text' or 'json'

    # === Optional: Observability ===
    enable_logfire: bool = False  # ENABLE_LOGFIRE
    logfire_token: str = ""  # LOGFIRE_TOKEN

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls(
            openai_api_key=_env("OPENAI_API_KEY"),
            gemini_api_key=_env("GEMINI_API_KEY"),
            user_id=_env("USER_ID", "default"),
            gmail_access_token=_env("GMAIL_ACCESS_TOKEN"),
            gmail_client_id=_env("GMAIL_CLIENT_ID"),
            gmail_client_secret=_env("GMAIL_CLIENT_SECRET"),
            gmail_refresh_token=_env("GMAIL_REFRESH_TOKEN"),
            gmail_query=_env("GMAIL_QUERY", "newer_than:1d"),
            gmail_max_results=_env_int("GMAIL_MAX_RESULTS", 10),
            gmail_max_messages=_env_int("GMAIL_MAX_MESSAGES", 5),
            content_max_chars=_env_int("CONTENT_MAX_CHARS", 5000),
            request_timeout=_env_int("REQUEST_TIMEOUT", 30),
            extraction_model=_env("EXTRACTION_MODEL", DEFAULT_MODEL),
            analysis_model=_env("ANALYSIS_MODEL", DEFAULT_MODEL),
            summary_model=_env("SUMMARY_MODEL", DEFAULT_MODEL),
            embedding_model=_env("EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL),
            story_window_hours=_env_int("STORY_WINDOW_HOURS", 168),
            story_window_limit=_env_int("STORY_WINDOW_LIMIT", 50),
            similarity_threshold=_env_float("SIMILARITY_THRESHOLD", 0.85),
            cluster_id_llm_enabled=_env_bool("CLUSTER_ID_LLM_ENABLED", True),
            story_analysis_enabled=_env_bool("STORY_ANALYSIS_ENABLED", True),
            consensus_threshold=_env_float("CONSENSUS_THRESHOLD", 0.85),
            consensus_max_per_query=_env_int("CONSENSUS_MAX_PER_QUERY", 20),
            consensus_min_mentions=_env_int("CONSENSUS_MIN_MENTIONS", 2),
            rate_limit_newsletters=_env_int("RATE_LIMIT_NEWSLETTERS", 20),
            rate_limit_extraction=_env_int("RATE_LIMIT_EXTRACTION", 50),
            rate_limit_analysis=_env_int("RATE_LIMIT_ANALYSIS", 100),
            db_path=Path(_env("DB_PATH", "digest.db")),
            poll_interval_seconds=_env_int("POLL_INTERVAL_SECONDS", 900),
            log_dir=Path(_env("LOG_DIR", "log")),
            reports_dir=Path(_env("REPORTS_DIR", "reports")),
            enable_logfire=_env_bool("ENABLE_LOGFIRE", False),
            logfire_token=_env("LOGFIRE_TOKEN"),
            log_level=_env("LOG_LEVEL", "INFO").upper(),
            log_backup_count=_env_int("LOG_BACKUP_COUNT", 30),
            log_max_bytes=_env_int("LOG_MAX_BYTES", 0),
            log_format=_env("LOG_FORMAT", "text").lower(),
        )

    @property
    def rate_limits(self) -> dict[str, int]:
        """Hourly quotas keyed by rate-limited operation."""
        return {
            "newsletters": self.rate_limit_newsletters,
            "extraction": self.rate_limit_extraction,
            "analysis": self.rate_limit_analysis,
        }

    @property
    def has_gmail_credentials(self) -> bool:
        """True if an access token is set or can be obtained by refresh."""
        if self.gmail_access_token:
            return True
        return bool(self.gmail_client_id and self.gmail_client_secret and self.gmail_refresh_token)

    def validate(self) -> str | None:
        """Validate configuration for required fields and valid values.

        Checks:
            - An API key is set for the extraction model's provider
            - Thresholds are within (0, 1]
            - Numeric values are positive

        Returns:
            Error message string if invalid, None if valid.
        """
        provider = self.extraction_model.split(":", 1)[0]
        is_local = provider == "openai" and "@" in self.extraction_model
        key_attr = _PROVIDER_KEYS.get(provider)
        if key_attr and not is_local and not getattr(self, key_attr):
            return f"{key_attr.upper()} environment variable is required for {self.extraction_model}"
        if not self.user_id:
            return "USER_ID must not be empty"
        if not 0 < self.similarity_threshold <= 1:
            return "SIMILARITY_THRESHOLD must be in (0, 1]"
        if not 0 < self.consensus_threshold <= 1:
            return "CONSENSUS_THRESHOLD must be in (0, 1]"
        if self.story_window_hours <= 0:
            return "STORY_WINDOW_HOURS must be positive"
        if self.story_window_limit <= 0:
            return "STORY_WINDOW_LIMIT must be positive"
        if self.gmail_max_results <= 0 or self.gmail_max_messages <= 0:
            return "GMAIL_MAX_RESULTS and GMAIL_MAX_MESSAGES must be positive"
        if self.content_max_chars <= 0:
            return "CONTENT_MAX_CHARS must be positive"
        if self.poll_interval_seconds <= 0:
            return "POLL_INTERVAL_SECONDS must be positive"
        if any(limit <= 0 for limit in self.rate_limits.values()):
            return "RATE_LIMIT_* values must be positive"
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            return f"Invalid LOG_LEVEL '{self.log_level}' - must be DEBUG, INFO, WARNING, ERROR, or CRITICAL"
        if self.log_format not in ("text", "json"):
            return f"Invalid LOG_FORMAT '{self.log_format}' - must be 'text' or 'json'"
        if self.log_backup_count < 0:
            return "LOG_BACKUP_COUNT must be non-negative"
        if self.log_max_bytes < 0:
            return "LOG_MAX_BYTES must be non-negative"
        return None

    def validate_mailbox(self) -> str | None:
        """Validate that Gmail credentials are available for ingestion."""
        if not self.has_gmail_credentials:
            return (
                "GMAIL_ACCESS_TOKEN (or GMAIL_CLIENT_ID, GMAIL_CLIENT_SECRET and "
                "GMAIL_REFRESH_TOKEN) environment variables are required"
            )
        return None
