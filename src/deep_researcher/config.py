"""
Configuration for deep-researcher.

Supports configuration via:
1. Environment variables (highest priority)
2. TOML config file (deep-researcher.toml)
3. Default values (lowest priority)

Environment variables:
- DEEP_RESEARCHER_CONFIG_FILE: Path to TOML config file
- DEEP_RESEARCHER_LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
- DEEP_RESEARCHER_STRUCTURED_LOGGING: JSON-style log lines (true/false)
- DEEP_RESEARCHER_MODEL: Chat model used for completion functions
- DEEP_RESEARCHER_BASE_URL: OpenAI-compatible API base URL
- DEEP_RESEARCHER_MAX_CLARIFICATION_ROUNDS: Clarification round cap
- DEEP_RESEARCHER_VALIDATION_ENABLED: Run the validation/correction pass
- DEEP_RESEARCHER_EXPANSION_ENABLED: Run the section expansion pass
- DEEP_RESEARCHER_CACHE_ENABLED: Use the semantic result cache
- DEEP_RESEARCHER_TASK_TIMEOUT: Timeout (seconds) for background runs
- OPENAI_API_KEY: Completion API key
- TAVILY_API_KEY: Tavily search API key

Example deep-researcher.toml:

    [logging]
    level = "DEBUG"

    [completion]
    model = "gpt-4o-mini"

    [research]
    max_clarification_rounds = 2
    expansion_enabled = true
"""

import logging
import os
from dataclasses import dataclass, field
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_package_version
from pathlib import Path
from typing import Any, Dict, Optional

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # Python < 3.11 fallback


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILES = ("deep-researcher.toml", ".deep-researcher.toml")


def _get_version() -> str:
    """Get package version from metadata (single source of truth: pyproject.toml)."""
    try:
        return get_package_version("deep-researcher")
    except PackageNotFoundError:
        return "0.1.0"  # Fallback for dev without install


_PACKAGE_VERSION = _get_version()


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"true", "1", "yes", "on"}


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


@dataclass
class ResearchConfig:
    """Tuning for the research pipeline.

    Attributes:
        max_clarification_rounds: Rounds after which progression is forced
        min_subtask_description_length: Descriptions this short or shorter are dropped
        batch_threshold: Above this many summaries, synthesis runs in batches
        batch_size: Summaries per synthesis batch
        synthesis_timeout: Overall bound (seconds) on the primary synthesis path
        polish_min_words: Final answers longer than this are polished
        polish_retention_ratio: Minimum word share a polished answer must keep
        validation_enabled: Run the validation/correction pass during review
        expansion_enabled: Run section expansion during review
        expansion_word_target: Drafts shorter than this are eligible for expansion
        session_ttl_seconds: Sliding idle expiry for sessions
        cache_enabled: Use the semantic result cache
        cache_ttl_hours: Sliding expiry for cache entries
        task_timeout: Optional timeout (seconds) for background runs
    """

    max_clarification_rounds: int = 3
    min_subtask_description_length: int = 30
    batch_threshold: int = 10
    batch_size: int = 5
    synthesis_timeout: float = 300.0
    polish_min_words: int = 1000
    polish_retention_ratio: float = 0.9
    validation_enabled: bool = True
    expansion_enabled: bool = False
    expansion_word_target: int = 2000
    session_ttl_seconds: float = 3600.0
    cache_enabled: bool = True
    cache_ttl_hours: float = 24.0
    task_timeout: Optional[float] = None

    @classmethod
    def from_toml_dict(cls, data: Dict[str, Any]) -> "ResearchConfig":
        """Create config from TOML dict (typically [research] section).

        Args:
            data: Dict from TOML parsing

        Returns:
            ResearchConfig instance
        """
        defaults = cls()
        return cls(
            max_clarification_rounds=int(
                data.get("max_clarification_rounds", defaults.max_clarification_rounds)
            ),
            min_subtask_description_length=int(
                data.get(
                    "min_subtask_description_length",
                    defaults.min_subtask_description_length,
                )
            ),
            batch_threshold=int(data.get("batch_threshold", defaults.batch_threshold)),
            batch_size=int(data.get("batch_size", defaults.batch_size)),
            synthesis_timeout=float(
                data.get("synthesis_timeout", defaults.synthesis_timeout)
            ),
            polish_min_words=int(data.get("polish_min_words", defaults.polish_min_words)),
            polish_retention_ratio=float(
                data.get("polish_retention_ratio", defaults.polish_retention_ratio)
            ),
            validation_enabled=_parse_bool(
                data.get("validation_enabled", defaults.validation_enabled)
            ),
            expansion_enabled=_parse_bool(
                data.get("expansion_enabled", defaults.expansion_enabled)
            ),
            expansion_word_target=int(
                data.get("expansion_word_target", defaults.expansion_word_target)
            ),
            session_ttl_seconds=float(
                data.get("session_ttl_seconds", defaults.session_ttl_seconds)
            ),
            cache_enabled=_parse_bool(data.get("cache_enabled", defaults.cache_enabled)),
            cache_ttl_hours=float(data.get("cache_ttl_hours", defaults.cache_ttl_hours)),
            task_timeout=_optional_float(data.get("task_timeout")),
        )


@dataclass
class CompletionConfig:
    """OpenAI-compatible chat completion settings."""

    base_url: str = "https://api.openai.com/v1"
    api_key: Optional[str] = None
    model: str = "gpt-4o-mini"
    timeout: float = 120.0
    max_retries: int = 3
    temperature: Optional[float] = 0.3

    @classmethod
    def from_toml_dict(cls, data: Dict[str, Any]) -> "CompletionConfig":
        defaults = cls()
        temperature = data.get("temperature", defaults.temperature)
        return cls(
            base_url=str(data.get("base_url", defaults.base_url)),
            api_key=data.get("api_key"),
            model=str(data.get("model", defaults.model)),
            timeout=float(data.get("timeout", defaults.timeout)),
            max_retries=int(data.get("max_retries", defaults.max_retries)),
            temperature=_optional_float(temperature),
        )


@dataclass
class SearchConfig:
    """Tavily search settings."""

    api_key: Optional[str] = None
    search_depth: str = "advanced"
    max_results: int = 5
    timeout: float = 30.0
    max_retries: int = 3

    @classmethod
    def from_toml_dict(cls, data: Dict[str, Any]) -> "SearchConfig":
        defaults = cls()
        return cls(
            api_key=data.get("api_key"),
            search_depth=str(data.get("search_depth", defaults.search_depth)),
            max_results=int(data.get("max_results", defaults.max_results)),
            timeout=float(data.get("timeout", defaults.timeout)),
            max_retries=int(data.get("max_retries", defaults.max_retries)),
        )


@dataclass
class ServerConfig:
    """Server configuration with support for env vars and TOML overrides."""

    # Logging configuration
    log_level: str = "INFO"
    structured_logging: bool = True

    # Server configuration
    server_name: str = "deep-researcher"
    server_version: str = field(default_factory=lambda: _PACKAGE_VERSION)

    research: ResearchConfig = field(default_factory=ResearchConfig)
    completion: CompletionConfig = field(default_factory=CompletionConfig)
    search: SearchConfig = field(default_factory=SearchConfig)

    @classmethod
    def from_env(cls, config_file: Optional[str] = None) -> "ServerConfig":
        """
        Create configuration from environment variables and optional TOML file.

        Priority (highest to lowest):
        1. Environment variables
        2. TOML config file
        3. Default values
        """
        config = cls()

        toml_path = config_file or os.environ.get("DEEP_RESEARCHER_CONFIG_FILE")
        if toml_path:
            config._load_toml(Path(toml_path))
        else:
            for default_path in DEFAULT_CONFIG_FILES:
                if Path(default_path).exists():
                    config._load_toml(Path(default_path))
                    break

        config._load_env()

        return config

    def _load_toml(self, path: Path) -> None:
        """Load configuration from TOML file."""
        if not path.exists():
            logger.warning("Config file not found: %s", path)
            return

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.error("Error loading config file %s: %s", path, e)
            return

        try:
            if "logging" in data:
                log = data["logging"]
                if "level" in log:
                    self.log_level = str(log["level"]).upper()
                if "structured" in log:
                    self.structured_logging = _parse_bool(log["structured"])

            if "server" in data:
                srv = data["server"]
                if "name" in srv:
                    self.server_name = srv["name"]
                if "version" in srv:
                    self.server_version = srv["version"]

            if "research" in data:
                self.research = ResearchConfig.from_toml_dict(data["research"])

            if "completion" in data:
                self.completion = CompletionConfig.from_toml_dict(data["completion"])

            if "search" in data:
                self.search = SearchConfig.from_toml_dict(data["search"])

        except (TypeError, ValueError) as e:
            logger.error("Invalid value in config file %s: %s", path, e)

    def _load_env(self) -> None:
        """Load configuration from environment variables."""
        if level := os.environ.get("DEEP_RESEARCHER_LOG_LEVEL"):
            self.log_level = level.upper()

        if structured := os.environ.get("DEEP_RESEARCHER_STRUCTURED_LOGGING"):
            self.structured_logging = _parse_bool(structured)

        # Collaborator credentials
        if openai_key := os.environ.get("OPENAI_API_KEY"):
            self.completion.api_key = openai_key
        if tavily_key := os.environ.get("TAVILY_API_KEY"):
            self.search.api_key = tavily_key

        if model := os.environ.get("DEEP_RESEARCHER_MODEL"):
            self.completion.model = model
        if base_url := os.environ.get("DEEP_RESEARCHER_BASE_URL"):
            self.completion.base_url = base_url

        # Research settings
        if rounds := os.environ.get("DEEP_RESEARCHER_MAX_CLARIFICATION_ROUNDS"):
            try:
                self.research.max_clarification_rounds = int(rounds)
            except ValueError:
                logger.warning("Ignoring invalid DEEP_RESEARCHER_MAX_CLARIFICATION_ROUNDS: %s", rounds)
        if validation := os.environ.get("DEEP_RESEARCHER_VALIDATION_ENABLED"):
            self.research.validation_enabled = _parse_bool(validation)
        if expansion := os.environ.get("DEEP_RESEARCHER_EXPANSION_ENABLED"):
            self.research.expansion_enabled = _parse_bool(expansion)
        if cache_enabled := os.environ.get("DEEP_RESEARCHER_CACHE_ENABLED"):
            self.research.cache_enabled = _parse_bool(cache_enabled)
        if task_timeout := os.environ.get("DEEP_RESEARCHER_TASK_TIMEOUT"):
            try:
                self.research.task_timeout = float(task_timeout)
            except ValueError:
                logger.warning("Ignoring invalid DEEP_RESEARCHER_TASK_TIMEOUT: %s", task_timeout)

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        level = getattr(logging, self.log_level, logging.INFO)

        if self.structured_logging:
            # JSON-style structured logging
            formatter = logging.Formatter(
                '{"timestamp":"%(asctime)s","level":"%(levelname)s",'
                '"logger":"%(name)s","message":"%(message)s"}'
            )
        else:
            formatter = logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            )

        handler = logging.StreamHandler()
        handler.setFormatter(formatter)

        root_logger = logging.getLogger("deep_researcher")
        root_logger.setLevel(level)
        root_logger.addHandler(handler)


# Global configuration instance
_config: Optional[ServerConfig] = None


def get_config() -> ServerConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = ServerConfig.from_env()
    return _config


def set_config(config: ServerConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
