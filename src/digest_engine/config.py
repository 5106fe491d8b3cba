"""Configuration management."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class CacheConfig:
    """Cache layer settings."""
    url: Optional[str] = None
    socket_timeout: float = 2.0
    watchlist_ttl: int = 1800
    persona_ttl: int = 3600


@dataclass
class WorkerConfig:
    """Background worker pool settings."""
    concurrency: int = 3
    poll_interval: float = 5.0
    max_attempts: int = 3
    retry_delay: float = 30.0
    job_timeout: float = 30.0


@dataclass
class DigestConfig:
    """Digest orchestration settings."""
    max_items: int = 10
    candidate_limit: int = 100
    ttl_seconds: int = 900
    default_lookback_hours: int = 24
    window_step_seconds: int = 60


@dataclass
class ScoringConfig:
    """Scoring weights and constants."""
    weights: dict = field(default_factory=lambda: {
        "recency": 0.35,
        "relevance": 0.30,
        "affinity": 0.15,
        "novelty": 0.10,
        "provenance": 0.10,
    })
    novelty: float = 0.8
    horizon_hours: float = 24.0


@dataclass
class RateLimitConfig:
    """Digest recomputation budget per user."""
    enabled: bool = False
    limit: int = 10
    window_seconds: int = 60


@dataclass
class ClaudeConfig:
    """Claude API settings."""
    enabled: bool = False
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 1024
    temperature: float = 0.2
    max_retries: int = 3
    initial_retry_delay: float = 2.0
    request_delay: float = 0.5


@dataclass
class PromptsConfig:
    """Prompts for the summarization passes."""
    index: dict = field(default_factory=lambda: {
        "system": "You analyze social posts for a personalized digest. Reply with JSON only.",
        "user": (
            "Interests: {watchlist}\nTags: {tags}\n\nPost:\n{content}\n\n"
            "Return a JSON object with keys main_topic (string), key_concepts "
            "(1-5 strings), relevance_level (low|medium|high), content_type (string), "
            "entities (list of strings), relevance_score (number 0-1)."
        ),
    })
    preview: dict = field(default_factory=lambda: {
        "system": "You write one-sentence previews. Reply with the sentence only.",
        "user": (
            "Interests: {watchlist}\nMain topic: {main_topic}\nKey concepts: {key_concepts}\n\n"
            "Post:\n{content}\n\nWrite a single sentence of at most 120 characters "
            "that best matches the interests."
        ),
    })
    refine: dict = field(default_factory=lambda: {
        "system": "You write short digest lines. Reply with the line only.",
        "user": (
            "Preview: {preview}\nInterests: {watchlist}\nMain topic: {main_topic}\n"
            "Relevance: {relevance_level}\n\nWrite exactly: "
            "TL;DR: <preview, at most 60 characters> (Relevant because: <reason>)"
        ),
    })


@dataclass
class PathsConfig:
    """Path settings."""
    database: Path = Path("data/digest_engine.db")


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    json: bool = False


@dataclass
class Settings:
    """Application settings."""

    # Secrets (from environment only)
    anthropic_api_key: str = ""

    # Config sections
    cache: CacheConfig = field(default_factory=CacheConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    digest: DigestConfig = field(default_factory=DigestConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    claude: ClaudeConfig = field(default_factory=ClaudeConfig)
    prompts: PromptsConfig = field(default_factory=PromptsConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def database_path(self) -> Path:
        return self.paths.database

    @property
    def claude_enabled(self) -> bool:
        return self.claude.enabled and bool(self.anthropic_api_key)


def load_config(config_path: Path = Path("config.yaml")) -> dict:
    """Load configuration from YAML file."""
    if not config_path.exists():
        return {}

    with open(config_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _apply(section: object, values: dict) -> None:
    for key, value in values.items():
        if not hasattr(section, key):
            raise ValueError(f"Unknown setting '{key}' in section {type(section).__name__}")
        setattr(section, key, value)


def get_settings(config_path: Path = Path("config.yaml")) -> Settings:
    """Get application settings from YAML config and environment."""
    config = load_config(config_path)

    settings = Settings(anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""))

    for name in ("cache", "worker", "digest", "rate_limit", "claude", "logging"):
        if name in config:
            _apply(getattr(settings, name), config[name])

    if "scoring" in config:
        scoring = dict(config["scoring"])
        weights = scoring.pop("weights", None)
        if weights:
            settings.scoring.weights = {**settings.scoring.weights, **weights}
        _apply(settings.scoring, scoring)

    if "paths" in config:
        for key, value in config["paths"].items():
            _apply(settings.paths, {key: Path(value)})

    if "prompts" in config:
        settings.prompts = PromptsConfig(**config["prompts"])

    # Environment overrides for endpoints
    redis_url = os.getenv("REDIS_URL")
    if redis_url:
        settings.cache.url = redis_url

    database = os.getenv("DIGEST_ENGINE_DB")
    if database:
        settings.paths.database = Path(database)

    log_json = os.getenv("DIGEST_ENGINE_LOG_JSON")
    if log_json is not None:
        settings.logging.json = log_json.strip().lower() in TRUTHY

    return settings
