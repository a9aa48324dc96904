"""
Configuration management for the proposal generation pipeline.

Settings come from environment variables, optionally seeded from a .env
file, and are grouped into dataclass sections: provider tiers, spending
limit, job post analysis and voice learning.
"""

import os
from typing import Any, Callable, Dict, List, Optional, Tuple
from pathlib import Path
from dotenv import load_dotenv
import logging
from dataclasses import dataclass, asdict

logger = logging.getLogger(__name__)

@dataclass
class LLMConfig:
    """Configuration for the two provider tiers."""
    openrouter_api_key: Optional[str] = None
    base_url: str = "https://openrouter.ai/api/v1"
    extraction_model: str = "anthropic/claude-3.5-haiku"
    generation_model: str = "anthropic/claude-3.5-sonnet"
    extraction_temperature: float = 0.2
    generation_temperature: float = 0.8
    extraction_max_tokens: int = 600
    generation_max_tokens: int = 1024
    request_timeout_seconds: float = 30.0
    max_attempts: int = 3
    backoff_base_seconds: float = 1.0
    backoff_multiplier: float = 2.0
    max_backoff_seconds: float = 8.0
    extraction_cache_size: int = 256
    # USD per 1k tokens
    extraction_input_price: float = 0.0008
    extraction_output_price: float = 0.004
    generation_input_price: float = 0.003
    generation_output_price: float = 0.015

@dataclass
class BudgetConfig:
    """Spending ceiling for provider calls."""
    ceiling: float = 10.0
    period: str = "monthly"
    allow_degraded: bool = False

@dataclass
class AnalyzerConfig:
    """Job post validation and confidence thresholds."""
    min_chars: int = 50
    max_chars: int = 100_000
    high_confidence_min_words: int = 100
    high_confidence_min_requirements: int = 2

@dataclass
class VoiceConfig:
    min_consistent_edits: int = 3
    decay: float = 0.7
    edit_window: int = 20
    humanization_intensity: str = "medium"
    max_rehumanize_attempts: int = 3

@dataclass
class AppConfig:
    """Top-level settings plus one section per pipeline component."""
    log_level: str = "INFO"
    log_to_file: bool = True
    data_dir: str = "data"
    db_path: str = ""

    llm: LLMConfig = None
    budget: BudgetConfig = None
    analyzer: AnalyzerConfig = None
    voice: VoiceConfig = None

    def __post_init__(self):
        self.llm = self.llm or LLMConfig()
        self.budget = self.budget or BudgetConfig()
        self.analyzer = self.analyzer or AnalyzerConfig()
        self.voice = self.voice or VoiceConfig()
        if not self.db_path:
            self.db_path = f"{self.data_dir}/proposal_forge.db"


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _lower(raw: str) -> str:
    return raw.strip().lower()


# (section, field, environment variable, parser); section None is AppConfig itself
ENV_SETTINGS: List[Tuple[Optional[str], str, str, Callable[[str], Any]]] = [
    ("llm", "openrouter_api_key", "OPENROUTER_API_KEY", str),
    ("llm", "base_url", "LLM_BASE_URL", str),
    ("llm", "extraction_model", "EXTRACTION_MODEL", str),
    ("llm", "generation_model", "GENERATION_MODEL", str),
    ("llm", "extraction_temperature", "EXTRACTION_TEMPERATURE", float),
    ("llm", "generation_temperature", "GENERATION_TEMPERATURE", float),
    ("llm", "extraction_max_tokens", "EXTRACTION_MAX_TOKENS", int),
    ("llm", "generation_max_tokens", "GENERATION_MAX_TOKENS", int),
    ("llm", "request_timeout_seconds", "LLM_TIMEOUT_SECONDS", float),
    ("llm", "max_attempts", "LLM_MAX_ATTEMPTS", int),
    ("llm", "backoff_base_seconds", "LLM_BACKOFF_SECONDS", float),
    ("llm", "backoff_multiplier", "LLM_BACKOFF_MULTIPLIER", float),
    ("llm", "max_backoff_seconds", "LLM_MAX_BACKOFF_SECONDS", float),
    ("llm", "extraction_cache_size", "EXTRACTION_CACHE_SIZE", int),
    ("llm", "extraction_input_price", "EXTRACTION_INPUT_PRICE", float),
    ("llm", "extraction_output_price", "EXTRACTION_OUTPUT_PRICE", float),
    ("llm", "generation_input_price", "GENERATION_INPUT_PRICE", float),
    ("llm", "generation_output_price", "GENERATION_OUTPUT_PRICE", float),
    ("budget", "ceiling", "BUDGET_CEILING", float),
    ("budget", "period", "BUDGET_PERIOD", _lower),
    ("budget", "allow_degraded", "ALLOW_DEGRADED_GENERATION", _parse_bool),
    ("analyzer", "min_chars", "JOB_POST_MIN_CHARS", int),
    ("analyzer", "max_chars", "JOB_POST_MAX_CHARS", int),
    ("analyzer", "high_confidence_min_words", "HIGH_CONFIDENCE_MIN_WORDS", int),
    ("voice", "min_consistent_edits", "VOICE_MIN_CONSISTENT_EDITS", int),
    ("voice", "decay", "VOICE_EDIT_DECAY", float),
    ("voice", "edit_window", "VOICE_EDIT_WINDOW", int),
    ("voice", "humanization_intensity", "HUMANIZATION_INTENSITY", _lower),
    ("voice", "max_rehumanize_attempts", "MAX_REHUMANIZE_ATTEMPTS", int),
    (None, "log_level", "LOG_LEVEL", str.upper),
    (None, "log_to_file", "LOG_TO_FILE", _parse_bool),
    (None, "data_dir", "DATA_DIR", str),
]

SENSITIVE_KEYS = {"openrouter_api_key"}


class ConfigManager:
    """Builds an AppConfig from the environment and checks it for problems."""

    def __init__(self, env_file: Optional[str] = None):
        self.env_file = env_file or ".env"
        self.config = AppConfig()
        self.load_config()

    def load_config(self) -> None:
        """Overlay environment variables on the dataclass defaults."""
        if Path(self.env_file).exists():
            load_dotenv(self.env_file)
            logger.info(f"Loaded environment from {self.env_file}")

        for section, field_name, env_var, parse in ENV_SETTINGS:
            raw = os.getenv(env_var)
            if raw is None or raw == "":
                continue
            target = getattr(self.config, section) if section else self.config
            try:
                setattr(target, field_name, parse(raw))
            except ValueError:
                logger.warning(f"Ignoring invalid {env_var}={raw!r}, keeping {getattr(target, field_name)!r}")

        # The database follows DATA_DIR unless pinned explicitly
        self.config.db_path = os.getenv("DB_PATH") or f"{self.config.data_dir}/proposal_forge.db"

        for directory in (Path(self.config.data_dir), Path(self.config.data_dir) / "logs"):
            directory.mkdir(parents=True, exist_ok=True)

        logger.debug("Configuration loaded")

    def get_llm_config(self) -> LLMConfig:
        return self.config.llm

    def get_budget_config(self) -> BudgetConfig:
        return self.config.budget

    def get_analyzer_config(self) -> AnalyzerConfig:
        return self.config.analyzer

    def get_voice_config(self) -> VoiceConfig:
        return self.config.voice

    def get_app_config(self) -> AppConfig:
        return self.config

    def validate_config(self) -> Dict[str, List[str]]:
        """
        Check the loaded settings.

        Returns:
            {"errors": [...], "warnings": [...]}; errors block generation,
            warnings only degrade it
        """
        errors: List[str] = []
        warnings: List[str] = []
        llm, budget, analyzer, voice = self.config.llm, self.config.budget, self.config.analyzer, self.config.voice

        if not llm.openrouter_api_key:
            errors.append("No LLM backend configured. Set OPENROUTER_API_KEY")
        if budget.ceiling <= 0:
            errors.append("BUDGET_CEILING must be positive")
        if budget.period not in ("monthly", "daily"):
            errors.append(f"Unknown BUDGET_PERIOD '{budget.period}' - use monthly or daily")
        if analyzer.min_chars >= analyzer.max_chars:
            errors.append("JOB_POST_MIN_CHARS must be below JOB_POST_MAX_CHARS")
        if llm.max_attempts < 1:
            errors.append("LLM_MAX_ATTEMPTS must be at least 1")

        if llm.extraction_model == llm.generation_model:
            warnings.append("Extraction and generation tiers use the same model - extraction will cost generation prices")
        if voice.min_consistent_edits < 2:
            warnings.append("VOICE_MIN_CONSISTENT_EDITS below 2 lets a single edit reshape the voice profile")
        if not 0 < voice.decay <= 1:
            warnings.append("VOICE_EDIT_DECAY outside (0, 1] - older edits will dominate")
        if voice.humanization_intensity not in ("off", "light", "medium", "heavy"):
            warnings.append(
                f"Unknown HUMANIZATION_INTENSITY '{voice.humanization_intensity}' - falling back to medium"
            )

        return {"errors": errors, "warnings": warnings}

    def mask_sensitive_config(self) -> Dict[str, Any]:
        """Config as a dict, safe to print."""
        masked = asdict(self.config)
        for section in masked.values():
            if not isinstance(section, dict):
                continue
            for key in SENSITIVE_KEYS & section.keys():
                value = section[key]
                if value:
                    section[key] = f"{value[:6]}..." if len(value) > 10 else "***"
        return masked


_config_manager: Optional[ConfigManager] = None

def get_config_manager() -> ConfigManager:
    """Shared manager, created on first use."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager

def get_config() -> AppConfig:
    return get_config_manager().get_app_config()

def get_llm_config() -> LLMConfig:
    return get_config_manager().get_llm_config()

def get_budget_config() -> BudgetConfig:
    return get_config_manager().get_budget_config()

def get_analyzer_config() -> AnalyzerConfig:
    return get_config_manager().get_analyzer_config()

def get_voice_config() -> VoiceConfig:
    return get_config_manager().get_voice_config()

def validate_config() -> Dict[str, List[str]]:
    return get_config_manager().validate_config()
