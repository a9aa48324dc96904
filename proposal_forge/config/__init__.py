"""
Configuration module for the proposal generation pipeline.

Exposes the sqlite persistence boundary and environment-driven settings.
"""

from .database import DatabaseManager
from .settings import (
    ConfigManager,
    AppConfig,
    LLMConfig,
    BudgetConfig,
    AnalyzerConfig,
    VoiceConfig,
    get_config,
    get_llm_config,
    get_budget_config,
    get_analyzer_config,
    get_voice_config,
    validate_config,
    get_config_manager
)

__all__ = [
    'DatabaseManager',
    'ConfigManager',
    'AppConfig',
    'LLMConfig',
    'BudgetConfig',
    'AnalyzerConfig',
    'VoiceConfig',
    'get_config',
    'get_llm_config',
    'get_budget_config',
    'get_analyzer_config',
    'get_voice_config',
    'validate_config',
    'get_config_manager'
]
