"""
Configuration management for the media plan pipeline.
Handles API keys, model selection, generation settings and retry bounds.
"""

import os
import streamlit as st
from typing import Dict, Any, Optional, Tuple
from dataclasses import dataclass


# Per-1M-token pricing (input rate, output rate, flat per-request fee) in USD
MODEL_PRICING: Dict[str, Tuple[float, float, float]] = {
    'gpt-4.1': (2.00, 8.00, 0.0),
    'gpt-4.1-mini': (0.40, 1.60, 0.0),
    'gpt-4o': (2.50, 10.00, 0.0),
    'gpt-4o-mini': (0.15, 0.60, 0.0),
    'o3-mini': (1.10, 4.40, 0.0),
}
DEFAULT_PRICING: Tuple[float, float, float] = (3.00, 15.00, 0.0)

# Max output tokens per generated section
SECTION_MAX_TOKENS: Dict[str, int] = {
    'platform_strategy': 4096,
    'icp_targeting': 4096,
    'kpi_targets': 3072,
    'campaign_structure': 6000,
    'creative_strategy': 5000,
    'campaign_phases': 4000,
    'budget_allocation': 4500,
    'executive_summary': 2000,
    'risk_monitoring': 3500,
}


@dataclass
class AppConfig:
    """Application configuration settings."""
    openai_api_key: str
    research_model: str = "gpt-4.1"
    synthesis_model: str = "gpt-4.1"
    research_temperature: float = 0.3
    synthesis_temperature: float = 0.4
    research_max_tokens: int = 8192
    stagger_delay_seconds: float = 5.0
    schema_max_retries: int = 2
    rate_limit_max_retries: int = 3
    rate_limit_base_delay: float = 15.0
    request_timeout_seconds: float = 120.0


@dataclass
class GenerationSettings:
    """Settings for a single generative call."""
    model: str
    temperature: float
    max_output_tokens: int


class ConfigManager:
    """Manages application configuration and settings."""

    def __init__(self):
        self._config: Optional[AppConfig] = None

    def load_config(self) -> AppConfig:
        """Load configuration from Streamlit secrets and the environment."""
        if self._config is not None:
            return self._config

        openai_api_key = self._get_secret_or_env("OPENAI_API_KEY")

        if not openai_api_key:
            raise ValueError(
                "OpenAI API key not found. Please set OPENAI_API_KEY in "
                "Streamlit secrets or environment variables."
            )

        self._config = AppConfig(
            openai_api_key=openai_api_key,
            research_model=self._get_setting("RESEARCH_MODEL", "gpt-4.1"),
            synthesis_model=self._get_setting("SYNTHESIS_MODEL", "gpt-4.1"),
            research_temperature=self._get_float_setting("RESEARCH_TEMPERATURE", 0.3),
            synthesis_temperature=self._get_float_setting("SYNTHESIS_TEMPERATURE", 0.4),
            research_max_tokens=self._get_int_setting("RESEARCH_MAX_TOKENS", 8192),
            stagger_delay_seconds=self._get_float_setting("WAVE_STAGGER_SECONDS", 5.0),
            schema_max_retries=self._get_int_setting("SCHEMA_RETRY_MAX", 2),
            rate_limit_max_retries=self._get_int_setting("RATE_LIMIT_RETRY_MAX", 3),
            rate_limit_base_delay=self._get_float_setting("RATE_LIMIT_BASE_DELAY", 15.0),
            request_timeout_seconds=self._get_float_setting("REQUEST_TIMEOUT_SECONDS", 120.0)
        )

        return self._config

    def _get_secret_or_env(self, key: str) -> Optional[str]:
        """Get value from Streamlit secrets or environment variables."""
        # Streamlit raises when no secrets.toml exists, so the lookup is guarded
        try:
            if hasattr(st, 'secrets') and key in st.secrets:
                return str(st.secrets[key])
        except Exception:
            pass

        return os.getenv(key)

    def _get_setting(self, key: str, default: str) -> str:
        """Get string setting with default value."""
        value = self._get_secret_or_env(key)
        return value if value is not None else default

    def _get_int_setting(self, key: str, default: int) -> int:
        """Get integer setting with default value."""
        value = self._get_secret_or_env(key)
        if value is not None:
            try:
                return int(value)
            except ValueError:
                pass
        return default

    def _get_float_setting(self, key: str, default: float) -> float:
        """Get float setting with default value."""
        value = self._get_secret_or_env(key)
        if value is not None:
            try:
                return float(value)
            except ValueError:
                pass
        return default

    def get_openai_api_key(self) -> str:
        """Get OpenAI API key."""
        config = self.load_config()
        return config.openai_api_key

    def get_generation_settings(self, section: str, research: bool = False) -> GenerationSettings:
        """
        Get generation settings for a section.

        Args:
            section: Section key, used to look up the output token budget
            research: Whether the call belongs to the research phase

        Returns:
            GenerationSettings for the call
        """
        config = self.load_config()
        if research:
            return GenerationSettings(
                model=config.research_model,
                temperature=config.research_temperature,
                max_output_tokens=min(SECTION_MAX_TOKENS.get(section, config.research_max_tokens),
                                      config.research_max_tokens)
            )
        return GenerationSettings(
            model=config.synthesis_model,
            temperature=config.synthesis_temperature,
            max_output_tokens=SECTION_MAX_TOKENS.get(section, 4096)
        )

    def get_retry_settings(self) -> Dict[str, Any]:
        """Get retry bounds for the generation caller."""
        config = self.load_config()
        return {
            'schema_max_retries': config.schema_max_retries,
            'rate_limit_max_retries': config.rate_limit_max_retries,
            'base_delay': config.rate_limit_base_delay,
        }

    def get_stagger_delay(self) -> float:
        """Get the stagger delay between wave task starts, in seconds."""
        config = self.load_config()
        return config.stagger_delay_seconds

    def get_request_timeout(self) -> float:
        """Get the per-request timeout in seconds."""
        config = self.load_config()
        return config.request_timeout_seconds

    def get_model_pricing(self, model: str) -> Tuple[float, float, float]:
        """Get (input, output, request fee) pricing for a model."""
        if model in MODEL_PRICING:
            return MODEL_PRICING[model]
        # Dated snapshots like gpt-4.1-2025-04-14 share their family's price
        for name in sorted(MODEL_PRICING, key=len, reverse=True):
            if model.startswith(name):
                return MODEL_PRICING[name]
        return DEFAULT_PRICING


# Global configuration manager instance
config_manager = ConfigManager()
