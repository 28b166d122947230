"""
FlowStudio Configuration

Environment-driven settings (pydantic-settings) plus the small dataclass
configs that are threaded explicitly through provider calls.
"""

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import DEFAULT_STORAGE_BUCKET, MAX_ASSET_BYTES

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="FLOWSTUDIO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Supabase
    supabase_url: str = Field(default="")
    supabase_anon_key: str = Field(default="")
    supabase_service_key: str = Field(default="")

    # Tables and storage
    projects_table: str = Field(default="projects")
    versions_table: str = Field(default="project_versions")
    assets_table: str = Field(default="project_assets")
    storage_bucket: str = Field(default=DEFAULT_STORAGE_BUCKET)
    replace_asset_rpc: Optional[str] = Field(default="replace_current_scene_asset")

    # Archiving
    max_asset_bytes: int = Field(default=MAX_ASSET_BYTES)
    download_timeout: float = Field(default=60.0)

    # Generation
    provider_timeout: float = Field(default=120.0)
    image_inter_item_delay: float = Field(default=1.0)
    prompt_inter_item_delay: float = Field(default=0.5)
    default_text_provider: str = Field(default="openai")
    default_image_endpoint: str = Field(default="fal-ai/flux/dev")

    # Versioning
    version_conflict_retries: int = Field(default=3)

    # Local backups
    backup_dir: str = Field(default=".flowstudio/backups")
    backup_expiry_days: int = Field(default=7)

    # Logging
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default=None)
    log_verbose: bool = Field(default=False)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


@dataclass
class LLMConfig:
    """Model configuration passed explicitly to a text provider call."""
    provider: str = "openai"
    model: str = "gpt-4-turbo"
    temperature: float = 0.7
    max_tokens: int = 4000
    timeout: float = 120.0

    @classmethod
    def from_dict(cls, data: dict) -> 'LLMConfig':
        """Create LLMConfig from dictionary."""
        provider = data.get('provider', 'openai')
        return cls(
            provider=provider,
            model=data.get('model') or DEFAULT_TEXT_MODELS.get(provider, cls.model),
            temperature=data.get('temperature', 0.7),
            max_tokens=data.get('max_tokens', 4000),
            timeout=data.get('timeout', 120.0)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'provider': self.provider,
            'model': self.model,
            'temperature': self.temperature,
            'max_tokens': self.max_tokens,
            'timeout': self.timeout,
        }


DEFAULT_TEXT_MODELS: Dict[str, str] = {
    "openai": "gpt-4-turbo",
    "anthropic": "claude-3-sonnet-20240229",
}


@dataclass
class ImageParams:
    """Generation parameters passed explicitly to an image provider call."""
    width: int = 1024
    height: int = 768
    num_inference_steps: int = 28
    guidance_scale: float = 3.5
    num_images: int = 1
    output_format: str = "jpeg"
    enable_safety_checker: bool = True
    seed: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> 'ImageParams':
        """Create ImageParams from dictionary; unknown keys go to ``extra``."""
        known = {
            'width', 'height', 'num_inference_steps', 'guidance_scale',
            'num_images', 'output_format', 'enable_safety_checker', 'seed'
        }
        values = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        return cls(**values, extra=extra)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'width': self.width,
            'height': self.height,
            'num_inference_steps': self.num_inference_steps,
            'guidance_scale': self.guidance_scale,
            'num_images': self.num_images,
            'output_format': self.output_format,
            'enable_safety_checker': self.enable_safety_checker,
        }
        if self.seed is not None:
            result['seed'] = self.seed
        result.update(self.extra)
        return result
