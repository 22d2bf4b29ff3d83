"""Configuration models using Pydantic for validation."""
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
import os


DEFAULT_RANGES = {"1h": 3600, "6h": 6 * 3600, "24h": 24 * 3600}


class StoreConfig(BaseModel):
    """Time-series store connection and retention."""
    backend: Literal["redis", "memory"] = "redis"
    host: str = "localhost"
    port: int = 6379
    password: Optional[str] = None
    db: int = 0
    key_prefix: str = "weather:ts:"
    retention_ms: int = 86_400_000  # 24 hours
    metric: str = "value"

    @field_validator('retention_ms')
    @classmethod
    def validate_retention(cls, v):
        if v <= 0:
            raise ValueError("retention_ms must be positive")
        return v


class IngestionConfig(BaseModel):
    """Periodic sampling configuration."""
    interval_s: float = 60.0
    read_timeout_s: float = 3.0
    entities: List[str] = Field(default_factory=lambda: ["Singapore"])
    source: Literal["uniform", "random_walk"] = "uniform"
    seed: int = 42

    # Source parameters
    base: float = 25.0
    spread: float = 5.0
    step: float = 0.2

    @model_validator(mode='after')
    def validate_timing(self):
        if self.interval_s <= 0 or self.read_timeout_s <= 0:
            raise ValueError("interval_s and read_timeout_s must be positive")
        if self.read_timeout_s >= self.interval_s:
            raise ValueError(
                f"read_timeout_s ({self.read_timeout_s}) must be shorter than "
                f"interval_s ({self.interval_s})"
            )
        return self


class WindowConfig(BaseModel):
    """Client-side live window configuration."""
    capacity: int = 10_000
    ranges: Dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_RANGES))

    @field_validator('capacity')
    @classmethod
    def validate_capacity(cls, v):
        if v <= 0:
            raise ValueError("capacity must be positive")
        return v

    @field_validator('ranges')
    @classmethod
    def validate_ranges(cls, v):
        for label, seconds in v.items():
            if seconds <= 0:
                raise ValueError(f"Range '{label}' must have a positive duration")
        return v


class LiveConfig(BaseModel):
    """Live broadcast channel configuration."""
    subscriber_queue_size: int = 256


class GlobalConfig(BaseModel):
    """Global configuration settings."""
    log_level: str = "INFO"
    api_host: str = "0.0.0.0"
    api_port: int = 3001
    default_entity: str = "Singapore"

    @field_validator('default_entity')
    @classmethod
    def validate_default_entity(cls, v):
        if not v.strip():
            raise ValueError("default_entity must not be empty")
        return v


class Config(BaseModel):
    """Root configuration model."""
    model_config = ConfigDict(populate_by_name=True)

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    store: StoreConfig = Field(default_factory=StoreConfig)
    ingestion: IngestionConfig = Field(default_factory=IngestionConfig)
    window: WindowConfig = Field(default_factory=WindowConfig)
    live: LiveConfig = Field(default_factory=LiveConfig)


def load_config(config_path: str) -> Config:
    """Load and validate configuration from YAML file."""
    import yaml

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f) or {}

    # Apply environment variable overrides
    store_overrides = {
        'host': os.getenv('REDIS_HOST'),
        'port': os.getenv('REDIS_PORT'),
        'password': os.getenv('REDIS_PASSWORD'),
    }
    for name, value in store_overrides.items():
        if value is not None:
            raw_config.setdefault('store', {})[name] = value

    if env_log_level := os.getenv('LOG_LEVEL'):
        raw_config.setdefault('global', {})['log_level'] = env_log_level

    try:
        return Config(**raw_config)
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")
