"""Configuration management with Pydantic validation."""

import tomllib
from pathlib import Path

from pydantic import BaseModel, Field, model_validator


class DatabaseConfig(BaseModel):
    """Configuration for the DuckDB geometry store."""

    path: str = Field(default=":memory:")
    memory_limit: str = Field(default="1GB")
    threads: int = Field(default=2, ge=1)


class PoolConfig(BaseModel):
    """Configuration for the shared connection pool."""

    size: int = Field(default=4, ge=1)
    checkout_timeout: float = Field(default=10.0, gt=0)
    statement_timeout: float = Field(default=120.0, gt=0)


class StreamingConfig(BaseModel):
    """Configuration for streamed trade-area responses."""

    default_batch_size: int = Field(default=500)
    max_batch_size: int = Field(default=2000)

    @model_validator(mode="after")
    def validate_batch_sizes(self) -> "StreamingConfig":
        """Ensure the default batch size fits under the cap."""
        if not 1 <= self.default_batch_size <= self.max_batch_size:
            raise ValueError("default_batch_size must be between 1 and max_batch_size")
        return self


class PaginationConfig(BaseModel):
    """Configuration for the buffered (envelope) trade-area responses."""

    default_limit: int = Field(default=500)
    max_limit: int = Field(default=5000)

    @model_validator(mode="after")
    def validate_limits(self) -> "PaginationConfig":
        """Ensure the default page size fits under the cap."""
        if not 1 <= self.default_limit <= self.max_limit:
            raise ValueError("default_limit must be between 1 and max_limit")
        return self


class HttpCacheConfig(BaseModel):
    """Cache-Control values for cacheable responses."""

    s_maxage: int = Field(default=600, ge=0)
    stale_while_revalidate: int = Field(default=1200, ge=0)

    @property
    def cache_control(self) -> str:
        return (
            f"public, s-maxage={self.s_maxage}, "
            f"stale-while-revalidate={self.stale_while_revalidate}"
        )


class Config(BaseModel):
    """Main configuration."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    pool: PoolConfig = Field(default_factory=PoolConfig)
    streaming: StreamingConfig = Field(default_factory=StreamingConfig)
    pagination: PaginationConfig = Field(default_factory=PaginationConfig)
    http: HttpCacheConfig = Field(default_factory=HttpCacheConfig)

    @classmethod
    def from_file(cls, path: Path | str) -> "Config":
        """Load configuration from TOML file.

        Args:
            path: Path to config.toml file

        Returns:
            Validated Config object

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config validation fails
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config not found: {path}")

        with open(path, "rb") as f:
            data = tomllib.load(f)

        return cls(**data)
