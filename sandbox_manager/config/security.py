"""Security configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings


class SecurityConfig(BaseSettings):
    """Authentication settings."""

    # Shared bearer secret
    api_key: str = Field(min_length=16)

    # Development bypass of the bearer check
    dev_mode: bool = Field(default=False)

    # Set when api_key was generated because none was configured
    api_key_generated: bool = Field(default=False)

    class Config:
        env_prefix = ""
        extra = "ignore"
