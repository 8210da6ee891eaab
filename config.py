from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SecuritySettings(BaseSettings):
    """Security and authentication configuration."""

    username: str = Field(default="admin", description="API basic auth username")
    password: str = Field(default="admin", description="API basic auth password")
    keeper_username: str = Field(default="keeper", description="Basic auth username for the keeper principal")
    keeper_password: str = Field(default="keeper", description="Basic auth password for the keeper principal")
    debug_mode: bool = Field(default=False, description="Enable debug mode (disables auth)")

    model_config = SettingsConfigDict(
        env_prefix="BACKEND_API_",
        extra="ignore"  # Ignore extra environment variables
    )


class KeeperSettings(BaseSettings):
    """Keeper loop that polls every controller and triggers the advised operation."""

    enabled: bool = Field(default=True, description="Run the keeper loop inside the API process")
    interval: float = Field(default=30.0, description="How often to poll controllers in seconds")
    principal: str = Field(default="keeper", description="Caller principal used by the keeper")
    operator: str = Field(default="", description="Operator principal used for reinvest; empty disables it")

    model_config = SettingsConfigDict(env_prefix="KEEPER_", extra="ignore")


class ControllerSettings(BaseSettings):
    """Where controller configs live and how they are loaded."""

    config_path: str = Field(default="bots/conf/controllers", description="Directory of controller YAML configs")
    autoload: bool = Field(default=True, description="Load every YAML config at startup")

    model_config = SettingsConfigDict(env_prefix="CONTROLLERS_", extra="ignore")


class AppSettings(BaseSettings):
    """Main application settings."""

    log_level: str = Field(default="INFO", description="Root logger level")
    api_url: str = Field(default="http://localhost:8000", description="Base URL used by the CLI")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


class Settings(BaseSettings):
    """Combined application settings."""

    security: SecuritySettings = Field(default_factory=SecuritySettings)
    keeper: KeeperSettings = Field(default_factory=KeeperSettings)
    controllers: ControllerSettings = Field(default_factory=ControllerSettings)
    app: AppSettings = Field(default_factory=AppSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="ignore"
    )


# Create global settings instance
settings = Settings()
