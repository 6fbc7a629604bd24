import logging
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from consent_store.exceptions import ConfigurationError
from consent_store.options import DEFAULT_FIND_MANY_LIMIT
from consent_store.utils.secrets_validator import validate_secret

load_dotenv()

logger = logging.getLogger(__name__)

DEVELOPMENT_ENVIRONMENTS = frozenset({"development", "test"})


class Settings(BaseSettings):
    # Application settings
    app_name: str = "Consent Store"
    environment: str = "development"

    # Database settings; unset means the in-memory adapter
    database_url: Optional[str] = None
    sql_echo: bool = False
    default_find_many_limit: int = DEFAULT_FIND_MANY_LIMIT

    # Security settings
    secret: Optional[str] = None
    receipt_public_key: Optional[str] = None

    # Workflow settings
    atomic_workflows: bool = False

    # Logging settings
    log_level: str = "INFO"
    log_json: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_development(self) -> bool:
        return self.environment.lower() in DEVELOPMENT_ENVIRONMENTS

    @model_validator(mode="after")
    def check_secret(self) -> "Settings":
        problems = validate_secret(self.secret)
        if not problems:
            return self
        if not self.is_development:
            raise ConfigurationError(
                f"Refusing to start in '{self.environment}': " + "; ".join(problems),
                setting="secret",
            )
        for problem in problems:
            logger.warning("%s (allowed in %s only)", problem, self.environment)
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
