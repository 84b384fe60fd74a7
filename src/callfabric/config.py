# callfabric/config.py
from functools import lru_cache
from typing import Any, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    """
    Manages user-configurable defaults for callfabric clients, primarily
    loaded from environment variables (prefixed ``CALLFABRIC_``) or a .env file.

    Every per-call option that is not given in the base or instance
    configuration falls back to the value held here.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "secrets.env"),  # Look in both .env and secrets.env
        env_file_encoding="utf-8",
        env_prefix="CALLFABRIC_",
        extra="ignore",  # Ignore extra fields found in environment
        case_sensitive=False,  # Allow flexible casing in environment variables
    )

    # --- Default Transport Settings ---
    request_timeout: float = Field(
        default=30.0, description="Timeout in seconds of the default httpx client"
    )
    user_agent: str = Field(
        default="callfabric/0.1.0",
        description="User-Agent header for requests sent by the default transport",
    )

    # --- Call Settings ---
    base_url: str = Field(default="", description="Prefix for relative call URLs")
    timeout: float | None = Field(
        default=None,
        description="Per-call timeout in seconds, enforced through a cancel token",
    )
    default_http_error_message: str | None = Field(
        default=None,
        description="Message for HTTP errors whose body carries none; the reason phrase when unset",
    )

    # --- Deduplication Settings ---
    dedupe_strategy: Literal["cancel", "defer", "none"] = Field(
        default="cancel", description="How concurrent identical calls are handled"
    )
    dedupe_cache_scope: Literal["local", "global"] = Field(
        default="local", description="Whether the dedupe cache is per client or shared"
    )
    dedupe_cache_scope_key: str = Field(
        default="default", description="Name of the shared dedupe cache scope"
    )

    # --- Retry Settings ---
    retry_attempts: int = Field(
        default=0, description="Maximum number of retries for failed calls"
    )
    retry_strategy: Literal["linear", "exponential"] = Field(
        default="linear", description="Backoff strategy between retries"
    )
    retry_delay: float = Field(
        default=1.0, description="Base delay between retries (seconds)"
    )
    retry_max_delay: float = Field(
        default=10.0, description="Delay cap for the exponential strategy (seconds)"
    )
    retry_methods: list[str] = Field(
        default_factory=lambda: ["GET", "POST"],
        description="HTTP methods allowed to retry (empty allows every method)",
    )
    retry_status_codes: list[int] = Field(
        default_factory=list,
        description="Status codes allowed to retry (empty allows every status)",
    )

    # --- Hook Settings ---
    hooks_execution_mode: Literal["parallel", "sequential"] = Field(
        default="parallel", description="How handlers of one lifecycle event run"
    )
    hooks_registration_order: Literal["plugins_first", "main_first"] = Field(
        default="plugins_first",
        description="Whether plugin handlers run before or after client handlers",
    )

    # --- Result Settings ---
    result_mode: Literal["all", "only_data"] = Field(
        default="all", description="Which part of the result a call returns"
    )
    throw_on_error: bool = Field(
        default=False, description="Raise errors instead of returning them as data"
    )

    def option_defaults(self) -> dict[str, Any]:
        """Returns the defaults seeded into every call's merged options.

        Retry settings are left out on purpose: they are resolved lazily by the
        retry engine so the grouped ``retry`` option can still supply them.
        """
        return {
            "base_url": self.base_url,
            "timeout": self.timeout,
            "default_http_error_message": self.default_http_error_message,
            "dedupe_strategy": self.dedupe_strategy,
            "dedupe_cache_scope": self.dedupe_cache_scope,
            "dedupe_cache_scope_key": self.dedupe_cache_scope_key,
            "hooks_execution_mode": self.hooks_execution_mode,
            "hooks_registration_order": self.hooks_registration_order,
            "result_mode": self.result_mode,
            "throw_on_error": self.throw_on_error,
        }


# Create a single, cached instance of settings
@lru_cache
def get_settings() -> ClientSettings:
    """
    Provides access to the client settings.

    Settings are loaded from environment variables or .env/secrets.env files.
    The instance is cached for performance.

    Returns:
        ClientSettings: The client settings instance.
    """
    return ClientSettings()
