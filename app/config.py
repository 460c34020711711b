"""Application configuration loaded from environment variables.

Uses ``pydantic-settings`` for automatic env-var loading, type coercion,
and ``.env`` file support.  Backend credentials are optional: a backend
whose key is blank is simply not registered, and ``validate_backends``
reports what is missing at startup instead of failing the import.
"""

VERSION = "0.1.0"

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from layerforge.contracts import BackendConfig, BackendFamily, RoutingStrategy


class Settings(BaseSettings):
    """Application settings — sourced from environment / ``.env`` file.

    Backends are registered in failover priority order: the
    chat-completions backend (``OPENAI_*``) first, then the
    generate-content backend (``GEMINI_*``).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""  # blank = console only

    # -- chat-completions backend (primary) --
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_TIMEOUT: float = Field(default=60.0, gt=0)  # seconds

    # -- generate-content backend (fallback) --
    GEMINI_API_KEY: str = ""
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    GEMINI_MODEL: str = "gemini-2.5-flash"
    GEMINI_TIMEOUT: float = Field(default=60.0, gt=0)

    # -- retry policy shared by every backend --
    API_MAX_RETRIES: int = Field(default=2, ge=0)
    API_RETRY_DELAY: float = Field(default=0.5, ge=0)  # seconds, doubled per retry
    API_ROUTING_STRATEGY: str = "failover"  # failover | round_robin | random | least_errors

    # -- token accounting --
    TOKEN_LIMIT_TOTAL: int = Field(default=1_000_000, ge=0)  # 0 = unlimited
    TOKEN_WARNING_THRESHOLD: float = Field(default=0.8, gt=0, le=1)

    # -- layered generation --
    LAYER_DELAY_SECONDS: float = Field(default=1.5, ge=0)
    MAX_CONCURRENCY: int = Field(default=0, ge=0)  # 0 = no cap within a layer

    @field_validator("LOG_LEVEL")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return v.strip().upper() or "INFO"

    @model_validator(mode="after")
    def _normalise_strategy(self) -> "Settings":
        """Store the routing strategy in its canonical spelling.

        Raises on unknown names so a typo fails at startup rather than
        silently falling back to failover.
        """
        try:
            self.API_ROUTING_STRATEGY = RoutingStrategy.parse(self.API_ROUTING_STRATEGY).value
        except ValueError:
            allowed = ", ".join(s.value for s in RoutingStrategy)
            raise ValueError(
                f"API_ROUTING_STRATEGY must be one of: {allowed}"
            ) from None
        return self

    # ------------------------------------------------------------------

    def backend_configs(self) -> list[BackendConfig]:
        """Return the configured backends in priority order."""
        configs: list[BackendConfig] = []
        if self.OPENAI_API_KEY:
            configs.append(BackendConfig(
                name="openai",
                family=BackendFamily.CHAT_COMPLETIONS,
                base_url=self.OPENAI_BASE_URL,
                credential=self.OPENAI_API_KEY,
                model=self.OPENAI_MODEL,
                timeout_s=self.OPENAI_TIMEOUT,
                max_retries=self.API_MAX_RETRIES,
                retry_delay_s=self.API_RETRY_DELAY,
            ))
        if self.GEMINI_API_KEY:
            configs.append(BackendConfig(
                name="gemini",
                family=BackendFamily.GENERATE_CONTENT,
                base_url=self.GEMINI_BASE_URL,
                credential=self.GEMINI_API_KEY,
                model=self.GEMINI_MODEL,
                timeout_s=self.GEMINI_TIMEOUT,
                max_retries=self.API_MAX_RETRIES,
                retry_delay_s=self.API_RETRY_DELAY,
            ))
        return configs

    def validate_backends(self) -> dict:
        """Check the backend setup.

        Returns
        -------
        dict
            ``{"valid": bool, "errors": [...], "warnings": [...]}``
        """
        errors: list[str] = []
        warnings: list[str] = []
        has_chat = bool(self.OPENAI_API_KEY)
        has_gemini = bool(self.GEMINI_API_KEY)

        if not has_chat and not has_gemini:
            errors.append("At least one API key is required (OPENAI_API_KEY or GEMINI_API_KEY)")
        elif has_chat and not has_gemini:
            warnings.append("Only OPENAI_API_KEY is set; add GEMINI_API_KEY for failover")
        elif has_gemini and not has_chat:
            warnings.append("Only GEMINI_API_KEY is set; add OPENAI_API_KEY for failover")

        for name, url in (("OPENAI_BASE_URL", self.OPENAI_BASE_URL),
                          ("GEMINI_BASE_URL", self.GEMINI_BASE_URL)):
            if not url.startswith(("http://", "https://")):
                errors.append(f"{name} must be an http(s) URL")

        return {"valid": not errors, "errors": errors, "warnings": warnings}


settings = Settings()
