"""
Configuration management for the dealer query assistant.

Keep this simple - connection settings, LLM settings and guardrail knobs.
"""

import os
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict
from dotenv import load_dotenv

# Load environment variables from .env file (always prefer repo .env)
PROJECT_ROOT = Path(__file__).parent.parent
load_dotenv(dotenv_path=PROJECT_ROOT / ".env", override=True)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


class Config(BaseModel):
    """Application configuration."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    project_root: Path = Field(default_factory=lambda: Path(__file__).parent.parent)

    # SQL Server settings
    db_host: Optional[str] = Field(default_factory=lambda: os.getenv("DB_HOST"))
    db_port: int = Field(default_factory=lambda: int(os.getenv("DB_PORT", "1433")))
    db_name: Optional[str] = Field(default_factory=lambda: os.getenv("DB_NAME"))
    db_user: Optional[str] = Field(default_factory=lambda: os.getenv("DB_USER"))
    db_password: Optional[str] = Field(
        default_factory=lambda: os.getenv("DB_PASSWORD")
    )
    db_driver: str = Field(
        default_factory=lambda: os.getenv("DB_DRIVER", "ODBC Driver 18 for SQL Server")
    )
    db_encrypt: bool = Field(default_factory=lambda: _env_flag("DB_ENCRYPT", "false"))
    db_trust_server_certificate: bool = Field(
        default_factory=lambda: _env_flag("DB_TRUST_SERVER_CERTIFICATE", "true")
    )
    db_query_timeout: int = Field(
        default_factory=lambda: int(os.getenv("DB_QUERY_TIMEOUT", "0")),
        description="Statement timeout in seconds (0 keeps the driver default)",
        ge=0,
    )

    # OpenAI-compatible chat completion settings (Groq by default)
    llm_api_key: Optional[str] = Field(
        default_factory=lambda: os.getenv("LLM_API_KEY") or os.getenv("GROQ_API_KEY")
    )
    llm_base_url: str = Field(
        default_factory=lambda: os.getenv(
            "LLM_BASE_URL", "https://api.groq.com/openai/v1"
        )
    )
    llm_model: str = Field(
        default_factory=lambda: os.getenv("LLM_MODEL")
        or os.getenv("GROQ_MODEL", "openai/gpt-oss-20b")
    )
    llm_max_tokens: int = Field(
        default_factory=lambda: int(os.getenv("LLM_MAX_TOKENS", "800")), gt=0
    )
    llm_temperature: float = Field(
        default=0.0,
        description="Temperature for SQL generation (0.0 for deterministic)",
        ge=0.0,
        le=2.0,
    )
    llm_timeout_seconds: int = Field(
        default_factory=lambda: int(os.getenv("LLM_TIMEOUT_SECONDS", "60")), gt=0
    )

    # Schema registry
    redis_url: Optional[str] = Field(default_factory=lambda: os.getenv("REDIS_URL"))
    schema_cache_ttl_seconds: int = Field(
        default_factory=lambda: int(os.getenv("SCHEMA_CACHE_TTL_SECONDS", "3600")),
        gt=0,
    )
    schema_source: str = Field(
        default_factory=lambda: os.getenv("SCHEMA_SOURCE", "static").lower(),
        description="'static' uses the compiled-in schema, 'live' syncs from SQL Server",
    )

    # Guardrails
    enforce_schema_check: bool = Field(
        default_factory=lambda: _env_flag("ENFORCE_SCHEMA_CHECK", "true")
    )
    strict_sql_validation: bool = Field(
        default_factory=lambda: _env_flag("STRICT_SQL_VALIDATION", "true")
    )
    max_sql_length: int = Field(
        default_factory=lambda: int(os.getenv("MAX_SQL_LENGTH", "20000")), gt=0
    )

    # API settings
    api_max_batch: int = Field(
        default_factory=lambda: int(os.getenv("API_MAX_BATCH", "5")), gt=0
    )
    api_default_rows_to_show: int = Field(default=50, gt=0)
    api_port: int = Field(default_factory=lambda: int(os.getenv("API_PORT", "5000")))

    # Application settings
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    enable_telemetry: bool = Field(
        default_factory=lambda: _env_flag("ENABLE_TELEMETRY", "true")
    )
    session_log_file: Optional[str] = Field(
        default_factory=lambda: os.getenv("SESSION_LOG_FILE")
    )

    @property
    def database_configured(self) -> bool:
        return bool(self.db_host and self.db_name)

    def odbc_connection_string(self) -> str:
        """Build the ODBC connection string for SQL Server."""
        parts = [
            f"DRIVER={{{self.db_driver}}}",
            f"SERVER={self.db_host},{self.db_port}",
            f"DATABASE={self.db_name}",
        ]
        if self.db_user:
            parts.append(f"UID={self.db_user}")
            parts.append(f"PWD={self.db_password or ''}")
        else:
            parts.append("Trusted_Connection=yes")
        parts.append(f"Encrypt={'yes' if self.db_encrypt else 'no'}")
        if self.db_trust_server_certificate:
            parts.append("TrustServerCertificate=yes")
        return ";".join(parts) + ";"


# Global config instance
_config = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config
