"""Application configuration for ICD-11 Core.

Configuration is loaded from environment variables (or a local ``.env`` file),
making the crawler suitable for container-based deployments and cron jobs.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "icd11_core"
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"

    database_url: str | None = None

    # WHO ICD API credentials (client-credentials grant).
    icd_client_id: str = ""
    icd_client_secret: str = ""
    icd_token_url: str = "https://icdaccessmanagement.who.int/connect/token"
    icd_token_scope: str = "icdapi_access"

    icd_api_base: str = "https://id.who.int/icd/release/11"
    icd_release: str = "2024-01"
    icd_linearization: str = "mms"
    icd_root_url: str | None = None
    api_language: str = "en"
    api_version: str = "v2"

    crawl_concurrency: int = 5
    fetch_max_attempts: int = 3
    fetch_backoff_initial_seconds: float = 2.0
    fetch_timeout_seconds: float = 10.0
    token_expiry_margin_seconds: float = 30.0
    emit_queue_size: int = 100

    output_format: str = "csv"
    output_path: str = "icd11_dump"

    @property
    def sqlalchemy_database_uri(self) -> str:
        if self.database_url:
            return self.database_url

        return (
            f"postgresql+psycopg2://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def root_url(self) -> str:
        if self.icd_root_url:
            return self.icd_root_url

        return f"{self.icd_api_base.rstrip('/')}/{self.icd_release}/{self.icd_linearization}"


settings = Settings()
