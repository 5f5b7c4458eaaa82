from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = Field(default="phiscan", alias="APP_NAME")
    app_env: str = Field(default="local", alias="APP_ENV")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Document store
    cosmosdb_endpoint: str | None = Field(default=None, alias="COSMOSDB_ENDPOINT")
    cosmosdb_dbname: str = Field(default="phiscan", alias="COSMOSDB_DBNAME")
    cosmosdb_container: str = Field(default="phirecords-v9", alias="COSMOSDB_CONTAINER")
    cosmosdb_scope: str = Field(default="https://cosmos.azure.com/.default", alias="COSMOSDB_SCOPE")
    managed_identity_client_id: str | None = Field(default=None, alias="MANAGED_IDENTITY_CLIENT_ID")

    # Extraction service
    language_endpoint: str | None = Field(default=None, alias="LANGUAGE_ENDPOINT")
    language_key: str | None = Field(default=None, alias="LANGUAGE_KEY")
    language_api_version: str = Field(default="2022-05-01", alias="LANGUAGE_API_VERSION")
    language_template_path: str = Field(default="lang.json", alias="LANGUAGE_TEMPLATE_PATH")
    language_timeout_s: float = Field(default=30.0, alias="LANGUAGE_TIMEOUT_S")

    # Object pool (optional)
    blob_storage_endpoint: str | None = Field(default=None, alias="BLOB_STORAGE_ENDPOINT")
    blob_container_name: str | None = Field(default=None, alias="BLOB_CONTAINER_NAME")
    local_pool_dir: str | None = Field(default=None, alias="LOCAL_POOL_DIR")

    # Provenance labels
    azure_subscription_id: str = Field(default="LanguageSubscription", alias="AZURE_SUBSCRIPTION_ID")
    azure_resource_group: str = Field(default="LanguageRG", alias="AZURE_RESOURCE_GROUP")

    # Checkpoint store
    database_url: str = Field(
        default="sqlite+pysqlite:///./phiscan-checkpoints.db",
        alias="DATABASE_URL",
    )
    checkpoint_backend: str = Field(default="database", alias="CHECKPOINT_BACKEND")

    # Scheduling and write policy
    schedule_interval_seconds: float = Field(default=60.0, alias="SCHEDULE_INTERVAL_SECONDS")
    scheduler_enabled: bool = Field(default=True, alias="SCHEDULER_ENABLED")
    max_concurrency: int = Field(default=8, alias="MAX_CONCURRENCY")
    upsert_max_attempts: int = Field(default=3, alias="UPSERT_MAX_ATTEMPTS")
    upsert_retry_delay_s: float = Field(default=1.0, alias="UPSERT_RETRY_DELAY_S")
    store_timeout_s: float = Field(default=30.0, alias="STORE_TIMEOUT_S")
    failure_alert_threshold: int = Field(default=5, alias="FAILURE_ALERT_THRESHOLD")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
