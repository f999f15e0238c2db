from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class BatchSettings(BaseSettings):
    """Defaults for batch runs and the per-task polling loop."""
    DEFAULT_PARALLELISM: int = 5
    POLL_INTERVAL_SEC: float = 2.0
    MAX_POLL_ATTEMPTS: int = 1800
    SINGLETON_MODE: bool = True
    WRITE_OUTPUT_TO_FILE: bool = True
    PREFERENCES_PATH: str = "~/.flowbatch/preferences.json"

    model_config = ConfigDict(env_file=".env", extra="ignore")


def get_batch_settings() -> BatchSettings:
    """Return a fresh batch settings instance."""
    return BatchSettings()
