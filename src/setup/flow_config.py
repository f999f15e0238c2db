from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class FlowApiSettings(BaseSettings):
    """Connection settings for the FlowHunt flow API."""
    FLOWHUNT_API_BASE_URL: str = "https://api.flowhunt.io"
    FLOWHUNT_API_TOKEN: str | None = None
    REQUEST_TIMEOUT_SEC: float = 30.0

    model_config = ConfigDict(env_file=".env", extra="ignore")


def get_flow_api_settings() -> FlowApiSettings:
    """Return a fresh flow API settings instance."""
    return FlowApiSettings()
