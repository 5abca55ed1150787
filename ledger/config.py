import logging
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class Settings(BaseSettings):
    database_url: Optional[str] = None
    free_downloads: int = 5
    credits_per_dollar: int = 10
    payment_currency: str = "USD"

    paystack_secret_key: str = ""
    paystack_base_url: str = "https://api.paystack.co"
    paystack_callback_url: Optional[str] = None
    gateway_timeout: float = 10.0
    gateway_retries: int = 1

    openai_api_key: Optional[str] = None
    image_model: str = "gpt-image-1"
    image_size: str = "1024x1536"

    enforce_asset_ownership: bool = True
    session_cookie_name: str = "cover_session"
    cors_origins: List[str] = ["*"]
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    else:
        root.setLevel(level.upper())
