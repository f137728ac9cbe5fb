import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

from app.errors import ConfigurationError

load_dotenv()

DEFAULT_API_URL = "https://api.pesepay.com/api/payments-engine"


class Settings(BaseModel):
    integration_key: str
    encryption_key: str
    result_url: Optional[str] = None
    return_url: Optional[str] = None
    api_url: str = DEFAULT_API_URL
    gateway_timeout: float = 30.0
    rabbitmq_url: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        integration_key = os.getenv("INTEGRATION_KEY")
        encryption_key = os.getenv("ENCRYPTION_KEY")
        if not integration_key or not encryption_key:
            raise ConfigurationError(
                "INTEGRATION_KEY or ENCRYPTION_KEY not found in environment. "
                "Create a .env file with your Pesepay credentials."
            )

        return cls(
            integration_key=integration_key,
            encryption_key=encryption_key,
            result_url=os.getenv("RESULT_URL"),
            return_url=os.getenv("RETURN_URL"),
            api_url=os.getenv("PESEPAY_API_URL", DEFAULT_API_URL).rstrip("/"),
            gateway_timeout=float(os.getenv("GATEWAY_TIMEOUT", "30")),
            rabbitmq_url=os.getenv("RABBITMQ_URL") or None,
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3000")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        force=True,
    )
