import os
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv
load_dotenv()

DEFAULT_CORS_ORIGINS = "http://localhost:5173,http://localhost:5174"


@dataclass(frozen=True)
class Settings:
    access_token_secret: str
    token_lifetime_days: int = 365
    database_url: Optional[str] = None
    database_name: str = "Plant-Net_Collection"
    environment: str = "development"
    cors_origins: List[str] = field(default_factory=lambda: DEFAULT_CORS_ORIGINS.split(","))
    log_level: str = "INFO"
    port: int = 9000

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def cookie_samesite(self) -> str:
        return "none" if self.is_production else "strict"

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("CORS_ORIGINS", DEFAULT_CORS_ORIGINS)
        return cls(
            access_token_secret=os.getenv("ACCESS_TOKEN_SECRET", ""),
            token_lifetime_days=int(os.getenv("TOKEN_LIFETIME_DAYS", 365)),
            database_url=os.getenv("DATABASE_URL"),
            database_name=os.getenv("DATABASE_NAME", "Plant-Net_Collection"),
            environment=os.getenv("ENVIRONMENT", "development"),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            port=int(os.getenv("PORT", 9000)),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
