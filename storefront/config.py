import os
from dataclasses import dataclass, field
from decimal import Decimal
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv

# .env is optional; real deployments pass everything through the environment
load_dotenv()


def _get_env(*keys: str, default: Optional[str] = None) -> Optional[str]:
    for k in keys:
        v = os.getenv(k)
        if v is not None and str(v).strip() != "":
            return v.strip()
    return default


@dataclass(frozen=True)
class Settings:
    backend_url: str = "http://localhost:4000"
    database_url: str = "sqlite+aiosqlite:///./storefront.db"
    admin_password: Optional[str] = None
    tax_rate: Decimal = Decimal("0.08")
    shipping_flat: Decimal = Decimal("0")
    backend_timeout: float = 10.0
    session_cookie: str = "sf_session"
    session_max_age: int = 7 * 24 * 60 * 60
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> "Settings":
        origins = _get_env("CORS_ORIGINS", default="*")
        return cls(
            backend_url=(_get_env("BACKEND_URL", "NEXT_PUBLIC_API_URL", default=cls.backend_url)).rstrip("/"),
            database_url=_get_env("DATABASE_URL", default=cls.database_url),
            admin_password=_get_env("ADMIN_PASSWORD"),
            tax_rate=Decimal(_get_env("TAX_RATE", default="0.08")),
            shipping_flat=Decimal(_get_env("SHIPPING_FLAT", default="0")),
            backend_timeout=float(_get_env("BACKEND_TIMEOUT", default="10")),
            session_cookie=_get_env("SESSION_COOKIE", default=cls.session_cookie),
            session_max_age=int(_get_env("SESSION_MAX_AGE", default=str(cls.session_max_age))),
            log_level=_get_env("LOG_LEVEL", default="INFO").upper(),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()
