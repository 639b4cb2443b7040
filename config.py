"""Runtime configuration loaded from the environment (and an optional .env file)."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent / ".env")


@dataclass
class Settings:
    mongodb_uri: Optional[str] = None
    mongodb_db: str = "champions"
    redis_url: Optional[str] = None
    admin_access_key: str = ""
    geolocation_url: str = "https://ipapi.co/{ip}/json/"
    geo_cache_ttl_seconds: int = 3600
    analytics_profile: str = "rich"
    analytics_max_records: Optional[int] = None  # None = profile default

    @classmethod
    def from_env(cls) -> "Settings":
        max_records = os.getenv("ANALYTICS_MAX_RECORDS")
        return cls(
            mongodb_uri=os.getenv("MONGODB_URI") or None,
            mongodb_db=os.getenv("MONGODB_DB", "champions"),
            redis_url=os.getenv("REDIS_URL") or None,
            admin_access_key=os.getenv("ADMIN_ACCESS_KEY", ""),
            geolocation_url=os.getenv("GEOLOCATION_URL", "https://ipapi.co/{ip}/json/"),
            geo_cache_ttl_seconds=int(os.getenv("GEO_CACHE_TTL_SECONDS", "3600")),
            analytics_profile=os.getenv("ANALYTICS_PROFILE", "rich"),
            analytics_max_records=int(max_records) if max_records else None,
        )


settings = Settings.from_env()
