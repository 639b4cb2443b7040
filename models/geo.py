from dataclasses import dataclass
from typing import Any, Dict, Optional

from dataclasses_json import dataclass_json


@dataclass_json
@dataclass
class GeoLocation:
    """Result of an IP geolocation lookup. Any field may be missing."""
    ip: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None

    def to_record_fields(self) -> Dict[str, Any]:
        """Keyword arguments for VisitRecord, dropping absent values."""
        fields = {
            "ip": self.ip,
            "city": self.city,
            "region": self.region,
            "country": self.country,
            "country_code": self.country_code,
        }
        return {k: v for k, v in fields.items() if v}
