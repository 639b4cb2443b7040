from abc import ABC
from typing import Optional

import requests


class BaseClient(ABC):
    """Base class for outbound HTTP clients.

    Requests are single-shot with no retries. Callers decide what a
    failure means.
    """

    USER_AGENT = "champions-analytics/1.0 (+https://ethiopianchampions.com)"
    REQUEST_TIMEOUT: float = 30.0

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": self.USER_AGENT})

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        """Make a request and raise for non-success status codes."""
        kwargs.setdefault("timeout", self.REQUEST_TIMEOUT)
        response = self.session.request(method, url, **kwargs)
        response.raise_for_status()
        return response

    def get(self, url: str, **kwargs) -> requests.Response:
        return self._request("GET", url, **kwargs)

    def close(self):
        self.session.close()
