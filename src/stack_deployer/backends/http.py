"""Direct HTTP probes of the deployed service endpoints."""

from __future__ import annotations

from typing import Optional

import requests

from ..models import EndpointHealth
from .base import EndpointProber


class HttpEndpointProber(EndpointProber):
    """Any HTTP answer below 500 counts as the service being up.

    Vault answers 501 while uninitialized, which still means it is serving.
    """

    def __init__(self, timeout: float = 10.0, session: Optional[requests.Session] = None) -> None:
        self.timeout = timeout
        self.session = session or requests.Session()

    def probe(self, name: str, url: str) -> EndpointHealth:
        try:
            resp = self.session.get(url, timeout=self.timeout, allow_redirects=True)
        except requests.exceptions.RequestException as exc:
            return EndpointHealth(name=name, url=url, healthy=False, detail=str(exc))
        healthy = resp.status_code < 500 or resp.status_code == 501
        return EndpointHealth(
            name=name,
            url=url,
            healthy=healthy,
            detail=f"HTTP {resp.status_code}",
        )
