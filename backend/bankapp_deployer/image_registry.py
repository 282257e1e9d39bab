"""
Container registry lookups over the Docker Registry v2 API.
"""
import logging
import re
from typing import Dict, Optional

import requests

from .adapters import PipelineStep

logger = logging.getLogger(__name__)

MANIFEST_TYPES = ", ".join([
    "application/vnd.docker.distribution.manifest.v2+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.oci.image.index.v1+json",
])


def _parse_challenge(header: str) -> Dict[str, str]:
    """Parse a ``WWW-Authenticate: Bearer realm=...,service=...,scope=...`` header."""
    if not header.lower().startswith("bearer "):
        return {}
    return dict(re.findall(r'(\w+)="([^"]*)"', header))


class ImageRegistry:
    """Confirms that an image tag was pushed before it is deployed."""

    def __init__(
        self,
        registry_url: str = "https://registry-1.docker.io",
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: int = 10,
    ):
        self.registry_url = registry_url.rstrip("/")
        self.username = username
        self.password = password
        self.timeout = timeout

    def _token(self, challenge: Dict[str, str]) -> Optional[str]:
        realm = challenge.get("realm")
        if not realm:
            return None
        params = {k: v for k, v in challenge.items() if k in ("service", "scope")}
        auth = (self.username, self.password) if self.username and self.password else None
        response = requests.get(realm, params=params, auth=auth, timeout=self.timeout)
        if response.status_code != 200:
            logger.warning(f"⚠️ Registry token request failed: {response.status_code}")
            return None
        data = response.json()
        return data.get("token") or data.get("access_token")

    def tag_exists(self, repository: str, tag: str) -> bool:
        """Check if repository:tag has a manifest in the registry."""
        url = f"{self.registry_url}/v2/{repository}/manifests/{tag}"
        headers = {"Accept": MANIFEST_TYPES}
        try:
            response = requests.head(url, headers=headers, timeout=self.timeout)
            if response.status_code == 401:
                token = self._token(_parse_challenge(response.headers.get("WWW-Authenticate", "")))
                if not token:
                    return False
                headers["Authorization"] = f"Bearer {token}"
                response = requests.head(url, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"❌ Error checking {repository}:{tag} in registry: {e}")
            return False

        found = response.status_code == 200
        if found:
            logger.info(f"✅ Found {repository}:{tag} in {self.registry_url}")
        else:
            logger.warning(f"⚠️ {repository}:{tag} not in {self.registry_url} ({response.status_code})")
        return found

    def as_step(self, repository: str, tag: str) -> PipelineStep:
        return PipelineStep(name="ImagePush", run=lambda: self.tag_exists(repository, tag))
