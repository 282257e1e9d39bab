"""
Adapters for the external collaborators of a deployment run.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import requests

logger = logging.getLogger(__name__)


@dataclass
class PipelineStep:
    """An opaque pre-deployment step: build, publish, scan or push. Returns True on success."""
    name: str
    run: Callable[[], bool]


class SonarQualityGate:
    """Reads a project's quality gate status from SonarQube."""

    def __init__(self, host_url: str, project_key: str, token: Optional[str] = None, timeout: int = 10):
        self.host_url = host_url.rstrip("/")
        self.project_key = project_key
        self.token = token
        self.timeout = timeout

    def status(self) -> str:
        """
        Get the quality gate status string.

        Returns:
            "OK", "WARN", "ERROR" or "NONE" as reported by the server,
            "UNAVAILABLE" when the server could not be queried
        """
        url = f"{self.host_url}/api/qualitygates/project_status"
        auth = (self.token, "") if self.token else None
        try:
            response = requests.get(url, params={"projectKey": self.project_key}, auth=auth, timeout=self.timeout)
            response.raise_for_status()
            return response.json().get("projectStatus", {}).get("status", "NONE")
        except (requests.RequestException, ValueError) as e:
            logger.error(f"❌ Quality gate lookup for {self.project_key} failed: {e}")
            return "UNAVAILABLE"

    def passed(self) -> bool:
        status = self.status()
        logger.info(f"Quality gate for {self.project_key}: {status}")
        return status == "OK"

    def as_step(self) -> PipelineStep:
        return PipelineStep(name="QualityGate", run=self.passed)


class Notifier:
    """Fire-and-forget webhook notifications. Failures are logged, never raised."""

    def __init__(self, webhook_url: Optional[str] = None, timeout: int = 5):
        self.webhook_url = webhook_url
        self.timeout = timeout

    def notify(self, event: str, message: str, **details: Any) -> bool:
        payload: Dict[str, Any] = {
            "event": event,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "details": details,
        }
        if not self.webhook_url:
            logger.info(f"📣 {event}: {message}")
            return False
        try:
            response = requests.post(self.webhook_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return True
        except requests.RequestException as e:
            logger.warning(f"⚠️ Notification {event} not delivered: {e}")
            return False
