"""
Manifest files as data: parsing and per-run overrides.
"""
import copy
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)


def load_manifest(path: Union[str, Path]) -> List[Dict[str, Any]]:
    """Parse every non-empty YAML document in a manifest file."""
    try:
        with open(path, encoding="utf-8") as f:
            documents = [doc for doc in yaml.safe_load_all(f) if doc]
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"❌ Cannot read manifest {path}: {e}")
        raise ConfigError(f"unreadable manifest {path}: {e}") from e

    for doc in documents:
        if not isinstance(doc, dict) or not doc.get("kind") or not doc.get("apiVersion"):
            raise ConfigError(f"manifest {path} holds a document without kind/apiVersion")
        if not doc.get("metadata", {}).get("name"):
            raise ConfigError(f"manifest {path} holds a {doc['kind']} without metadata.name")
    return documents


def customize(
    document: Dict[str, Any],
    images: Optional[Dict[str, str]] = None,
    selectors: Optional[Dict[str, Dict[str, str]]] = None,
) -> Dict[str, Any]:
    """
    Copy a manifest document with run-specific values filled in.

    Args:
        document: One parsed manifest document, left untouched
        images: Container name -> image, applied to pod templates
        selectors: Service name -> labels merged into that Service's selector

    Returns:
        The customized copy
    """
    body = copy.deepcopy(document)
    name = body.get("metadata", {}).get("name")

    if images:
        pod_spec = body.get("spec", {}).get("template", {}).get("spec", {})
        for container in pod_spec.get("containers", []):
            if container.get("name") in images:
                container["image"] = images[container["name"]]

    if selectors and body.get("kind") == "Service" and name in selectors:
        spec = body.setdefault("spec", {})
        spec["selector"] = {**(spec.get("selector") or {}), **selectors[name]}
    return body
