"""
Registry Credentials Utility

Credential source for image pulls. Credentials come from the environment:

- DOCKER_AUTH: JSON auth config. Either a single config applied to every
  registry ({"username": ..., "password": ..., "serveraddress": ...}) or a
  mapping of registry host to config ({"ghcr.io": {...}, "docker.io": {...}}).
- REGISTRY_USERNAME / REGISTRY_PASSWORD: single config for every registry.

Missing or malformed credentials are not an error: pulls run anonymously
and an auth-required answer from the registry is treated as a soft miss.
"""

import json
import logging
import os
from typing import Optional, Dict, Mapping

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY = "docker.io"


class RegistryAuth(BaseModel):
    """Auth config as accepted by the Docker Engine pull API."""
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    serveraddress: Optional[str] = None
    email: Optional[str] = None

    @field_validator('serveraddress')
    @classmethod
    def normalize_serveraddress(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    def to_auth_config(self) -> Dict[str, str]:
        """Return the dict shape docker-py expects for auth_config."""
        return self.model_dump(exclude_none=True)


def get_registry_url(image_name: str) -> str:
    """
    Extract the registry host from an image reference.

    Examples:
        nginx:1.25 → docker.io
        ghcr.io/user/app:latest → ghcr.io
        registry.example.com:5000/app:v1 → registry.example.com:5000
    """
    registry_url = DEFAULT_REGISTRY

    if "/" in image_name:
        parts = image_name.split("/", 1)
        # If first part has dot or colon, it's likely a registry
        if "." in parts[0] or ":" in parts[0] or parts[0] == "localhost":
            registry_url = parts[0]

    return registry_url.lower()


def _parse_docker_auth(raw: str) -> Dict[str, RegistryAuth]:
    """Parse DOCKER_AUTH into {registry_url: RegistryAuth}; '*' means any registry."""
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("DOCKER_AUTH must be a JSON object")

    if "username" in data:
        return {"*": RegistryAuth(**data)}

    return {
        registry.lower(): RegistryAuth(**config)
        for registry, config in data.items()
    }


def load_credentials(environ: Optional[Mapping[str, str]] = None) -> Dict[str, RegistryAuth]:
    """
    Load all configured credentials from the environment.

    Returns:
        Mapping of registry host (or '*') to credentials, empty if none set
    """
    env = os.environ if environ is None else environ

    raw = env.get('DOCKER_AUTH', '').strip()
    if raw:
        try:
            return _parse_docker_auth(raw)
        except (ValueError, TypeError, ValidationError) as e:
            logger.error(f"Ignoring malformed DOCKER_AUTH: {e}")
            return {}

    username = env.get('REGISTRY_USERNAME')
    password = env.get('REGISTRY_PASSWORD')
    if username and password:
        return {"*": RegistryAuth(username=username, password=password)}

    return {}


def get_registry_credentials(
    image_name: str,
    environ: Optional[Mapping[str, str]] = None
) -> Optional[Dict[str, str]]:
    """
    Get credentials for the registry serving image_name.

    Args:
        image_name: Full image reference (e.g., "nginx:1.25", "ghcr.io/user/app:latest")
        environ: Environment to read (defaults to os.environ)

    Returns:
        auth_config dict if credentials found, None otherwise
    """
    credentials = load_credentials(environ)
    if not credentials:
        return None

    registry_url = get_registry_url(image_name)
    cred = credentials.get(registry_url) or credentials.get("*")

    if cred is None:
        logger.debug(f"No credentials configured for registry '{registry_url}'")
        return None

    logger.debug(f"Using credentials for registry '{registry_url}'")
    return cred.to_auth_config()
