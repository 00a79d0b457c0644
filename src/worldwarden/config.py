"""
Policy configuration for the access-control engine.

The configuration is an immutable value built once at process start
(load_config) and passed by reference into the components that need it.
Values can come from a YAML file named by the WORLDWARDEN_CONFIG
environment variable (a .env file is honored); anything not set in the
file keeps its default.

Example YAML:
    default_access_types: [READ, WRITE]
    labels:
      global_label: Everyone
      campaign_format: "Campaign: {name}"
"""

import logging
import os
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from .models import AccessType, NoteVisibility, ResourceKind

logger = logging.getLogger("worldwarden")

CONFIG_ENV_VAR = "WORLDWARDEN_CONFIG"


class ContextLabels(BaseModel):
    """Human-readable labels used in access summaries."""
    model_config = ConfigDict(frozen=True)

    global_label: str = "Global"
    architect_label: str = "Architect"
    campaign_format: str = "Campaign: {name}"
    character_format: str = "Character: {name}"

    def campaign(self, name: str) -> str:
        return self.campaign_format.format(name=name)

    def character(self, name: str) -> str:
        return self.character_format.format(name=name)


class AccessPolicyConfig(BaseModel):
    """Immutable policy settings shared by the engine components."""
    model_config = ConfigDict(frozen=True)

    default_access_types: tuple[AccessType, ...] = Field(
        default=(AccessType.READ, AccessType.WRITE),
        description="Access types granted to a new resource created without explicit access"
    )
    default_note_visibility: NoteVisibility = Field(
        default=NoteVisibility.SHARED,
        description="Visibility used when a note is created without one"
    )
    labels: ContextLabels = Field(default_factory=ContextLabels)
    audit_keys: dict[ResourceKind, str] = Field(
        default_factory=lambda: {
            ResourceKind.ENTITY: "entities",
            ResourceKind.LOCATION: "locations",
        },
        description="Resource-kind keys written alongside audit entries"
    )

    @classmethod
    def from_yaml(cls, path: Path) -> "AccessPolicyConfig":
        """
        Load configuration from a YAML file.

        Args:
            path: Path to the YAML file

        Returns:
            The validated configuration

        Raises:
            FileNotFoundError: If the file doesn't exist
            yaml.YAMLError: If the YAML is malformed
            pydantic.ValidationError: If values don't validate
        """
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        return cls.model_validate(data)


def load_config(env_file: str | Path | None = None) -> AccessPolicyConfig:
    """
    Build the process-wide configuration.

    Reads .env (or env_file), then loads the YAML file named by
    WORLDWARDEN_CONFIG if there is one. Falls back to defaults otherwise.
    """
    load_dotenv(env_file)
    config_path = os.getenv(CONFIG_ENV_VAR)
    if not config_path:
        logger.debug(f"No {CONFIG_ENV_VAR} set, using default access policy")
        return AccessPolicyConfig()

    path = Path(config_path).expanduser()
    logger.info(f"Loading access policy from {path}")
    return AccessPolicyConfig.from_yaml(path)


__all__ = [
    "AccessPolicyConfig",
    "ContextLabels",
    "CONFIG_ENV_VAR",
    "load_config",
]
