"""
Configuration loader for the gatekeeper runtime.

Loads token, verifier and signal settings from the 'gatekeeper' section of
the YAML configuration file; secrets come from environment variables.
"""

import os
from pathlib import Path
from typing import Dict, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from gatekeeper.exceptions import ConfigError
from gatekeeper.token_validator import DEFAULT_TOKEN_COOKIE, DEFAULT_TOKEN_HEADER
from gatekeeper.verifiers import DEFAULT_TOKEN_MAX_AGE_SECONDS


class GatekeeperSettings(BaseModel):
    """
    Runtime settings for the gatekeeper.

    The policy itself lives in the 'policy' section and is loaded by the
    Policy Store; this model covers everything around it.
    """

    token_header: str = Field(
        default=DEFAULT_TOKEN_HEADER,
        description="Request header carrying the challenge token",
    )
    token_cookie: Optional[str] = Field(
        default=DEFAULT_TOKEN_COOKIE,
        description="Cookie carrying the challenge token (null to disable)",
    )
    verifier: Literal["hmac", "http"] = Field(
        default="hmac",
        description="Token verifier implementation",
    )
    token_secret: Optional[str] = Field(
        None,
        description="HMAC signing secret (from env: GATEKEEPER_TOKEN_SECRET)",
    )
    token_max_age_seconds: int = Field(
        default=DEFAULT_TOKEN_MAX_AGE_SECONDS,
        gt=0,
        description="Token validity window for the HMAC verifier",
    )
    verifier_url: Optional[str] = Field(
        None,
        description="Attestation endpoint for the HTTP verifier",
    )
    verifier_api_key: Optional[str] = Field(
        None,
        description="Bearer token for the attestation service (from env: GATEKEEPER_VERIFIER_API_KEY)",
    )
    verifier_timeout_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Attestation request timeout in seconds",
    )
    http_client_signatures: Optional[Dict[str, str]] = Field(
        None,
        description="Name -> regex of HTTP client libraries; null keeps the built-in list",
    )

    model_config = ConfigDict(use_enum_values=True)


def load_gatekeeper_settings(config_path: str) -> GatekeeperSettings:
    """
    Load gatekeeper settings from a YAML file.

    A missing 'gatekeeper' section yields the defaults.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        GatekeeperSettings with secrets filled from the environment

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ConfigError: If the YAML is invalid or the settings are inconsistent
    """
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with open(config_file, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a YAML dictionary, got {type(data)}")

    section = data.get("gatekeeper") or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'gatekeeper' must be a dictionary, got {type(section)}")

    try:
        settings = GatekeeperSettings(
            **{
                **section,
                "token_secret": os.getenv("GATEKEEPER_TOKEN_SECRET", section.get("token_secret")),
                "verifier_api_key": os.getenv("GATEKEEPER_VERIFIER_API_KEY", section.get("verifier_api_key")),
            }
        )
    except ValidationError as e:
        raise ConfigError(f"Invalid gatekeeper configuration: {e}") from e

    if settings.verifier == "hmac" and not settings.token_secret:
        raise ConfigError("HMAC verifier needs a secret (set GATEKEEPER_TOKEN_SECRET)")
    if settings.verifier == "http" and not settings.verifier_url:
        raise ConfigError("HTTP verifier needs 'verifier_url' in the gatekeeper configuration")

    return settings
