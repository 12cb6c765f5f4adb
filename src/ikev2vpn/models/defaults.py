"""Operator defaults read from a YAML file."""

from __future__ import annotations

import logging
from ipaddress import IPv4Address
from typing import TYPE_CHECKING

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from ikev2vpn import config
from ikev2vpn.exceptions import PreconditionError

if TYPE_CHECKING:
    import pathlib

logger = logging.getLogger("ikev2vpn")


class SetupDefaults(BaseModel):
    """Values used when the operator doesn't choose otherwise."""

    client_name: str = config.DEFAULT_CLIENT_NAME
    client_validity: int = Field(
        config.CLIENT_VALIDITY_MAX,
        ge=config.CLIENT_VALIDITY_MIN,
        le=config.CLIENT_VALIDITY_MAX,
    )
    dns_servers: list[IPv4Address] = Field(
        default_factory=lambda: [IPv4Address(x) for x in config.DEFAULT_DNS_SERVERS],
        min_length=1,
        max_length=2,
    )
    address_pool: str = config.DEFAULT_ADDRESS_POOL

    @field_validator("client_name")
    @classmethod
    def _validate_client_name(cls, v: str) -> str:
        if not config.CLIENT_NAME_RE.fullmatch(v):
            msg = f"Invalid client name '{v}'."
            raise ValueError(msg)
        return v

    @field_validator("address_pool")
    @classmethod
    def _validate_address_pool(cls, v: str) -> str:
        start, sep, end = v.partition("-")
        if not sep:
            msg = f"Invalid address pool '{v}', expected 'first-last'."
            raise ValueError(msg)
        if IPv4Address(start.strip()) > IPv4Address(end.strip()):
            msg = f"Invalid address pool '{v}', first address is after the last."
            raise ValueError(msg)
        return v


def load_defaults(path: pathlib.Path | None = None) -> SetupDefaults:
    """Load the operator defaults, falling back to built-in values."""
    path = path or config.DEFAULTS_PATH
    if not path.exists():
        return SetupDefaults()

    logger.info("Loading defaults from '%s'.", path)
    with path.open(encoding="utf-8") as f:
        try:
            return SetupDefaults(**(yaml.safe_load(f) or {}))
        except (ValidationError, yaml.YAMLError, TypeError) as err:
            msg = f"Invalid defaults file '{path}': {err}"
            raise PreconditionError(msg) from err
