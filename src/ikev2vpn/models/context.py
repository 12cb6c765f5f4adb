"""Models holding the state of a single run.

The environment is populated once by the preflight checks, the setup options
once by the mode dispatcher. Both are immutable afterwards.
"""

from __future__ import annotations

# needed for pydantic to create the classes
import pathlib  # noqa: TCH003
from ipaddress import IPv4Address

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from ikev2vpn import config
from ikev2vpn.models.enums import OsType
from ikev2vpn.models.libreswan import SwanCapabilities  # noqa: TCH001


class OsInfo(BaseModel):
    """Operating system identification."""

    model_config = ConfigDict(frozen=True)

    os_type: OsType
    # Major version, or the debian codename such as 'bustersid'.
    os_ver: str
    os_arch: str


class ExportTarget(BaseModel):
    """Where client configuration files are written to."""

    model_config = ConfigDict(frozen=True)

    directory: pathlib.Path
    # uid/gid of the user the files are handed over to.
    owner: tuple[int, int] | None = None

    def path(self, client_name: str, suffix: str) -> pathlib.Path:
        """Return the path of a client configuration file."""
        return self.directory.joinpath(f"{client_name}{suffix}")


class Environment(BaseModel):
    """Result of the preflight checks."""

    model_config = ConfigDict(frozen=True)

    os: OsInfo
    swan_ver: str
    capabilities: SwanCapabilities
    in_container: bool = False
    export: ExportTarget


class SetupOptions(BaseModel):
    """Options chosen for the initial IKEv2 setup."""

    model_config = ConfigDict(frozen=True)

    server_addr: str
    use_dns_name: bool = False
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
    mobike_support: bool = False
    mobike_enable: bool = False
    use_own_password: bool = False

    @field_validator("mobike_enable")
    @classmethod
    def _mobike_needs_support(cls, v: bool, info: ValidationInfo) -> bool:  # noqa: FBT001
        return v and info.data.get("mobike_support", False)


class ClientBundle(BaseModel):
    """Files exported for a client."""

    client_name: str
    p12: pathlib.Path
    mobileconfig: pathlib.Path
    sswan: pathlib.Path
    # None when the operator entered their own password.
    password: str | None = None

    def files(self) -> list[pathlib.Path]:
        """Return all exported files."""
        return [self.p12, self.sswan, self.mobileconfig]
