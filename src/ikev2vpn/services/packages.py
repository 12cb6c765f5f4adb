"""Install operating system packages."""

from __future__ import annotations

import logging
import os
import pathlib
from typing import TYPE_CHECKING

from ikev2vpn import helpers
from ikev2vpn.exceptions import CommandError
from ikev2vpn.models.enums import OsType
from ikev2vpn.services import network

if TYPE_CHECKING:
    from ikev2vpn.models.context import OsInfo

logger = logging.getLogger("ikev2vpn")

NSS_FIX_URL_MAIN = "https://mirrors.kernel.org/ubuntu/pool/main/n/nss"
NSS_FIX_URL_UNIVERSE = "https://mirrors.kernel.org/ubuntu/pool/universe/n/nss"
NSS_FIX_DEBS = (
    (NSS_FIX_URL_MAIN, "libnss3_3.49.1-1ubuntu1.5_amd64.deb"),
    (NSS_FIX_URL_MAIN, "libnss3-dev_3.49.1-1ubuntu1.5_amd64.deb"),
    (NSS_FIX_URL_UNIVERSE, "libnss3-tools_3.49.1-1ubuntu1.5_amd64.deb"),
)


def _apt_env() -> None:
    os.environ["DEBIAN_FRONTEND"] = "noninteractive"


def apt_update() -> None:
    """Update the apt package index."""
    _apt_env()
    helpers.run_cmd(["apt-get", "-yq", "update"], error="'apt-get update' failed.")


def apt_install(packages: list[str]) -> None:
    """Install packages with apt-get."""
    _apt_env()
    helpers.run_cmd(
        ["apt-get", "-yq", "install", *packages],
        error="'apt-get install' failed.",
    )


def apply_ubuntu1804_nss_fix(os_info: OsInfo) -> None:
    """Replace the NSS libraries of Ubuntu 18.04, their certutil is broken.

    Best effort: if a package can't be downloaded nothing is installed.
    """
    if not (
        os_info.os_type == OsType.UBUNTU
        and os_info.os_ver == "bustersid"
        and os_info.os_arch == "x86_64"
    ):
        return

    logger.info("Applying fix for NSS bug on Ubuntu 18.04.")
    deb_paths = [pathlib.Path("/tmp").joinpath(deb) for _, deb in NSS_FIX_DEBS]  # noqa: S108
    try:
        for (url, deb), path in zip(NSS_FIX_DEBS, deb_paths):
            network.download([f"{url}/{deb}"], path)
        _apt_env()
        helpers.run_cmd(["apt-get", "-yqq", "update"], check=False)
        helpers.run_cmd(
            ["apt-get", "-yqq", "install", *(str(x) for x in deb_paths)],
            check=False,
        )
    except CommandError as err:
        logger.warning("Skipping NSS fix: %s", err.message)
    finally:
        for path in deb_paths:
            path.unlink(missing_ok=True)
