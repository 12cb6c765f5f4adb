"""Manage the IKEv2 connection in the Libreswan configuration."""

from __future__ import annotations

import gzip
import logging
import pathlib
import platform
from typing import TYPE_CHECKING

from jinja2 import Environment, FileSystemLoader

from ikev2vpn import config, helpers
from ikev2vpn.exceptions import CommandError, PreconditionError
from ikev2vpn.models.enums import OsType

if TYPE_CHECKING:
    from ikev2vpn.models.context import Environment as RunEnvironment
    from ikev2vpn.models.context import SetupOptions

logger = logging.getLogger("ikev2vpn")

BASE_DIR = pathlib.Path(__file__).parent
TEMPLATES_DIR = BASE_DIR.joinpath("templates")
TEMPLATES_ENV = Environment(
    loader=FileSystemLoader(TEMPLATES_DIR),
    autoescape=True,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)

CONN_HEADER = f"conn {config.CONN_NAME}"


def is_configured() -> bool:
    """Check if IKEv2 has been set up on this server."""
    return (
        helpers.file_contains(config.IPSEC_CONF_PATH, CONN_HEADER)
        or config.IKEV2_CONF_PATH.exists()
    )


def _read_leftcert(path: pathlib.Path) -> str:
    for line in helpers.read_text(path).splitlines():
        if "leftcert=" in line:
            return line.split("=", 1)[1].strip()
    return ""


def get_server_address() -> str:
    """Return the server address the IKEv2 connection was set up with."""
    server_addr = _read_leftcert(config.IKEV2_CONF_PATH) or _read_leftcert(
        config.IPSEC_CONF_PATH,
    )
    if not (helpers.check_ip(server_addr) or helpers.check_dns_name(server_addr)):
        msg = "Could not get VPN server address."
        raise PreconditionError(msg)
    return server_addr


def ensure_include() -> None:
    """Make ipsec.conf include the configuration files in ipsec.d."""
    content = helpers.read_text(config.IPSEC_CONF_PATH)
    if config.IPSEC_INCLUDE_LINE in content.splitlines():
        return
    logger.info("Adding '%s' to %s.", config.IPSEC_INCLUDE_LINE, config.IPSEC_CONF_PATH)
    with config.IPSEC_CONF_PATH.open("a", encoding="utf-8") as f:
        f.write(f"\n{config.IPSEC_INCLUDE_LINE}\n")


def render_connection(
    env: RunEnvironment,
    options: SetupOptions,
    address_pool: str = config.DEFAULT_ADDRESS_POOL,
) -> str:
    """Render the IKEv2 connection block."""
    capabilities = env.capabilities
    template = TEMPLATES_ENV.get_template("ikev2.conf.j2")
    return template.render(
        conn_name=config.CONN_NAME,
        server_addr=options.server_addr,
        use_dns_name=options.use_dns_name,
        address_pool=address_pool,
        dns_style=capabilities.dns_style.value,
        dns_servers=[str(x) for x in options.dns_servers],
        mobike=options.mobike_enable if capabilities.mobike else None,
    )


def write_connection(
    env: RunEnvironment,
    options: SetupOptions,
    address_pool: str = config.DEFAULT_ADDRESS_POOL,
) -> None:
    """Write the IKEv2 connection file and include it from ipsec.conf."""
    ensure_include()

    logger.info("Adding a new IKEv2 connection to %s.", config.IKEV2_CONF_PATH)
    swan_render = render_connection(env, options, address_pool)
    logger.debug(swan_render)
    with config.IKEV2_CONF_PATH.open("w", encoding="utf-8") as f:
        f.write(swan_render)


def _kernel_has_xfrm_migrate_arm() -> bool:
    # The configs module exposes the kernel configuration in /proc.
    helpers.run_cmd(["modprobe", "-q", "configs"], check=False)
    if not config.PROC_CONFIG_GZ.exists():
        return False
    with gzip.open(config.PROC_CONFIG_GZ, "rt", encoding="utf-8") as f:
        return config.XFRM_MIGRATE_FLAG in f.read()


def check_mobike_support(env: RunEnvironment) -> bool:
    """Check if the daemon, kernel and OS support MOBIKE."""
    if not env.capabilities.mobike:
        return False

    uname = platform.uname()
    if uname.machine.lower().startswith(("arm", "aarch64")):
        try:
            if not _kernel_has_xfrm_migrate_arm():
                return False
        except (OSError, CommandError):
            logger.debug("Could not read the kernel configuration.", exc_info=True)
            return False

    kernel_conf = config.BOOT_DIR.joinpath(f"config-{uname.release}")
    if kernel_conf.exists() and not helpers.file_contains(
        kernel_conf,
        config.XFRM_MIGRATE_FLAG,
    ):
        return False

    # Linux kernels on Ubuntu do not support MOBIKE
    if "ubuntu" in uname.version.lower():
        return False
    return env.in_container or env.os.os_type != OsType.UBUNTU


def restart_ipsec() -> None:
    """Restart the IPsec service."""
    logger.info("Restarting IPsec service.")
    config.PLUTO_RUN_DIR.mkdir(parents=True, exist_ok=True)
    helpers.run_cmd(
        ["service", "ipsec", "restart"],
        error="Could not restart the IPsec service.",
    )


def check_removable() -> None:
    """Verify the IKEv2 connection lives in its own file."""
    if helpers.file_contains(config.IPSEC_CONF_PATH, CONN_HEADER):
        msg = (
            f"IKEv2 configuration section found in {config.IPSEC_CONF_PATH}.\n"
            "       This script cannot automatically remove IKEv2 from this server.\n"
            "       To manually remove IKEv2, see https://git.io/ikev2\n"
            "Abort. No changes were made."
        )
        raise PreconditionError(msg)


def remove_connection() -> None:
    """Delete the IKEv2 connection file."""
    logger.info("Deleting %s.", config.IKEV2_CONF_PATH)
    config.IKEV2_CONF_PATH.unlink(missing_ok=True)

