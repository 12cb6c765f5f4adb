"""Store global configuration."""

from __future__ import annotations

import re
from pathlib import Path

# Libreswan version installed by the upgrade command.
SWAN_VER = "4.1"
# Versions the upgrade command knows how to build.
SWAN_UPGRADE_VERSIONS = ("3.26", "3.27", "3.29", "3.31", "3.32", "4.1")

# Certificate labels and subject fields
CA_NAME = "IKEv2 VPN CA"
CERT_ORG = "IKEv2 VPN"
CERT_KEY_SIZE = 4096
CA_VALIDITY = 120  # months
SERVER_VALIDITY = 120  # months
CLIENT_VALIDITY_MIN = 1
CLIENT_VALIDITY_MAX = 120

# Name of the IKEv2 connection block
CONN_NAME = "ikev2-cp"

# Libreswan configuration files and NSS database
IPSEC_BIN = Path("/usr/local/sbin/ipsec")
IPSEC_CONF_PATH = Path("/etc/ipsec.conf")
IPSEC_D_DIR = Path("/etc/ipsec.d/")
IKEV2_CONF_PATH = IPSEC_D_DIR.joinpath("ikev2.conf")
IPSEC_INCLUDE_LINE = "include /etc/ipsec.d/*.conf"
PLUTO_RUN_DIR = Path("/run/pluto")
NSS_DB = f"sql:{IPSEC_D_DIR}"

# Files written by the base IPsec VPN installation
SYSCTL_CONF_PATH = Path("/etc/sysctl.conf")
CHAP_SECRETS_PATH = Path("/etc/ppp/chap-secrets")
IPSEC_PASSWD_PATH = IPSEC_D_DIR.joinpath("passwd")
CONTAINER_RUN_SCRIPT = Path("/opt/src/run.sh")
BASE_INSTALL_MARKER = "hwdsl2 VPN script"
CONTAINER_MARKER = "hwdsl2"

# OS release information
REDHAT_RELEASE_PATH = Path("/etc/redhat-release")
SYSTEM_RELEASE_PATH = Path("/etc/system-release")
OS_RELEASE_PATH = Path("/etc/os-release")
DEBIAN_VERSION_PATH = Path("/etc/debian_version")
OPENVZ_PATH = Path("/proc/user_beancounters")

# Kernel configuration used to detect MOBIKE support
PROC_CONFIG_GZ = Path("/proc/config.gz")
BOOT_DIR = Path("/boot")
XFRM_MIGRATE_FLAG = "CONFIG_XFRM_MIGRATE=y"

# Source build of Libreswan
SRC_DIR = Path("/opt/src")
IF_LINK_HEADER = Path("/usr/include/linux/if_link.h")
SWAN_URLS = (
    "https://github.com/libreswan/libreswan/archive/v{version}.tar.gz",
    "https://download.libreswan.org/libreswan-{version}.tar.gz",
)

# Version check endpoints
SWAN_CHECK_URL = "https://dl.ls20.com/v1/{os_type}/{os_ver}/swanverikev2"
SWAN_CHECK_URL_CONTAINER = "https://dl.ls20.com/v1/docker/{os_arch}/swanverikev2"
SWAN_UPGRADE_CHECK_URL = "https://dl.ls20.com/v1/{os_type}/{os_ver}/swanverupg"

# Public IP discovery
PUBLIC_IP_URL = "http://ipv4.icanhazip.com"
PUBLIC_IP_RESOLVER = "resolver1.opendns.com"
PUBLIC_IP_NAME = "myip.opendns.com"

# Network fetches
HTTP_RETRIES = 3
HTTP_TIMEOUT = 15
DOWNLOAD_TIMEOUT = 30

# Operator defaults
DEFAULTS_PATH = Path("/etc/ikev2vpn/defaults.yaml")
DEFAULT_CLIENT_NAME = "vpnclient"
DEFAULT_DNS_SERVERS = ("8.8.8.8", "8.8.4.4")
DEFAULT_ADDRESS_POOL = "192.168.43.10-192.168.43.250"

# Logging
LOG_DIR = Path("/var/log/ikev2vpn/")
LOG_PATH = LOG_DIR.joinpath("ikev2vpn.log")

# Characters used for generated passwords, without easily confused glyphs.
PASSWORD_ALPHABET = "ABCDEFGHJKLMNPRSTUVWXYZabcdefghijkmnopqrstuvwxyz23456789"
PASSWORD_LENGTH = 16

# Match dotted quad IPv4 addresses
IP_RE = re.compile(
    r"^(([0-9]|[1-9][0-9]|1[0-9]{2}|2[0-4][0-9]|25[0-5])\.){3}"
    r"([0-9]|[1-9][0-9]|1[0-9]{2}|2[0-4][0-9]|25[0-5])$",
)
# Match fully qualified domain names
FQDN_RE = re.compile(r"^([a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}$")
# Match valid client names. Names must not look like a command line flag.
CLIENT_NAME_RE = re.compile(r"^(?!-)[A-Za-z0-9_-]{1,64}$")
# Match a Libreswan version as returned by the version check endpoints
SWAN_VER_RE = re.compile(r"^([3-9]|[1-9][0-9])\.([0-9]|[1-9][0-9])$")
