"""Various enums used throughout the package."""

from enum import Enum


class OsType(str, Enum):
    """Define the operating systems the scripts run on."""

    UBUNTU = "ubuntu"
    DEBIAN = "debian"
    RASPBIAN = "raspbian"
    CENTOS = "centos"
    RHEL = "rhel"
    AMAZON = "amzn"

    @property
    def is_debian_family(self) -> bool:
        """Return whether the OS uses apt-get for packages."""
        return self in (OsType.UBUNTU, OsType.DEBIAN, OsType.RASPBIAN)


class DnsStyle(str, Enum):
    """Define how DNS servers are pushed to clients in the connection block."""

    # modecfgdns1=a / modecfgdns2=b
    SPLIT = "split"
    # modecfgdns="a b"
    QUOTED = "quoted"


class MenuOption(str, Enum):
    """Define the choices offered when IKEv2 is already set up."""

    ADD = "1"
    EXPORT = "2"
    LIST = "3"
    REMOVE = "4"
    EXIT = "5"
