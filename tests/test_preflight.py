from __future__ import annotations

import pathlib

import pytest

from ikev2vpn import config, preflight
from ikev2vpn.exceptions import PreconditionError
from ikev2vpn.models.defaults import SetupDefaults, load_defaults
from ikev2vpn.models.enums import OsType

from .conftest import FakeSystem


@pytest.fixture()
def release_files(
    tmp_path: pathlib.Path,
    monkeypatch: pytest.MonkeyPatch,
    fake_system: FakeSystem,  # noqa: ARG001
) -> pathlib.Path:
    """Point the release files to an empty temporary directory."""
    for name, attr in (
        ("redhat-release", "REDHAT_RELEASE_PATH"),
        ("system-release", "SYSTEM_RELEASE_PATH"),
        ("os-release", "OS_RELEASE_PATH"),
        ("debian_version", "DEBIAN_VERSION_PATH"),
    ):
        monkeypatch.setattr(config, attr, tmp_path.joinpath(name))
    return tmp_path


class TestDetectOs:
    """Test the operating system detection."""

    @pytest.mark.parametrize(
        ("release", "os_type", "os_ver"),
        [
            ("CentOS Linux release 7.9.2009 (Core)", OsType.CENTOS, "7"),
            ("CentOS Linux release 8.3.2011", OsType.CENTOS, "8"),
            ("Red Hat Enterprise Linux release 8.3 (Ootpa)", OsType.RHEL, "8"),
        ],
    )
    def test_redhat(
        self,
        release_files: pathlib.Path,
        release: str,
        os_type: OsType,
        os_ver: str,
    ) -> None:
        """Test if CentOS and RHEL 7/8 are detected from redhat-release."""
        release_files.joinpath("redhat-release").write_text(release, encoding="utf-8")

        os_info = preflight.detect_os()

        assert os_info.os_type == os_type
        assert os_info.os_ver == os_ver

    def test_amazon_linux(self, release_files: pathlib.Path) -> None:
        """Test if Amazon Linux 2 is detected from system-release."""
        release_files.joinpath("system-release").write_text(
            "Amazon Linux release 2 (Karoo)\n",
            encoding="utf-8",
        )

        assert preflight.detect_os().os_type == OsType.AMAZON

    @pytest.mark.parametrize(
        ("debian_version", "os_ver"),
        [("10.7\n", "10"), ("bullseye/sid\n", "bullseyesid"), ("buster/sid", "bustersid")],
    )
    def test_debian_family(
        self,
        release_files: pathlib.Path,
        debian_version: str,
        os_ver: str,
    ) -> None:
        """Test if the debian version is the text before the first dot."""
        release_files.joinpath("os-release").write_text(
            'NAME="Ubuntu"\nID=ubuntu\nVERSION_CODENAME=focal\n',
            encoding="utf-8",
        )
        release_files.joinpath("debian_version").write_text(debian_version, encoding="utf-8")

        os_info = preflight.detect_os()

        assert os_info.os_type == OsType.UBUNTU
        assert os_info.os_ver == os_ver

    def test_unsupported(self, release_files: pathlib.Path) -> None:
        """Test if other distributions are rejected."""
        release_files.joinpath("os-release").write_text("ID=arch\n", encoding="utf-8")

        with pytest.raises(PreconditionError, match="only supports"):
            preflight.detect_os()

    def test_redhat_ignored_for_debian_only(self, release_files: pathlib.Path) -> None:
        """Test if the upgrade detection only accepts the debian family."""
        release_files.joinpath("redhat-release").write_text(
            "CentOS Linux release 7.9.2009 (Core)",
            encoding="utf-8",
        )

        with pytest.raises(PreconditionError):
            preflight.detect_os(debian_only=True)


class TestSwanInstall:
    """Test the check for the base IPsec VPN installation."""

    @pytest.fixture()
    def base_install(self, tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> None:
        sysctl = tmp_path.joinpath("sysctl.conf")
        sysctl.write_text("# Added by hwdsl2 VPN script\n", encoding="utf-8")
        chap_secrets = tmp_path.joinpath("chap-secrets")
        chap_secrets.touch()
        passwd = tmp_path.joinpath("passwd")
        passwd.touch()
        monkeypatch.setattr(config, "SYSCTL_CONF_PATH", sysctl)
        monkeypatch.setattr(config, "CHAP_SECRETS_PATH", chap_secrets)
        monkeypatch.setattr(config, "IPSEC_PASSWD_PATH", passwd)
        monkeypatch.setattr(config, "CONTAINER_RUN_SCRIPT", tmp_path.joinpath("run.sh"))

    def test_installed(
        self,
        base_install: None,  # noqa: ARG002
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test if the Libreswan version is returned."""
        monkeypatch.setattr(
            preflight,
            "get_swan_version_output",
            lambda: "Linux Libreswan 3.32 (netkey) on 4.19.0\n",
        )

        assert preflight.check_swan_install() == "3.32"

    def test_missing_secrets(
        self,
        base_install: None,  # noqa: ARG002
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test if a missing chap-secrets file means no base installation."""
        monkeypatch.setattr(
            preflight,
            "get_swan_version_output",
            lambda: "Linux Libreswan 3.32 (netkey) on 4.19.0\n",
        )
        config.CHAP_SECRETS_PATH.unlink()

        with pytest.raises(PreconditionError, match="must first set up the IPsec VPN server"):
            preflight.check_swan_install()

    def test_missing_libreswan(
        self,
        base_install: None,  # noqa: ARG002
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test if a missing Libreswan means no base installation."""
        monkeypatch.setattr(preflight, "get_swan_version_output", lambda: "")

        with pytest.raises(PreconditionError):
            preflight.check_swan_install()


class TestExportTarget:
    """Test the selection of the export directory."""

    def test_container(self) -> None:
        """Test if the container keeps the files with the IPsec configuration."""
        target = preflight.get_export_target(in_container=True)

        assert target.directory == config.IPSEC_D_DIR
        assert target.owner is None

    def test_without_sudo(
        self,
        tmp_path: pathlib.Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test if the home directory of the current user is used without sudo."""
        monkeypatch.delenv("SUDO_USER", raising=False)
        monkeypatch.setattr(pathlib.Path, "home", lambda: tmp_path)

        target = preflight.get_export_target(in_container=False)

        assert target.directory == tmp_path
        assert target.owner is None

    def test_unknown_sudo_user(
        self,
        tmp_path: pathlib.Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test if an unknown sudo user falls back to the current home directory."""
        monkeypatch.setenv("SUDO_USER", "no-such-user-for-tests")
        monkeypatch.setattr(pathlib.Path, "home", lambda: tmp_path)

        target = preflight.get_export_target(in_container=False)

        assert target.directory == tmp_path


class TestDefaults:
    """Test the operator defaults file."""

    def test_missing_file(self, tmp_path: pathlib.Path) -> None:
        """Test if the built-in defaults are used without a file."""
        defaults = load_defaults(tmp_path.joinpath("missing.yaml"))

        assert defaults == SetupDefaults()
        assert defaults.client_name == "vpnclient"
        assert defaults.client_validity == 120
        assert [str(x) for x in defaults.dns_servers] == ["8.8.8.8", "8.8.4.4"]

    def test_valid_file(self, tmp_path: pathlib.Path) -> None:
        """Test if the values of the file replace the built-in defaults."""
        path = tmp_path.joinpath("defaults.yaml")
        path.write_text(
            "client_name: office\nclient_validity: 24\n"
            "address_pool: 10.10.0.10-10.10.0.99\n",
            encoding="utf-8",
        )

        defaults = load_defaults(path)

        assert defaults.client_name == "office"
        assert defaults.client_validity == 24
        assert defaults.address_pool == "10.10.0.10-10.10.0.99"

    @pytest.mark.parametrize(
        "content",
        [
            "client_name: two words\n",
            "client_validity: 121\n",
            "dns_servers: [1.1.1.1, 1.0.0.1, 8.8.8.8]\n",
            "dns_servers: [not-an-ip]\n",
            "address_pool: 10.0.0.99-10.0.0.10\n",
            "address_pool: 10.0.0.10\n",
            "- a list\n",
            "client_name: [unclosed\n",
        ],
    )
    def test_invalid_file(self, tmp_path: pathlib.Path, content: str) -> None:
        """Test if an invalid file is a precondition error."""
        path = tmp_path.joinpath("defaults.yaml")
        path.write_text(content, encoding="utf-8")

        with pytest.raises(PreconditionError, match="Invalid defaults file"):
            load_defaults(path)
