from __future__ import annotations

import pathlib

import pytest
from typer.testing import CliRunner

from ikev2vpn import config, preflight
from ikev2vpn.ctl import upgrade
from ikev2vpn.exceptions import PreconditionError
from ikev2vpn.models.context import OsInfo
from ikev2vpn.models.enums import OsType
from ikev2vpn.upgrade import ipsecconf, patches, pipeline

from .conftest import FakeSystem
from .data import data_test_ipsec_conf as data

runner = CliRunner()


class TestIpsecConf:
    """Test the ipsec.conf and ikev2.conf transformations."""

    def test_full_file(self) -> None:
        """Test if a complete ipsec.conf is updated for Libreswan 4.1."""
        content, dns_state = ipsecconf.transform_ipsec_conf(data.IPSEC_CONF_BEFORE, "4.1")

        assert content == data.IPSEC_CONF_AFTER
        assert dns_state == ipsecconf.DnsState.BOTH

    @pytest.mark.parametrize(("before", "after"), data.RENAMED_LINES)
    def test_renamed_lines(self, before: str, after: str) -> None:
        """Test if obsolete options are renamed."""
        content, _ = ipsecconf.transform_ipsec_conf(f"{before}\n", "3.26")

        assert content == f"{after}\n"

    def test_phase2_without_sha512(self) -> None:
        """Test if aes256-sha2_512 is dropped when the kernel lacks sha512."""
        content, _ = ipsecconf.transform_ipsec_conf(
            "conn shared\n  phase2alg=3des-sha1\n",
            "3.27",
            sha512=False,
        )

        assert content == f"conn shared\n{ipsecconf.PHASE2_NEW_NO_SHA512}\n"
        assert "sha2_512" not in content

    def test_single_dns_server(self) -> None:
        """Test if a single modecfgdns1 is renamed without quotes."""
        content, dns_state = ipsecconf.transform_ipsec_conf(
            "conn xauth-psk\n  modecfgdns1=1.1.1.1\n",
            "3.27",
        )

        assert content == "conn xauth-psk\n  modecfgdns=1.1.1.1\n"
        assert dns_state == ipsecconf.DnsState.SINGLE

    def test_multiple_dns_blocks(self) -> None:
        """Test if several DNS blocks are left alone and reported."""
        before = (
            "conn a\n  modecfgdns1=1.1.1.1\n  modecfgdns2=1.0.0.1\n"
            "conn b\n  modecfgdns1=8.8.8.8\n  modecfgdns2=8.8.4.4\n"
        )

        content, dns_state = ipsecconf.transform_ipsec_conf(before, "3.27")

        assert content == before
        assert dns_state == ipsecconf.DnsState.MULTIPLE

    @pytest.mark.parametrize(
        ("swan_ver", "expected"),
        [
            ("3.26", "conn shared\n  left=%defaultroute\n"),
            ("3.27", "conn shared\n  left=%defaultroute\n"),
            ("3.29", "conn shared\n  ikev2=never\n  left=%defaultroute\n"),
            ("3.32", "conn shared\n  ikev2=never\n  left=%defaultroute\n"),
        ],
    )
    def test_ikev2_never(self, swan_ver: str, expected: str) -> None:
        """Test if 'ikev2=never' is added to 'conn shared' for newer versions."""
        content, _ = ipsecconf.transform_ipsec_conf(
            "conn shared\n  left=%defaultroute\n",
            swan_ver,
        )

        assert content == expected

    def test_ikev2_conf(self) -> None:
        """Test if ike-frag is renamed in ikev2.conf."""
        assert ipsecconf.transform_ikev2_conf(data.IKEV2_CONF_BEFORE) == data.IKEV2_CONF_AFTER

    def test_update_keeps_backup(
        self,
        fake_system: FakeSystem,  # noqa: ARG002
        swan_paths: pathlib.Path,
    ) -> None:
        """Test if the original ipsec.conf is kept next to the updated file."""
        config.IPSEC_CONF_PATH.write_text(data.IPSEC_CONF_BEFORE, encoding="utf-8")

        ipsecconf.update_ipsec_conf("4.1")

        backups = list(swan_paths.glob("ipsec.conf.old-*"))
        assert len(backups) == 1
        assert backups[0].read_text(encoding="utf-8") == data.IPSEC_CONF_BEFORE
        assert "sha2-truncbug=no" in config.IPSEC_CONF_PATH.read_text(encoding="utf-8")

    def test_update_missing_file(
        self,
        fake_system: FakeSystem,  # noqa: ARG002
        swan_paths: pathlib.Path,
    ) -> None:
        """Test if a missing ipsec.conf is reported and nothing is written."""
        config.IPSEC_CONF_PATH.unlink()

        with pytest.raises(PreconditionError, match="Could not read"):
            ipsecconf.update_ipsec_conf("4.1")
        assert list(swan_paths.glob("ipsec.conf*")) == []


class TestPatches:
    """Test the source patches and build flags."""

    def test_patch_table_versions(self) -> None:
        """Test if patches exist only for the versions that need them."""
        assert set(patches.SOURCE_PATCHES) == {"3.26", "3.31", "4.1"}
        assert set(patches.SOURCE_PATCHES) <= set(config.SWAN_UPGRADE_VERSIONS)

    def test_patch_table_is_frozen(self) -> None:
        """Test if the patch table can't be changed at runtime."""
        with pytest.raises(TypeError):
            patches.SOURCE_PATCHES["3.27"] = ()  # type: ignore[index]

    def test_patches_3_26(self, tmp_path: pathlib.Path) -> None:
        """Test if the freebl library and header are removed for 3.26."""
        tmp_path.joinpath("mk").mkdir()
        tmp_path.joinpath("programs", "pluto").mkdir(parents=True)
        tmp_path.joinpath("mk", "config.mk").write_text(
            "NSS_LDFLAGS ?= -lnss3 -lfreebl -lnspr4\n",
            encoding="utf-8",
        )
        tmp_path.joinpath("programs", "pluto", "keys.c").write_text(
            '#include "nss.h"\n#include <blapi.h>\nint x;\n',
            encoding="utf-8",
        )

        patches.apply_source_patches("3.26", tmp_path)

        assert tmp_path.joinpath("mk", "config.mk").read_text(encoding="utf-8") == (
            "NSS_LDFLAGS ?= -lnss3 -lnspr4\n"
        )
        assert tmp_path.joinpath("programs", "pluto", "keys.c").read_text(
            encoding="utf-8",
        ) == '#include "nss.h"\nint x;\n'

    def test_patches_3_31_line_numbers(self) -> None:
        """Test if the 3.31 patches edit only the given lines."""
        insert, substitute = patches.SOURCE_PATCHES["3.31"]
        lines = "".join(f"if (line{i})\n" for i in range(1, 1101))

        inserted = insert.apply_to_text(lines).splitlines()
        substituted = substitute.apply_to_text(lines).splitlines()

        assert inserted[915] == "if (!st->st_seen_fragvid) { return FALSE; }"
        assert inserted[916] == "if (line916)"
        assert substituted[1032] == (
            "if (LIN(POLICY_IKE_FRAG_ALLOW, sk->ike->sa.st_connection->policy)"
            " && sk->ike->sa.st_seen_fragvid && line1033)"
        )
        assert substituted[1031] == "if (line1032)"

    def test_patches_4_1(self) -> None:
        """Test if the sysv init name is fixed for 4.1."""
        (patch,) = patches.SOURCE_PATCHES["4.1"]

        assert patch.apply_to_text("  sysv ) echo\n") == "  sysvinit ) echo\n"

    def test_no_patches(self, tmp_path: pathlib.Path) -> None:
        """Test if versions without patches leave the tree alone."""
        patches.apply_source_patches("3.27", tmp_path)

        assert list(tmp_path.iterdir()) == []

    def test_makefile_flags_4_1(self) -> None:
        """Test the flags for 4.1 on a system with a codename and new headers."""
        flags = patches.makefile_flags("4.1", has_codename=True, has_ifla_xfrm_link=True)

        assert flags == [
            "WERROR_CFLAGS=-w",
            "USE_DNSSEC=false",
            "USE_DH2=true",
            "USE_NSS_KDF=false",
            "FINALNSSDIR=/etc/ipsec.d",
        ]

    def test_makefile_flags_3_31(self) -> None:
        """Test the flags for 3.31 on a system with old kernel headers."""
        flags = patches.makefile_flags("3.31", has_codename=True, has_ifla_xfrm_link=False)

        assert flags == [
            "WERROR_CFLAGS=-w",
            "USE_DNSSEC=false",
            "USE_DH31=false",
            "USE_NSS_AVA_COPY=true",
            "USE_NSS_IPSEC_PROFILE=false",
            "USE_GLIBC_KERN_FLIP_HEADERS=true",
            "USE_DH2=true",
            "USE_XFRM_INTERFACE_IFLA_HEADER=true",
        ]

    def test_makefile_flags_3_27(self) -> None:
        """Test if older versions don't get the DH2 and KDF flags."""
        flags = patches.makefile_flags("3.27", has_codename=False, has_ifla_xfrm_link=False)

        assert "USE_DH2=true" not in flags
        assert "USE_NSS_KDF=false" not in flags
        assert "USE_DH31=false" in flags


class TestGates:
    """Test the checks done before anything is built."""

    @pytest.mark.parametrize("swan_ver", ["3.25", "3.28", "4.2", "latest"])
    def test_unsupported_target(self, swan_ver: str) -> None:
        """Test if only known versions can be built."""
        with pytest.raises(PreconditionError, match="is not supported"):
            pipeline.check_target_version(swan_ver)

    @pytest.mark.parametrize("os_ver", ["8", "jessiesid"])
    def test_debian_8(self, monkeypatch: pytest.MonkeyPatch, os_ver: str) -> None:
        """Test if Debian 8 is rejected."""
        monkeypatch.setattr(
            preflight,
            "detect_os",
            lambda debian_only: OsInfo(os_type=OsType.DEBIAN, os_ver=os_ver, os_arch="x86_64"),  # noqa: ARG005
        )

        with pytest.raises(PreconditionError, match="Debian 8"):
            pipeline.detect_os()

    def test_missing_libreswan(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test if an upgrade needs an installed Libreswan."""
        monkeypatch.setattr(preflight, "get_swan_version_output", lambda: "")

        with pytest.raises(PreconditionError, match="requires Libreswan already installed"):
            pipeline.get_installed_version()


class TestUpgradeCli:
    """Test the upgrade command."""

    @pytest.fixture(autouse=True)
    def _system(
        self,
        fake_system: FakeSystem,  # noqa: ARG002
        swan_paths: pathlib.Path,  # noqa: ARG002
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(
            pipeline,
            "detect_os",
            lambda: OsInfo(os_type=OsType.UBUNTU, os_ver="bustersid", os_arch="x86_64"),
        )
        monkeypatch.setattr(pipeline, "check_openvz", lambda: None)
        monkeypatch.setattr(preflight, "check_run_as_root", lambda command: None)  # noqa: ARG005
        monkeypatch.setattr(
            preflight,
            "get_swan_version_output",
            lambda: f"Linux Libreswan {config.SWAN_VER} (netkey) on 5.4.0\n",
        )

    def test_same_version_declined(
        self,
        fake_system: FakeSystem,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test if declining a reinstall changes nothing."""
        built: list[str] = []
        monkeypatch.setattr(pipeline, "build_libreswan", built.append)

        result = runner.invoke(upgrade.app, [], input="n\n")

        assert result.exit_code == 1
        assert f"You already have Libreswan version {config.SWAN_VER} installed" in result.output
        assert "Abort. No changes were made." in result.output
        assert built == []
        assert fake_system.calls == []

    def test_unsupported_version(self, fake_system: FakeSystem) -> None:
        """Test if an unknown target version stops the upgrade."""
        result = runner.invoke(upgrade.app, ["--swan-ver", "3.28"])

        assert result.exit_code == 1
        assert "is not supported" in result.output
        assert fake_system.calls == []

    def test_upgrade(
        self,
        fake_system: FakeSystem,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test if an older version is built and the configuration updated."""
        built: list[str] = []
        monkeypatch.setattr(pipeline, "build_libreswan", built.append)
        config.IPSEC_CONF_PATH.write_text(data.IPSEC_CONF_BEFORE, encoding="utf-8")

        result = runner.invoke(upgrade.app, ["--swan-ver", "3.32"], input="y\n")

        assert result.exit_code == 0, result.output
        assert "Older versions of Libreswan" in result.output
        assert "Libreswan 3.32 has been successfully installed!" in result.output
        assert built == ["3.32"]
        assert ["service", "ipsec", "restart"] in fake_system.calls
        assert "phase2=esp" in config.IPSEC_CONF_PATH.read_text(encoding="utf-8")

    def test_upgrade_without_ipsec_conf(
        self,
        fake_system: FakeSystem,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test if a missing ipsec.conf stops the upgrade with an error."""
        monkeypatch.setattr(pipeline, "build_libreswan", lambda swan_ver: None)  # noqa: ARG005
        config.IPSEC_CONF_PATH.unlink()

        result = runner.invoke(upgrade.app, ["--swan-ver", "3.32"], input="y\n")

        assert result.exit_code == 1
        assert "Could not read" in result.output
        assert result.exception is None or isinstance(result.exception, SystemExit)
        assert ["service", "ipsec", "restart"] not in fake_system.calls
