from __future__ import annotations

import pathlib
import subprocess
from typing import Any

import pytest

from ikev2vpn import config, helpers
from ikev2vpn.exceptions import CommandError
from ikev2vpn.models import libreswan as swan_models
from ikev2vpn.models.context import Environment, ExportTarget, OsInfo
from ikev2vpn.models.enums import OsType
from ikev2vpn.services import network, nss

PUBLIC_IP = "203.0.113.10"
CA_PEM = (
    "-----BEGIN CERTIFICATE-----\n"
    "ZmFrZSBjYSBjZXJ0aWZpY2F0\n"
    "ZSB1c2VkIGluIHRoZSB0ZXN0\n"
    "cw==\n"
    "-----END CERTIFICATE-----\n"
)
P12_CONTENT = b"fake-pkcs12-" * 20
LIST_HEADER = (
    "\n"
    "Certificate Nickname                                         Trust Attributes\n"
    "                                                             SSL,S/MIME,JAR/XPI\n"
    "\n"
)

# Generating commands of certutil, they change the database.
MUTATING_FLAGS = ("-S", "-F", "-D")


def _arg(cmd: list[str], flag: str) -> str | None:
    if flag not in cmd:
        return None
    return cmd[cmd.index(flag) + 1]


class FakeSystem:
    """Stand in for the external tools, records every command."""

    def __init__(self) -> None:
        # label -> trust attributes
        self.certs: dict[str, str] = {}
        # labels with a private key
        self.keys: set[str] = set()
        self.calls: list[list[str]] = []
        self.public_ip = PUBLIC_IP

    def add_cert(self, label: str, trust: str = "u,u,u", *, key: bool = True) -> None:
        """Put a certificate in the fake database."""
        self.certs[label] = trust
        if key:
            self.keys.add(label)

    def commands(self, program: str) -> list[list[str]]:
        """Return the recorded invocations of a program."""
        return [x for x in self.calls if x[0] == program]

    def mutating_certutil_calls(self) -> list[list[str]]:
        """Return the certutil invocations that change the database."""
        return [
            x for x in self.commands("certutil") if any(f in x for f in MUTATING_FLAGS)
        ]

    def run_cmd(
        self,
        cmd: list[str],
        *,
        stdin: str | None = None,  # noqa: ARG002
        check: bool = True,
        capture: bool = True,  # noqa: ARG002
        error: str | None = None,
        secret: bool = False,  # noqa: ARG002
    ) -> subprocess.CompletedProcess[str]:
        self.calls.append(list(cmd))
        handler = getattr(self, f"_{cmd[0].replace('-', '_')}", None)
        stdout, returncode = handler(cmd) if handler else ("", 0)
        if returncode and check:
            raise CommandError(error or f"'{cmd[0]}' failed.")
        return subprocess.CompletedProcess(cmd, returncode, stdout, "")

    def _certutil(self, cmd: list[str]) -> tuple[str, int]:
        label = _arg(cmd, "-n")
        if "-S" in cmd:
            self.add_cert(label or "", _arg(cmd, "-t") or ",,")
            return "", 0
        if "-F" in cmd:
            if label not in self.keys:
                return "", 255
            self.keys.discard(label)
            return "", 0
        if "-D" in cmd:
            if label not in self.certs:
                return "", 255
            del self.certs[label]
            return "", 0
        if "-L" in cmd:
            if label is None:
                rows = "".join(f"{x:<60} {y}\n" for x, y in self.certs.items())
                return LIST_HEADER + rows, 0
            if label not in self.certs:
                return "", 255
            return (CA_PEM if "-a" in cmd else f"{label}\n"), 0
        return "", 0

    def _pk12util(self, cmd: list[str]) -> tuple[str, int]:
        label = _arg(cmd, "-n")
        if label not in self.certs:
            return "", 255
        pathlib.Path(_arg(cmd, "-o") or "").write_bytes(P12_CONTENT)
        return "", 0

    def _dig(self, cmd: list[str]) -> tuple[str, int]:  # noqa: ARG002
        return f"{self.public_ip}\n", 0

    def _modprobe(self, cmd: list[str]) -> tuple[str, int]:  # noqa: ARG002
        return "", 1


@pytest.fixture()
def fake_system(monkeypatch: pytest.MonkeyPatch) -> FakeSystem:
    """Replace every external command with the fake."""
    system = FakeSystem()
    monkeypatch.setattr(helpers, "run_cmd", system.run_cmd)
    monkeypatch.setattr(nss, "random_delay", lambda: None)

    def fetch_text(url: str, params: dict[str, Any] | None = None) -> None:  # noqa: ARG001
        return None

    monkeypatch.setattr(network, "fetch_text", fetch_text)
    return system


@pytest.fixture()
def swan_paths(tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> pathlib.Path:
    """Point the Libreswan configuration files to a temporary directory."""
    etc = tmp_path.joinpath("etc")
    ipsec_d = etc.joinpath("ipsec.d")
    ipsec_d.mkdir(parents=True)
    ipsec_conf = etc.joinpath("ipsec.conf")
    ipsec_conf.write_text("config setup\n  uniqueids=no\n", encoding="utf-8")

    monkeypatch.setattr(config, "IPSEC_CONF_PATH", ipsec_conf)
    monkeypatch.setattr(config, "IPSEC_D_DIR", ipsec_d)
    monkeypatch.setattr(config, "IKEV2_CONF_PATH", ipsec_d.joinpath("ikev2.conf"))
    monkeypatch.setattr(config, "PLUTO_RUN_DIR", tmp_path.joinpath("run", "pluto"))
    monkeypatch.setattr(config, "BOOT_DIR", tmp_path.joinpath("boot"))
    monkeypatch.setattr(config, "PROC_CONFIG_GZ", tmp_path.joinpath("config.gz"))
    monkeypatch.setattr(config, "DEFAULTS_PATH", etc.joinpath("ikev2vpn", "defaults.yaml"))
    return etc


@pytest.fixture()
def export_dir(tmp_path: pathlib.Path) -> pathlib.Path:
    """Return the directory client configuration is exported to."""
    path = tmp_path.joinpath("home")
    path.mkdir()
    return path


def make_environment(
    export_dir: pathlib.Path,
    swan_ver: str = "4.1",
    os_type: OsType = OsType.DEBIAN,
    *,
    in_container: bool = False,
) -> Environment:
    """Build the result of a successful preflight."""
    return Environment(
        os=OsInfo(os_type=os_type, os_ver="10", os_arch="x86_64"),
        swan_ver=swan_ver,
        capabilities=swan_models.get_capabilities(swan_ver),
        in_container=in_container,
        export=ExportTarget(directory=export_dir),
    )


@pytest.fixture()
def environment(export_dir: pathlib.Path) -> Environment:
    """Return a Debian 10 environment with Libreswan 4.1."""
    return make_environment(export_dir)
