#!/usr/bin/env python3
"""Entry points of the ikev2setup and vpnupgrade commands."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler

from ikev2vpn import config
from ikev2vpn.ctl import main as setup_ctl
from ikev2vpn.ctl import upgrade as upgrade_ctl

# LOGGER
# Get logger
logger = logging.getLogger()


def configure_logging() -> None:
    """Log to a rotating file when running as root, warnings also to stderr."""
    logger.setLevel(level=logging.INFO)
    formatter = logging.Formatter(
        fmt=(
            "%(asctime)s(File:%(name)s,Line:%(lineno)d,"
            "%(funcName)s) - %(levelname)s - %(message)s"
        ),
        datefmt="%m/%d/%Y %H:%M:%S %p",
    )
    if os.geteuid() == 0:
        config.LOG_DIR.mkdir(parents=True, exist_ok=True)
        rothandler = RotatingFileHandler(
            config.LOG_PATH,
            maxBytes=100000,
            backupCount=5,
        )
        rothandler.setFormatter(formatter)
        logger.addHandler(rothandler)
    # Progress goes to the console already, only problems are repeated there.
    streamhandler = logging.StreamHandler(sys.stderr)
    streamhandler.setLevel(logging.WARNING)
    logger.addHandler(streamhandler)


def setup() -> None:
    """Run the IKEv2 setup tool."""
    configure_logging()
    setup_ctl.app()


def upgrade() -> None:
    """Run the Libreswan upgrade tool."""
    configure_logging()
    upgrade_ctl.app()


if __name__ == "__main__":
    setup()
