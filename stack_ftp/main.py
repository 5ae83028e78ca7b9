#!/usr/bin/env python3
"""
STACK FTP Bridge

Serves STACK public shares over FTP.

Usage:
    stack-ftp [port] [bind_address]
    stack-ftp 2121 0.0.0.0 --passive-ports 10000-10100

FTP login: username <SHARE>@<STACK_DOMAIN>, password is the share password.
"""

import argparse
import logging
import sys
from typing import Optional

from .config import load_config, parse_port_range
from .logging_config import setup_logging
from .server import build_server

log = logging.getLogger(__name__)


def _port_range(value: str) -> tuple[int, int]:
    try:
        return parse_port_range(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="stack-ftp",
        description="FTP server backed by STACK public shares",
    )
    parser.add_argument(
        "port",
        nargs="?",
        type=int,
        default=None,
        help="Port to listen on (default: 21)",
    )
    parser.add_argument(
        "bind_address",
        nargs="?",
        default=None,
        help="Address to bind to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--config",
        help="Config file (default: ~/.config/stack-ftp/config.json)",
    )
    parser.add_argument(
        "--passive-ports",
        type=_port_range,
        help="Passive data port range MIN-MAX (default: 10000-10100)",
    )
    parser.add_argument(
        "--masquerade-address",
        help="Public IP to advertise in PASV replies (when behind NAT)",
    )
    parser.add_argument(
        "--log-file",
        help="Also log to this file (rotated at 10 MB)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list] = None) -> None:
    args = parse_args(argv)

    try:
        config = load_config(args.config, overrides={
            "port": args.port,
            "bind_address": args.bind_address,
            "passive_ports": args.passive_ports,
            "masquerade_address": args.masquerade_address,
            "log_file": args.log_file,
            "log_level": "DEBUG" if args.debug else None,
        })
    except (OSError, ValueError) as e:
        print(f"stack-ftp: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging(config.log_level, config.log_file)

    server = build_server(config)
    low, high = config.passive_ports
    log.info(f"Serving STACK shares on ftp://{config.bind_address}:{config.port}")
    log.info(f"Passive ports: {low}-{high}")

    # serve_forever() closes all connections itself on SIGINT/SIGTERM
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        log.info("Interrupted, shutting down...")
        server.close_all()
    log.info("Stopped")


if __name__ == "__main__":
    main()
