"""fleetcp — entry point.

Configures logging, resolves run settings from the config file and the
command line, runs one fetch or send across every host, and prints one
result line per host.
"""

from __future__ import annotations

import argparse
import getpass
import logging
import sys
from typing import Sequence

from fleetcp import __version__
from fleetcp.auth import AUTH_KEY, AUTH_PASSWORD, AuthProvider, delete_password, store_password
from fleetcp.config import ConfigManager
from fleetcp.connection import ConnectionPool
from fleetcp.errors import FleetcpError
from fleetcp.transfer import (
    StreamCopier,
    TransferDirection,
    TransferOrchestrator,
    TransferReport,
    TransferRequest,
    format_outcome,
)

_LOG_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s — %(message)s"
_DATE_FORMAT = "%H:%M:%S"

EXIT_OK = 0
EXIT_HOST_FAILURE = 1
EXIT_FATAL = 2

_DIRECTIONS = {"get": TransferDirection.FETCH, "put": TransferDirection.SEND}

logger = logging.getLogger(__name__)


def _configure_logging(verbosity: int = 0) -> None:
    """Set up root logging to stderr."""
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format=_LOG_FORMAT,
        datefmt=_DATE_FORMAT,
        stream=sys.stderr,
    )
    # Quieten noisy third-party loggers
    logging.getLogger("paramiko").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    """Return the command-line parser."""
    parser = argparse.ArgumentParser(
        prog="fleetcp",
        description="Copy one file to (put) or from (get) many SSH hosts concurrently.",
    )
    parser.add_argument(
        "direction", nargs="?", choices=sorted(_DIRECTIONS),
        help="get: remote → local, put: local → remote",
    )
    parser.add_argument("local", nargs="?", help="local directory (get) or local file (put)")
    parser.add_argument("remote", nargs="?", help="remote file; for put a trailing '/' names a directory")
    parser.add_argument(
        "-H", "--hosts", action="append", default=[], metavar="HOST[,HOST...]",
        help="target host(s) as host or host:port; may be repeated",
    )
    parser.add_argument("-g", "--group", help="use the hosts of a saved host group")
    parser.add_argument("--save-group", metavar="NAME", help="save the given hosts as a host group")
    parser.add_argument("--list-groups", action="store_true", help="print the saved host groups")
    parser.add_argument("--delete-group", metavar="NAME", help="delete a saved host group")
    parser.add_argument("--overwrite", action="store_true", help="replace existing remote files (put)")
    parser.add_argument("-u", "--user", help="remote username")
    parser.add_argument("-P", "--port", type=int, help="default port for hosts given without one")
    parser.add_argument("-i", "--identity", help="private key file")
    parser.add_argument("--password", action="store_true", help="authenticate with a password")
    parser.add_argument(
        "--store-password", action="store_true",
        help="prompt for the password and store it in the OS keyring",
    )
    parser.add_argument(
        "--forget-password", action="store_true",
        help="remove the stored password for the user from the OS keyring",
    )
    parser.add_argument("--max-size", type=int, metavar="BYTES", help="largest file a get accepts")
    parser.add_argument(
        "--strict-host-keys", action="store_true",
        help="verify host keys against known_hosts instead of accepting any key",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="more logging (-vv for debug)")
    parser.add_argument("-V", "--version", action="version", version=f"fleetcp {__version__}")
    return parser


def _collect_hosts(args: argparse.Namespace, config: ConfigManager) -> list[str]:
    """Merge ``-H`` values and the ``-g`` group into one ordered host list."""
    hosts: list[str] = []
    for value in args.hosts:
        hosts.extend(h.strip() for h in value.split(",") if h.strip())
    if args.group:
        group = config.get_group(args.group)
        if group is None:
            raise FleetcpError(f"Unknown host group: {args.group}")
        hosts.extend(group)
    return hosts


def print_report(report: TransferReport, stream=None) -> None:
    """Print one result line per successful host, sorted by address."""
    stream = stream or sys.stdout
    for address in sorted(report.results):
        print(format_outcome(address, report.results[address]), file=stream)


def _print_error(address: str, exc: BaseException) -> None:
    print(address, exc)


def _manage(args: argparse.Namespace, config: ConfigManager, username: str) -> bool:
    """Apply the group and keyring maintenance flags; return True if any ran."""
    acted = False
    if args.delete_group:
        if not config.delete_group(args.delete_group):
            raise FleetcpError(f"Unknown host group: {args.delete_group}")
        acted = True
    if args.forget_password:
        delete_password(username)
        acted = True
    if args.list_groups:
        for name, hosts in sorted(config.get_groups().items()):
            print(f"{name}: {', '.join(hosts)}")
        acted = True
    return acted


def run(argv: Sequence[str] | None = None, config: ConfigManager | None = None) -> int:
    """Parse *argv*, run the transfer and return the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    config = config or ConfigManager()
    try:
        username = args.user or config.get("username")
        if _manage(args, config, username) and args.direction is None:
            return EXIT_OK
        if args.direction is None or args.local is None or args.remote is None:
            parser.error("direction, local and remote are required")

        hosts = _collect_hosts(args, config)
        if not hosts:
            parser.error("no target hosts: use -H and/or -g")
        if args.save_group:
            config.save_group(args.save_group, hosts)

        password = None
        if args.store_password:
            password = getpass.getpass(f"Password for {username}: ")
            store_password(username, password)

        auth = AuthProvider.from_config(
            config,
            username=username,
            auth_type=AUTH_PASSWORD if (args.password or args.store_password) else (
                AUTH_KEY if args.identity else None
            ),
            key_path=args.identity,
            password=password,
            password_prompt=getpass.getpass if args.password else None,
        )
        pool = ConnectionPool(
            auth,
            default_port=args.port or config.get("default_port"),
            timeout=config.get("connect_timeout"),
            insecure_host_key_accept=(
                False if args.strict_host_keys else config.get("insecure_host_key_accept")
            ),
        )
        orchestrator = TransferOrchestrator(
            pool,
            max_transfer_size=args.max_size or config.get("transfer_max_size"),
            copier=StreamCopier(config.get("copy_buffer_size")),
            on_error=_print_error,
        )
        request = TransferRequest(
            direction=_DIRECTIONS[args.direction],
            local_path=args.local,
            remote_path=args.remote,
            hosts=tuple(hosts),
            overwrite=args.overwrite,
        )
        report = orchestrator.run(request)
    except (FleetcpError, ValueError) as exc:
        logger.debug("Fatal error", exc_info=True)
        print(f"fleetcp: {exc}", file=sys.stderr)
        return EXIT_FATAL

    print_report(report)
    return EXIT_OK if report.ok else EXIT_HOST_FAILURE


def main() -> None:
    """Bootstrap and run fleetcp."""
    sys.exit(run())


if __name__ == "__main__":
    main()
