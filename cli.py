from __future__ import annotations

import argparse
import logging
import os
import signal
import stat
import sys

from dps.api_models import Address
from dps.errors import ConfigurationError, RegistrationFailed
from dps.logging_config import setup_logging
from dps.registrar import EndpointRegistrar
from dps.settings import parse_schedule, settings

log = logging.getLogger("dps.cli")

DEFAULT_MARKERS = ("dps-shim",)

# dockerd hands docker-proxy a pipe on fd 3 and waits for "0\n" or "1\n<error>".
PARENT_FD = 3


def build_proxy_parser() -> argparse.ArgumentParser:
    # Flag names match docker-proxy so dockerd can launch us via --userland-proxy-path.
    p = argparse.ArgumentParser(
        prog="dps-shim",
        description="Register a container port with the edge proxy control plane instead of proxying it.",
        epilog="Subcommands: 'serve' runs a development control plane, 'resync' reloads running instances.",
    )
    p.add_argument("-proto", default="tcp", help="Protocol (only tcp is supported)")
    p.add_argument("-host-ip", required=True, help="Frontend IP")
    p.add_argument("-host-port", type=int, required=True, help="Frontend port")
    p.add_argument("-container-ip", required=True, help="Backend IP")
    p.add_argument("-container-port", type=int, required=True, help="Backend port")
    p.add_argument("-R", "--reload", action="store_true", help="Register once and exit without waiting")
    p.add_argument("--server-addr", default=settings.server_addr, help="Control plane Unix socket or http:// URL")
    p.add_argument("--retries", default=None, help="Retry schedule in ms, e.g. 100,500,1000,1500")
    p.add_argument("--log-level", default=None)
    return p


def notify_parent(error: str | None = None) -> None:
    """Report startup status on the dockerd pipe. A no-op when fd 3 is not a pipe."""
    try:
        if not stat.S_ISFIFO(os.fstat(PARENT_FD).st_mode):
            return
        with os.fdopen(PARENT_FD, "w") as f:
            f.write("0\n" if error is None else f"1\n{error}")
    except OSError as e:
        log.debug("Could not notify parent on fd %d: %s", PARENT_FD, e)


def run_proxy(argv: list[str]) -> int:
    p = build_proxy_parser()
    try:
        args, unknown = p.parse_known_args(argv)
    except SystemExit:
        notify_parent("invalid arguments")
        raise
    setup_logging(args.log_level)
    if unknown:
        log.warning("Ignoring unsupported arguments: %s", " ".join(unknown))

    if args.proto != "tcp":
        log.error("Unsupported protocol %r; only tcp can be registered", args.proto)
        notify_parent(f"unsupported protocol {args.proto}")
        return 2

    try:
        frontend = Address.parse(args.host_ip, args.host_port)
        backend = Address.parse(args.container_ip, args.container_port)
        schedule = parse_schedule(args.retries) if args.retries else settings.retry_schedule_ms
    except (ValueError, ConfigurationError) as e:
        log.error("Invalid arguments: %s", e)
        notify_parent(str(e))
        return 2

    notify_parent()

    registrar = EndpointRegistrar(
        frontend,
        backend,
        args.server_addr,
        reload=args.reload,
        retry_schedule_ms=schedule,
    )

    def _on_signal(signum, _frame) -> None:
        log.info("Received %s", signal.Signals(signum).name)
        registrar.shutdown()

    signal.signal(signal.SIGTERM, _on_signal)
    signal.signal(signal.SIGINT, _on_signal)

    try:
        registrar.run()
    except RegistrationFailed:
        # Nothing can route to this container; make dockerd see the failure.
        return 1

    try:
        registrar.close()
    except RegistrationFailed:
        return 1
    return 0


def run_serve(argv: list[str]) -> int:
    p = argparse.ArgumentParser(prog="dps-shim serve", description="Run the development control plane")
    p.add_argument("--uds", default=None, help="Unix socket to listen on (default: DPS_SERVER_ADDR)")
    p.add_argument("--host", default=None, help="Listen on TCP instead of a Unix socket")
    p.add_argument("--port", type=int, default=settings.serve_port)
    p.add_argument("--log-level", default=None)
    args = p.parse_args(argv)
    setup_logging(args.log_level)

    import uvicorn

    from dps.control_plane import app

    if args.host:
        uvicorn.run(app, host=args.host, port=args.port, log_config=None)
    else:
        uvicorn.run(app, uds=args.uds or settings.server_addr, log_config=None)
    return 0


def run_resync(argv: list[str]) -> int:
    p = argparse.ArgumentParser(prog="dps-shim resync", description="Re-register every running shim instance")
    p.add_argument("--marker", action="append", default=None, help="Executable name identifying shim processes")
    p.add_argument("--dry-run", action="store_true")
    p.add_argument("--log-level", default=None)
    args = p.parse_args(argv)
    setup_logging(args.log_level)

    from dps.resync import resync

    resync(args.marker or DEFAULT_MARKERS, dry_run=args.dry_run)
    return 0


COMMANDS = {"serve": run_serve, "resync": run_resync}


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    if argv and argv[0] in COMMANDS:
        return COMMANDS[argv[0]](argv[1:])
    return run_proxy(argv)


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
