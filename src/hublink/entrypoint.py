"""
CLI entrypoint that runs a module against the hub.

The target is given as ``package.module:attribute`` and must resolve to a
``BridgeRuntime``, a ``ConnectionSupervisor``, or a callable that receives the
``ConfigService`` and returns one of them. When the configured transport is
``websocket`` a runtime target is wrapped in a connection supervisor that
serves it to every configured agent URL.
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import logging
import logging.handlers
import signal
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from .core.config import ConfigError, ConfigService
from .core.runtime import SDK_INFO, BridgeRuntime
from .core.supervisor import ConnectionSupervisor
from .transports.websocket import AiohttpSocketConnector

LOGGER = logging.getLogger(__name__)
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

Service = BridgeRuntime | ConnectionSupervisor


def _ensure_rotating_file_handler(
    log_file: Path,
    *,
    max_mb: int = 10,
    backup_count: int = 3,
) -> None:
    """Attach a rotating file handler pointed at ``log_file`` if missing."""

    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("Unable to create log directory %s: %s", log_file.parent, exc)
        return

    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        if isinstance(handler, logging.handlers.RotatingFileHandler):
            existing = getattr(handler, "baseFilename", None)
            if existing and Path(existing) == log_file.resolve():
                return

    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)


def load_target(spec: str) -> Any:
    """Import ``package.module:attribute`` and return the attribute."""

    module_name, sep, attribute = spec.partition(":")
    if not sep or not module_name or not attribute:
        raise ValueError(f"Target {spec!r} must look like 'package.module:attribute'.")
    module = importlib.import_module(module_name)
    target: Any = module
    for part in attribute.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as exc:
            raise ValueError(f"{module_name} has no attribute {attribute!r}.") from exc
    return target


def build_service(target: Any, config: ConfigService) -> Service:
    """Turn a loaded target into the service to run under the current config."""

    if not isinstance(target, BridgeRuntime | ConnectionSupervisor) and callable(target):
        target = target(config)
    if isinstance(target, ConnectionSupervisor):
        return target
    if not isinstance(target, BridgeRuntime):
        raise TypeError(
            f"Target resolved to {type(target).__name__}; expected a BridgeRuntime "
            "or ConnectionSupervisor."
        )

    snapshot = config.snapshot
    if snapshot.connection.transport != "websocket":
        return target
    if not snapshot.connection.agent_urls:
        raise ConfigError("The websocket transport requires connection.agent_urls.")
    return ConnectionSupervisor(
        snapshot.connection.agent_urls,
        [target.as_module()],
        AiohttpSocketConnector(),
        sdk=SDK_INFO,
        reconnect_delay=snapshot.bridge.reconnect_delay,
        publish_interval=snapshot.bridge.publish_interval,
    )


async def run_service(service: Service) -> None:
    """Start ``service`` and keep it running until a shutdown signal arrives."""

    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    await service.start()
    LOGGER.info("hublink %s running. Press Ctrl+C to stop.", type(service).__name__)

    try:
        await stop_event.wait()
    finally:
        await service.stop()


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def _request_shutdown(sig_name: str) -> None:
        if not stop_event.is_set():
            LOGGER.info("Received %s, beginning graceful shutdown.", sig_name)
            stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_shutdown, sig.name)
        except NotImplementedError:  # Windows Proactor loop
            signal.signal(  # type: ignore[arg-type]
                sig,
                lambda signum, _frame, sig_name=sig.name: loop.call_soon_threadsafe(
                    _request_shutdown, sig_name or str(signum)
                ),
            )


def configure_logging(level: str, log_file: Path | None = None) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format=LOG_FORMAT,
    )
    logging.getLogger().setLevel(numeric_level)
    if log_file is not None:
        _ensure_rotating_file_handler(log_file)


def parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Keep a local module synchronized with the hub.")
    parser.add_argument(
        "target",
        help="Module to serve, as 'package.module:attribute'.",
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory that contains config.yaml/secrets.yaml (default: ./config).",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Python logging level (default: logging.level from config, else INFO).",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level or "INFO")
    try:
        config = ConfigService(config_dir=args.config_dir)
        logging_settings = config.snapshot.logging
        configure_logging(args.log_level or logging_settings.level, logging_settings.file)
        service = build_service(load_target(args.target), config)
        asyncio.run(run_service(service))
    except KeyboardInterrupt:
        LOGGER.info("Interrupted by user.")
        return 0
    except ConfigError as exc:
        LOGGER.error("Configuration failed: %s", exc)
        return 2
    except Exception:  # pragma: no cover - surfaced to operator
        LOGGER.exception("hublink crashed.")
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())


__all__ = ["build_service", "configure_logging", "load_target", "main", "run_service"]
