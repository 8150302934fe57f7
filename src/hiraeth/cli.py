"""``hiraeth`` command: run the file server under uvicorn."""

import argparse
import logging
import sys
from pathlib import Path

import uvicorn

from hiraeth import __version__
from hiraeth.config import HiraethConfig, load_config, locate_config
from hiraeth.logging_config import configure_logging
from hiraeth.server import create_app

logger = logging.getLogger("hiraeth")

# Flag name -> (config section, field).
_OVERRIDES = {
    "host": ("server", "host"),
    "port": ("server", "port"),
    "log_level": ("server", "log_level"),
    "log_format": ("server", "log_format"),
    "shutdown_timeout": ("server", "shutdown_timeout"),
    "data_dir": ("storage", "data_dir"),
}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments. Every flag but ``--config`` overrides a config value."""
    parser = argparse.ArgumentParser(
        prog="hiraeth",
        description="Serve temporary, link-shareable files.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        type=Path,
        metavar="PATH",
        help="YAML config (default: hiraeth.yaml, then /etc/hiraeth/hiraeth.yaml)",
    )

    overrides = parser.add_argument_group("overrides")
    overrides.add_argument("--host", help="address to bind")
    overrides.add_argument("--port", type=int, help="port to listen on")
    overrides.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
    )
    overrides.add_argument("--log-format", choices=["text", "json"])
    overrides.add_argument(
        "--shutdown-timeout",
        type=int,
        metavar="SECONDS",
        help="grace period for in-flight requests on SIGTERM",
    )
    overrides.add_argument("--data-dir", metavar="DIR", help="blob directory")
    return parser.parse_args(argv)


def apply_overrides(config: HiraethConfig, args: argparse.Namespace) -> list[str]:
    """Copy the flags that were given onto ``config``.

    Returns:
        The dotted names of the settings that were overridden.
    """
    applied = []
    for flag, (section, field) in _OVERRIDES.items():
        value = getattr(args, flag, None)
        if value is None:
            continue
        setattr(getattr(config, section), field, value)
        applied.append(f"{section}.{field}")
    return applied


def main(argv: list[str] | None = None) -> None:
    """Load the config, set up logging and serve until stopped.

    Exits with status 1 if the config cannot be read.
    """
    args = parse_args(argv)

    # Enough logging to report config errors; replaced below.
    configure_logging()

    source = args.config if args.config is not None else locate_config()
    try:
        config = load_config(source)
    except FileNotFoundError:
        logger.error("Config file not found: %s", source)
        sys.exit(1)
    except Exception as exc:
        logger.error("Unable to read config %s: %s", source, exc)
        sys.exit(1)

    applied = apply_overrides(config, args)
    server = config.server
    configure_logging(level=server.log_level, fmt=server.log_format, service=server.name)

    logger.info("Using config %s", source if source is not None else "<built-in defaults>")
    if applied:
        logger.info("Overridden from the command line: %s", ", ".join(applied))
    logger.info("Starting %s %s on %s:%d", server.name, __version__, server.host, server.port)

    app = create_app(config)

    # Requests are logged by the app itself; uvicorn keeps the root handler.
    uvicorn.run(
        app,
        host=server.host,
        port=server.port,
        log_config=None,
        access_log=False,
        timeout_graceful_shutdown=server.shutdown_timeout,
        timeout_keep_alive=5,
    )


if __name__ == "__main__":
    main()
