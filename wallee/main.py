#!/usr/bin/env python3
"""
Wallee Controller - Entry Point

Runs the charging control loop, the day-ahead price fetcher and the HTTP API
in one process.

Usage:
    wallee                        # Start with default config
    wallee --config my.yaml       # Use custom config file
    wallee --dry-run              # Validate config and exit
    wallee --verbose              # Enable debug logging
"""

import argparse
import asyncio
import sys

from . import __version__
from .common.config import ControllerConfig, load_config_file
from .common.exceptions import ConfigError, WalleeError
from .common.logging_setup import configure_from_env, get_service_logger
from .services.control.service import ControlService

# Default configuration path
DEFAULT_CONFIG_PATH = "/etc/wallee/config.yaml"

logger = get_service_logger("main")


def print_startup_banner(config: ControllerConfig, config_path: str) -> None:
    """Print startup information."""
    print()
    print("=" * 60)
    print(f"  WALLEE CHARGING CONTROLLER v{__version__}")
    print("=" * 60)
    print()
    print(f"  Config:           {config_path}")
    print(f"  Charging station: {config.charging_station.host}:{config.charging_station.port}")
    print(f"  Meter:            {config.meter.url}")
    print(f"  Database:         {config.storage.db_path}")
    print(f"  Loop delay:       {config.control.loop_delay_ms} ms")
    print(f"  Capacity tariff:  {config.control.capacity_tariff_mode.value}")
    print(f"  Shadow mode:      {'ON' if config.control.shadow_mode else 'off'}")
    print(f"  Price fetching:   {'enabled' if config.prices.enabled else 'disabled'}")
    if config.api.enabled:
        print(f"  API:              http://{config.api.host}:{config.api.port}/health")
    print()
    print("=" * 60)
    print()


async def main_async(config: ControllerConfig) -> None:
    """Run the control service until shutdown."""
    service = ControlService(config)

    try:
        await service.start()
    finally:
        await service.stop()


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Wallee - Home EV charging controller",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    wallee                        # Start with default config
    wallee --config my.yaml       # Use custom config file
    wallee --dry-run              # Validate config and exit
    wallee -v                     # Enable debug logging

Environment:
    WALLEE_ENTSOE_API_KEY   ENTSO-E security token (overrides prices.api_key)
    WALLEE_LOG_LEVEL        Log level (overrides logging.level)
    WALLEE_LOG_FORMAT       "json" or "text" (overrides logging.json_format)
        """
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {DEFAULT_CONFIG_PATH})"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate configuration and exit without starting"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (debug) logging"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Wallee Controller v{__version__}"
    )

    args = parser.parse_args(argv)

    try:
        config = load_config_file(args.config)
    except ConfigError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    if args.verbose:
        # Plain text in verbose/debug mode
        configure_from_env("DEBUG", json_format=False)
    else:
        configure_from_env(config.logging.level, config.logging.json_format)

    print_startup_banner(config, args.config)

    if args.dry_run:
        print("Dry run mode - configuration valid")
        print("Exiting without starting services")
        return 0

    print("Press Ctrl+C to stop")
    print()

    try:
        asyncio.run(main_async(config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except WalleeError as e:
        logger.critical(f"Controller stopped: {e.message}", exc_info=True)
        return 1
    except Exception as e:
        logger.critical(f"Controller failed: {e}", exc_info=True)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
