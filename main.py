#!/usr/bin/env python3
"""
Out-of-hours booking - slot hold and payment confirmation service.

Main entry point: checks configuration and connectivity to the workflow
gateway the booking flow talks to.
"""

import argparse
import asyncio
import logging
import sys

from ooh_booking.core.config.settings import get_settings
from ooh_booking.core.exceptions import BookingFlowError, ConfigurationError
from ooh_booking.core.logger import setup_structured_logging
from ooh_booking.gateway.client import WorkflowGatewayClient


async def check_gateway() -> bool:
    """Ping the workflow gateway once."""
    async with WorkflowGatewayClient() as gateway:
        return await gateway.ping()


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Out-of-hours booking flow")
    parser.add_argument(
        "--check-gateway",
        action="store_true",
        help="Ping the workflow gateway and exit",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (defaults to LOG_LEVEL)",
    )

    args = parser.parse_args()

    try:
        settings = get_settings()
    except ValueError as e:
        # Logging is not configured yet
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    setup_structured_logging(args.log_level or settings.log_level, json_format=settings.log_json)
    logger = logging.getLogger(__name__)
    logger.info(f"Booking flow configured for {settings.webhook_url} ({settings.env})")

    if not args.check_gateway:
        logger.info("Configuration OK")
        return

    try:
        reachable = asyncio.run(check_gateway())
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    except BookingFlowError as e:
        logger.error(f"Gateway check failed: {e}")
        sys.exit(1)

    if not reachable:
        logger.error("Workflow gateway is not reachable")
        sys.exit(1)
    logger.info("Workflow gateway is reachable")


if __name__ == "__main__":
    main()
