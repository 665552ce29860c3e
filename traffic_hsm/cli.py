#!/usr/bin/env python3
"""
Command-line driver: runs a traffic light and polls its color.
"""

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Awaitable, Callable, Optional

from prometheus_client import start_http_server

from .config import TrafficLightConfig
from .errors import ConfigError
from .mailbox import Mailbox
from .messages import Color
from .traffic_light import TrafficLight

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run a timed traffic light and print its color at a fixed interval"
    )

    parser.add_argument(
        "-c", "--config",
        type=Path,
        help="YAML configuration file"
    )

    parser.add_argument(
        "--start-color",
        choices=[c.value for c in Color],
        help="Color to start in (default: from config, else red)"
    )

    for color in Color:
        parser.add_argument(
            f"--{color.value}",
            type=float,
            metavar="SECONDS",
            help=f"{color.value.capitalize()} duration in seconds"
        )

    parser.add_argument(
        "-i", "--poll-interval",
        type=float,
        help="Seconds between color requests"
    )

    parser.add_argument(
        "-n", "--polls",
        type=int,
        help="Stop after this many polls (default: run until interrupted)"
    )

    parser.add_argument(
        "--metrics-port",
        type=int,
        help="Expose Prometheus metrics on this port"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )

    return parser


def load_config(args: argparse.Namespace) -> TrafficLightConfig:
    """File, then TRAFFIC_LIGHT_* environment, then command-line options"""
    config = TrafficLightConfig.from_file(args.config) if args.config else TrafficLightConfig()
    config = TrafficLightConfig.from_env(base=config)
    return config.with_overrides(
        start_color=args.start_color,
        durations={color: getattr(args, color.value) for color in Color},
        poll_interval=args.poll_interval,
    )


def print_color(color: Color):
    timestamp = time.strftime('%Y-%m-%d %H:%M:%S')
    print(f"[{timestamp}] {color.name}")


async def run(light: TrafficLight,
              config: TrafficLightConfig,
              polls: Optional[int] = None,
              on_color: Callable[[Color], None] = print_color,
              sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
    """Initialize the light, then poll its color every ``config.poll_interval`` seconds"""
    async with Mailbox(light) as mailbox:
        await mailbox.send(config.initialize_message())
        await mailbox.join()

        count = 0
        while polls is None or count < polls:
            await sleep(config.poll_interval)
            on_color(await mailbox.get_color())
            count += 1


def main(argv=None):
    """Main CLI entry point"""
    args = build_parser().parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        config = load_config(args)
    except ConfigError as e:
        print(f"Error loading configuration: {e}")
        sys.exit(1)

    light = TrafficLight(config)

    if args.metrics_port:
        start_http_server(args.metrics_port, registry=light.registry)
        logger.info(f"Serving metrics on port {args.metrics_port}")

    try:
        asyncio.run(run(light, config, polls=args.polls))
    except KeyboardInterrupt:
        print("\nTraffic light stopped by user")
        sys.exit(130)


if __name__ == "__main__":
    main()
