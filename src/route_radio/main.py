#!/usr/bin/env python3
"""
route-radio: an always-on journey radio

Main entry point for the route-radio daemon. This service:
1. Loads a route (segments with a path, an audio sequence and visual media)
2. Derives the shared cycle position from the time of day
3. Keeps audio, map position and visuals on that one position
4. Optionally exposes its state over HTTP for displays and monitoring

Usage:
    # Start daemon
    route-radio --config /etc/route-radio/route.toml

    # Where is the broadcast right now?
    route-radio --config route.toml --describe

Architecture:
    ┌─────────────────────────────────────────────────────────────────┐
    │                          route-radio                            │
    │                                                                 │
    │  ┌──────────────┐   ┌──────────────────┐   ┌─────────────────┐  │
    │  │ time of day  │──▶│  TimelineClock   │──▶│ RadioCoordinator│  │
    │  └──────────────┘   └──────────────────┘   └────────┬────────┘  │
    │                                                     │           │
    │                 ┌──────────────────┬────────────────┴──┐        │
    │                 ▼                  ▼                   ▼        │
    │           audio decoder     visual media        status server   │
    └─────────────────────────────────────────────────────────────────┘
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import toml

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger('route-radio')

from .engine.coordinator import RADIO_DEFAULTS, RadioCoordinator
from .engine.decoders import DECODER_BACKENDS
from .interfaces.errors import ConfigurationError
from .output.status_server import StatusServer
from .route.config import load_route

STATUS_DEFAULTS: Dict[str, Any] = {
    'port': 0,
    'bind_address': '127.0.0.1',
}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from a TOML file.

    The ``[radio]`` and ``[status]`` tables are completed with defaults;
    ``segments`` is returned as parsed and validated by load_route().

    Raises:
        ConfigurationError: the file is missing or is not valid TOML
    """
    config: Dict[str, Any] = {}
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        try:
            with open(path, 'r') as f:
                config = toml.load(f)
        except toml.TomlDecodeError as e:
            raise ConfigurationError(f"{path}: invalid TOML: {e}")

    radio = dict(RADIO_DEFAULTS)
    radio.update(config.get('radio', {}))
    status = dict(STATUS_DEFAULTS)
    status.update(config.get('status', {}))

    config['radio'] = radio
    config['status'] = status
    config.setdefault('segments', [])
    return config


def describe(coordinator: RadioCoordinator) -> Dict[str, Any]:
    """Context of the broadcast right now, without starting anything."""
    mapper = coordinator.mapper
    context = mapper.context_at(coordinator.clock.position_from_time_of_day())
    summary = context.to_event().to_dict()
    summary['upcoming'] = mapper.describe_upcoming(context)
    summary['total_duration'] = mapper.total_duration
    summary['total_distance_km'] = mapper.total_distance
    return summary


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='route-radio: always-on journey radio',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Start with a route file
    route-radio --config route.toml

    # Print the current context as JSON and exit
    route-radio --config route.toml --describe

    # Start 30 minutes into the cycle (debug only)
    route-radio --config route.toml --debug --seek 1800
        """
    )

    parser.add_argument(
        '--config', '-c',
        help='Path to TOML route configuration'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging and debug commands'
    )
    parser.add_argument(
        '--status-port',
        type=int,
        help='HTTP port for the status endpoint (0 to disable, overrides config)'
    )
    parser.add_argument(
        '--audio-backend',
        choices=DECODER_BACKENDS,
        help='Audio output backend (overrides config)'
    )
    parser.add_argument(
        '--utc',
        action='store_true',
        help='Derive the position from UTC instead of local time of day'
    )
    parser.add_argument(
        '--describe',
        action='store_true',
        help='Print the current context as JSON and exit'
    )
    parser.add_argument(
        '--seek',
        type=float,
        metavar='SECONDS',
        help='Start at this cycle position instead of the time of day (requires --debug)'
    )

    args = parser.parse_args()

    if args.seek is not None and not args.debug:
        parser.error('--seek requires --debug')

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = load_config(args.config)
        radio = config['radio']
        if args.audio_backend:
            radio['audio_backend'] = args.audio_backend
        if args.utc:
            radio['utc'] = True
        if args.status_port is not None:
            config['status']['port'] = args.status_port

        route = load_route(config)
        coordinator = RadioCoordinator(route, radio, debug=args.debug or radio['debug'])
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    if args.describe:
        print(json.dumps(describe(coordinator), indent=2))
        return

    status_server = None
    status_port = config['status']['port']
    if status_port > 0:
        status_server = StatusServer(port=status_port,
                                     bind_address=config['status']['bind_address'])
        status_server.set_coordinator(coordinator)
        status_server.start()

    try:
        coordinator.run(seek_to=args.seek)
    finally:
        if status_server:
            status_server.stop()


if __name__ == '__main__':
    main()
