"""
Command line entry point

    fund-sweeper --policy deposit_only --destination 0x...
    fund-sweeper --policy withdraw_then_transfer --identity from_secret
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from loguru import logger

from .addresses import Layer, validate_destination
from .errors import ConfigError, InvalidDestinationError, SweepError
from .events import EventBus
from .fee_policy import EstimatedFee, FixedFee
from .identity import load_identities
from .ledger_client import OasisNodeClient
from .operator_console import ConsoleDisplay, InterruptGuard, prompt_destination, show_mnemonic
from .sweep_config import SweepConfig, load_config
from .sweep_controller import SweepController, graceful_shutdown
from .sweep_policy import SweepPolicy


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Console sink at `level`, plus an optional rotating DEBUG file sink"""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )
    if log_file:
        logger.add(log_file, level="DEBUG", rotation="10 MB", retention=5, encoding="utf-8")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="fund-sweeper",
        description="Continuously sweep funds between consensus and runtime layers",
    )
    parser.add_argument("--config", default="sweep_config.yaml", help="YAML config file")
    parser.add_argument("--env-file", default=None, help=".env file with SWEEPER_* variables")
    parser.add_argument("--network", default=None, help="Network name from the config (mainnet, testnet)")
    parser.add_argument("--node-url", default=None, help="gRPC endpoint of the node")
    parser.add_argument("--policy", default=None, choices=[p.value for p in SweepPolicy])
    parser.add_argument("--identity", default=None, choices=["generate", "from_secret"])
    parser.add_argument("--destination", default=None, help="Destination address (skips the prompt)")
    parser.add_argument("--log-level", default=None, help="Console log level")
    return parser.parse_args(argv)


def _overrides(args: argparse.Namespace) -> dict:
    overrides = {
        'network': args.network,
        'node_url': args.node_url,
        'policy': args.policy,
        'identity': args.identity,
        'destination': args.destination,
    }
    if args.log_level:
        overrides['logging'] = {'level': args.log_level.upper()}
    return overrides


def build_controller(config: SweepConfig, destination: str, bundle, client, events: EventBus) -> SweepController:
    return SweepController(
        client=client,
        identity=bundle.identity,
        destination=destination,
        policy=config.policy,
        bridge_address=config.bridge_address,
        runtime_fee=FixedFee(config.runtime_gas_price, config.runtime_fee_gas, config.scale),
        scale=config.scale,
        intervals=config.intervals,
        consensus_fee=EstimatedFee(client),
        intermediate=bundle.intermediate,
        events=events,
    )


async def run_sweeper(config: SweepConfig, destination: str) -> int:
    bundle = load_identities(
        config.identity_source,
        config.runtime_id,
        secret=config.secret,
        with_intermediate=config.policy.uses_intermediate,
    )

    if bundle.generated:
        show_mnemonic(bundle.mnemonic)

    events = EventBus()
    events.subscribe(ConsoleDisplay({
        Layer.CONSENSUS: config.consensus_decimals,
        Layer.RUNTIME: config.runtime_decimals,
    }))

    client = OasisNodeClient(config.node_url, config.runtime_id, timeout_seconds=config.request_timeout_seconds)
    controller = build_controller(config, destination, bundle, client, events)

    if config.policy is SweepPolicy.DEPOSIT_ONLY:
        logger.info(f"Send funds to {bundle.identity.bech32} to have them deposited into {destination}")
    else:
        logger.info(f"Send funds to {bundle.identity.bech32} on the runtime layer to have them withdrawn")

    task = asyncio.ensure_future(controller.run())
    guard = InterruptGuard(controller, task)
    guard.install(asyncio.get_running_loop())

    try:
        await task
        return 0
    except asyncio.CancelledError:
        logger.warning("Sweep loop aborted")
        return 130
    except SweepError as e:
        logger.error(f"✗ Sweeper stopped: {e}")
        return 1
    finally:
        await graceful_shutdown(controller)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    try:
        config = load_config(args.config, overrides=_overrides(args), env_file=args.env_file)
    except ConfigError as e:
        setup_logging()
        logger.error(f"✗ Configuration error: {e}")
        return 2

    setup_logging(config.log_level, config.log_file)
    logger.info(f"Starting fund sweeper: {config!r}")

    try:
        layer = config.policy.destination_layer
        if config.destination:
            destination = validate_destination(config.destination, layer)
        else:
            destination = prompt_destination(layer)
        return asyncio.run(run_sweeper(config, destination))
    except (InvalidDestinationError, ConfigError) as e:
        logger.error(f"✗ {e}")
        return 2
    except (KeyboardInterrupt, EOFError):
        logger.warning("Interrupted before the sweep loop started")
        return 130


if __name__ == "__main__":
    sys.exit(main())
