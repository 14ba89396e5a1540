"""
Sweep Configuration

Loads sweep_config.yaml on top of built-in defaults. Secrets and per-run
values come from the environment (optionally a .env file):
- SWEEPER_MNEMONIC: mnemonic or hex seed for identity 'from_secret'
- SWEEPER_DESTINATION: destination address (skips the prompt)
- SWEEPER_NODE_URL: overrides node_url
"""

import copy
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger

from .addresses import from_bech32
from .errors import ConfigError
from .fee_policy import scale_factor
from .identity import IdentitySource
from .sweep_policy import SweepPolicy


DEFAULT_CONFIG: Dict[str, Any] = {
    'network': 'mainnet',
    'node_url': 'https://grpc.oasis.io',
    'policy': 'deposit_only',
    'identity': 'generate',
    'runtime': {
        'networks': {
            'mainnet': {
                'address': 'oasis1qrd3mnzhhgst26hsp96uf45yhq6zlax0cuzdgcfc',
                'runtime_id': '000000000000000000000000000000000000000000000000f80306c9858e7279',
            },
            'testnet': {
                'address': 'oasis1qqczuf3x6glkgjuf0xgtcpjjw95r3crf7y2323xd',
                'runtime_id': '000000000000000000000000000000000000000000000000a6d1e3ebf60dff6c',
            },
        },
        'gas_price': 100,
        'fee_gas': 70_000,  # must follow the runtime's gas schedule on upgrades
        'decimals': 18,
    },
    'consensus': {
        'decimals': 9,
    },
    'intervals': {
        'idle_seconds': 10.0,
        'action_delay_seconds': 1.0,
        'backoff_seconds': 10.0,
    },
    'request_timeout_seconds': 30.0,
    'logging': {
        'level': 'INFO',
        'file': None,
    },
}


@dataclass(frozen=True)
class SweepIntervals:
    idle_seconds: float = 10.0
    action_delay_seconds: float = 1.0
    backoff_seconds: float = 10.0


@dataclass
class SweepConfig:
    """Resolved configuration for one run"""
    network: str
    node_url: str
    policy: SweepPolicy
    identity_source: IdentitySource
    bridge_address: bytes
    runtime_id: bytes
    runtime_gas_price: int
    runtime_fee_gas: int
    runtime_decimals: int
    consensus_decimals: int
    intervals: SweepIntervals
    request_timeout_seconds: float = 30.0
    log_level: str = 'INFO'
    log_file: Optional[str] = None
    secret: Optional[str] = None
    destination: Optional[str] = None

    @property
    def scale(self) -> int:
        return scale_factor(self.runtime_decimals, self.consensus_decimals)

    def __repr__(self):
        return (f"SweepConfig(network={self.network}, policy={self.policy.value}, "
                f"identity={self.identity_source.value}, node={self.node_url})")


def _deep_update(base: Dict, override: Dict) -> Dict:
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_update(base[key], value)
        else:
            base[key] = value
    return base


def _load_yaml(config_path: Optional[str]) -> Dict:
    if not config_path:
        return {}

    config_file = Path(config_path)
    if not config_file.exists():
        logger.warning(f"Config file {config_file} not found, using defaults")
        return {}

    try:
        with open(config_file, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_file}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{config_file} must contain a mapping at top level")

    logger.info(f"Loaded sweep config from {config_file}")
    return data


def _enum_value(enum_cls, value: str, field_name: str):
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        choices = ", ".join(member.value for member in enum_cls)
        raise ConfigError(f"Invalid {field_name} {value!r}; expected one of: {choices}")


def load_config(
    config_path: Optional[str] = "sweep_config.yaml",
    overrides: Optional[Dict[str, Any]] = None,
    env_file: Optional[str] = None
) -> SweepConfig:
    """
    Build the run configuration

    Precedence: defaults < YAML file < environment < explicit overrides

    Args:
        config_path: Path to YAML config (None to skip)
        overrides: Values from the command line, same shape as the YAML
        env_file: Optional .env file to load before reading the environment

    Returns:
        SweepConfig

    Raises:
        ConfigError: unknown network, policy or identity source, bad constants
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    raw = copy.deepcopy(DEFAULT_CONFIG)
    _deep_update(raw, _load_yaml(config_path))

    for key, env_name in (('node_url', 'SWEEPER_NODE_URL'),
                          ('secret', 'SWEEPER_MNEMONIC'),
                          ('destination', 'SWEEPER_DESTINATION')):
        value = os.getenv(env_name)
        if value:
            raw[key] = value

    _deep_update(raw, {k: v for k, v in (overrides or {}).items() if v is not None})

    network = raw['network']
    networks = raw['runtime'].get('networks', {})
    if network not in networks:
        raise ConfigError(f"Unknown network {network!r}; configured: {sorted(networks)}")

    runtime_network = networks[network]
    try:
        bridge_address = from_bech32(runtime_network['address'])
        runtime_id = bytes.fromhex(runtime_network['runtime_id'])
    except (KeyError, ValueError) as e:
        raise ConfigError(f"Invalid runtime settings for {network}: {e}") from e

    if len(runtime_id) != 32:
        raise ConfigError(f"runtime_id for {network} must be 32 bytes")

    intervals = SweepIntervals(
        idle_seconds=float(raw['intervals']['idle_seconds']),
        action_delay_seconds=float(raw['intervals']['action_delay_seconds']),
        backoff_seconds=float(raw['intervals']['backoff_seconds']),
    )

    config = SweepConfig(
        network=network,
        node_url=raw['node_url'],
        policy=_enum_value(SweepPolicy, raw['policy'], 'policy'),
        identity_source=_enum_value(IdentitySource, raw['identity'], 'identity'),
        bridge_address=bridge_address,
        runtime_id=runtime_id,
        runtime_gas_price=int(raw['runtime']['gas_price']),
        runtime_fee_gas=int(raw['runtime']['fee_gas']),
        runtime_decimals=int(raw['runtime']['decimals']),
        consensus_decimals=int(raw['consensus']['decimals']),
        intervals=intervals,
        request_timeout_seconds=float(raw.get('request_timeout_seconds', 30.0)),
        log_level=str(raw['logging'].get('level', 'INFO')).upper(),
        log_file=raw['logging'].get('file'),
        secret=raw.get('secret'),
        destination=raw.get('destination'),
    )

    try:
        scale_factor(config.runtime_decimals, config.consensus_decimals)
    except ValueError as e:
        raise ConfigError(str(e)) from e

    if config.runtime_fee_gas <= 0:
        raise ConfigError("runtime.fee_gas must be positive")

    return config
