"""Configuration loader for gse-relay."""

from __future__ import annotations

from configparser import ConfigParser
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

from . import constants

DEFAULT_HUB_TRANSPORTS = ["serial", "simulation"]
DEFAULT_CLIENT_TRANSPORTS = ["websocket", "serial", "simulation"]
KNOWN_TRANSPORTS = frozenset({"websocket", "serial", "simulation"})


@dataclass(slots=True)
class HubConfig:
    host: str = constants.DEFAULT_HUB_HOST
    port: int = constants.DEFAULT_HUB_PORT
    transports: List[str] = field(
        default_factory=lambda: list(DEFAULT_HUB_TRANSPORTS)
    )


@dataclass(slots=True)
class ClientConfig:
    hub_url: str = constants.DEFAULT_HUB_URL
    transports: List[str] = field(
        default_factory=lambda: list(DEFAULT_CLIENT_TRANSPORTS)
    )
    connect_timeout_seconds: float = 5.0


@dataclass(slots=True)
class SerialConfig:
    port: Optional[str] = None  # None means auto-detect
    baud_rate: int = constants.DEFAULT_BAUD_RATE
    vendor_hints: List[str] = field(
        default_factory=lambda: list(constants.DEFAULT_VENDOR_HINTS)
    )
    read_timeout_seconds: float = 0.5


@dataclass(slots=True)
class SimulationConfig:
    enabled: bool = True
    interval_seconds: float = constants.DEFAULT_SIMULATION_INTERVAL_SECONDS
    seed: Optional[int] = None


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_network: bool = False


@dataclass(slots=True)
class ResilienceConfig:
    reconnect_interval_seconds: float = constants.DEFAULT_RECONNECT_INTERVAL_SECONDS
    heartbeat_interval_seconds: float = constants.DEFAULT_HEARTBEAT_INTERVAL_SECONDS


@dataclass(slots=True)
class RelayConfig:
    hub: HubConfig
    client: ClientConfig
    serial: SerialConfig
    simulation: SimulationConfig
    logging: LoggingConfig
    resilience: ResilienceConfig
    raw: ConfigParser
    path: Path


def _parse_list(value: str, *, default: Iterable[str]) -> List[str]:
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_transports(value: str, *, default: Iterable[str]) -> List[str]:
    names = [item.lower() for item in _parse_list(value, default=default)]
    unknown = [name for name in names if name not in KNOWN_TRANSPORTS]
    if unknown:
        raise ValueError(f"Unknown transport(s) in configuration: {', '.join(unknown)}")
    return names


def load_config(path: Optional[Path] = None) -> RelayConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    parser.read_dict(
        {
            "hub": {
                "host": constants.DEFAULT_HUB_HOST,
                "port": str(constants.DEFAULT_HUB_PORT),
                "transports": ",".join(DEFAULT_HUB_TRANSPORTS),
            },
            "client": {
                "hub_url": constants.DEFAULT_HUB_URL,
                "transports": ",".join(DEFAULT_CLIENT_TRANSPORTS),
                "connect_timeout_seconds": "5.0",
            },
            "serial": {
                "port": "",
                "baud_rate": str(constants.DEFAULT_BAUD_RATE),
                "vendor_hints": ",".join(constants.DEFAULT_VENDOR_HINTS),
                "read_timeout_seconds": "0.5",
            },
            "simulation": {
                "enabled": "true",
                "interval_seconds": str(constants.DEFAULT_SIMULATION_INTERVAL_SECONDS),
                "seed": "",
            },
            "logging": {
                "level": "INFO",
                "path": "",
                "log_network": "false",
            },
            "resilience": {
                "reconnect_interval_seconds": str(
                    constants.DEFAULT_RECONNECT_INTERVAL_SECONDS
                ),
                "heartbeat_interval_seconds": str(
                    constants.DEFAULT_HEARTBEAT_INTERVAL_SECONDS
                ),
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    hub = HubConfig(
        host=parser.get("hub", "host"),
        port=parser.getint("hub", "port", fallback=constants.DEFAULT_HUB_PORT),
        transports=_parse_transports(
            parser.get("hub", "transports", fallback=""),
            default=DEFAULT_HUB_TRANSPORTS,
        ),
    )

    client = ClientConfig(
        hub_url=parser.get("client", "hub_url"),
        transports=_parse_transports(
            parser.get("client", "transports", fallback=""),
            default=DEFAULT_CLIENT_TRANSPORTS,
        ),
        connect_timeout_seconds=max(
            0.1,
            parser.getfloat("client", "connect_timeout_seconds", fallback=5.0),
        ),
    )

    serial = SerialConfig(
        port=parser.get("serial", "port", fallback="").strip() or None,
        baud_rate=parser.getint(
            "serial", "baud_rate", fallback=constants.DEFAULT_BAUD_RATE
        ),
        vendor_hints=[
            hint.lower()
            for hint in _parse_list(
                parser.get("serial", "vendor_hints", fallback=""),
                default=constants.DEFAULT_VENDOR_HINTS,
            )
        ],
        read_timeout_seconds=max(
            0.05, parser.getfloat("serial", "read_timeout_seconds", fallback=0.5)
        ),
    )

    seed_value = parser.get("simulation", "seed", fallback="").strip()
    try:
        seed = int(seed_value) if seed_value else None
    except ValueError:
        seed = None

    simulation = SimulationConfig(
        enabled=parser.getboolean("simulation", "enabled", fallback=True),
        interval_seconds=max(
            0.01,
            parser.getfloat(
                "simulation",
                "interval_seconds",
                fallback=constants.DEFAULT_SIMULATION_INTERVAL_SECONDS,
            ),
        ),
        seed=seed,
    )

    log_path_value = parser.get("logging", "path", fallback="").strip()
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path_value).expanduser() if log_path_value else None,
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    resilience = ResilienceConfig(
        reconnect_interval_seconds=max(
            0.01,
            parser.getfloat(
                "resilience",
                "reconnect_interval_seconds",
                fallback=constants.DEFAULT_RECONNECT_INTERVAL_SECONDS,
            ),
        ),
        heartbeat_interval_seconds=max(
            0.01,
            parser.getfloat(
                "resilience",
                "heartbeat_interval_seconds",
                fallback=constants.DEFAULT_HEARTBEAT_INTERVAL_SECONDS,
            ),
        ),
    )

    return RelayConfig(
        hub=hub,
        client=client,
        serial=serial,
        simulation=simulation,
        logging=logging_config,
        resilience=resilience,
        raw=parser,
        path=config_path,
    )


def save_config(config: RelayConfig) -> None:
    """Persist the current configuration to disk."""

    config_path = config.path
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as stream:
        config.raw.write(stream)
