"""Configuration loader for zipcast."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

DEFAULT_PORT = 22
DEFAULT_INSTALL_SCRIPT = "install.sh"
YAML_SUFFIXES = (".yaml", ".yml")

# Setting name -> environment variable read from dotenv sources
REQUIRED_SETTINGS = {
    "username": "USERNAME",
    "password": "PASSWORD",
    "server_address": "SERVER_ADDRESS",
    "zip_file_path": "ZIP_FILE_PATH",
}
OPTIONAL_SETTINGS = {
    "log_dir": "LOG_DIR",
    "install_script": "INSTALL_SCRIPT",
    "staging_dir": "STAGING_DIR",
}


@dataclass(frozen=True)
class HostAddress:
    """A single deployment target."""

    host: str
    port: int = DEFAULT_PORT

    def __str__(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{host}:{self.port}"

    @property
    def slug(self) -> str:
        """Filesystem-safe name, used for per-host log files."""
        return f"{self.host}_{self.port}".replace(":", "_").replace("/", "_")


@dataclass(frozen=True)
class DeploymentRequest:
    """Everything one deployment run needs. Built once, never mutated."""

    username: str
    password: str = field(repr=False)
    hosts: tuple[HostAddress, ...]
    archive_path: Path
    companion_path: Path
    log_dir: Path = field(default_factory=lambda: Path("logs"))
    install_script: str = DEFAULT_INSTALL_SCRIPT
    staging_dir: Path | None = None
    source_path: Path | None = None  # Path to the original config file

    @property
    def target_dir(self) -> str:
        """Remote directory name: the archive name without its .zip suffix."""
        name = self.archive_path.name
        if name.lower().endswith(".zip"):
            return name[: -len(".zip")]
        return name


def parse_host(text: str) -> HostAddress:
    """Parse ``host``, ``host:port`` or ``[v6addr]:port``."""
    text = text.strip()
    if not text:
        raise ValueError("Empty server address")

    if text.startswith("["):
        host, sep, rest = text[1:].partition("]")
        if not sep:
            raise ValueError(f"Unterminated IPv6 address: {text!r}")
        port_text = rest[1:] if rest.startswith(":") else ""
        if rest and not rest.startswith(":"):
            raise ValueError(f"Invalid server address: {text!r}")
    elif text.count(":") == 1:
        host, port_text = text.split(":")
    else:
        # Bare hostname, or an unbracketed IPv6 literal
        host, port_text = text, ""

    if not host:
        raise ValueError(f"Missing host in server address: {text!r}")

    port = DEFAULT_PORT
    if port_text:
        try:
            port = int(port_text)
        except ValueError:
            raise ValueError(f"Invalid port in server address: {text!r}") from None
        if not 0 < port < 65536:
            raise ValueError(f"Port out of range in server address: {text!r}")

    return HostAddress(host=host, port=port)


def parse_host_list(value: str | list[str]) -> tuple[HostAddress, ...]:
    """Parse a comma-separated host list (or a YAML list of hosts)."""
    items = value.split(",") if isinstance(value, str) else [str(v) for v in value]
    hosts = tuple(parse_host(item) for item in items if item.strip())
    if not hosts:
        raise ValueError("No server addresses defined in configuration")
    return hosts


def load_request(
    config_path: str | Path, companion_path: str | Path | None = None
) -> DeploymentRequest:
    """Load and validate a deployment request from a dotenv or YAML file."""
    config_path = Path(config_path).resolve()

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    if config_path.suffix.lower() in YAML_SUFFIXES:
        raw = _read_yaml(config_path)
    else:
        raw = _read_dotenv(config_path)

    return _parse_request(raw, config_path, companion_path)


def _read_yaml(config_path: Path) -> dict[str, Any]:
    """Read settings from a YAML mapping."""
    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Expected a mapping at the top of {config_path}")
    return raw


def _read_dotenv(config_path: Path) -> dict[str, Any]:
    """Load a dotenv file into the environment, then read settings from it."""
    # Variables already present in the environment take precedence
    load_dotenv(config_path, override=False)
    names = {**REQUIRED_SETTINGS, **OPTIONAL_SETTINGS}
    return {key: os.environ.get(env_name) for key, env_name in names.items()}


def _parse_request(
    raw: dict[str, Any], config_path: Path, companion_path: str | Path | None
) -> DeploymentRequest:
    """Parse raw settings into a DeploymentRequest."""
    missing = [
        env_name for key, env_name in REQUIRED_SETTINGS.items() if not raw.get(key)
    ]
    if missing:
        raise ValueError(
            f"Missing setting(s): {', '.join(missing)}. Please make sure "
            "USERNAME, PASSWORD, SERVER_ADDRESS, and ZIP_FILE_PATH are set."
        )

    base_dir = config_path.parent
    hosts = parse_host_list(raw["server_address"])

    companion = Path(companion_path) if companion_path else config_path
    staging_dir = raw.get("staging_dir")

    return DeploymentRequest(
        username=str(raw["username"]),
        password=str(raw["password"]),
        hosts=hosts,
        archive_path=_resolve(base_dir, raw["zip_file_path"]),
        companion_path=companion.expanduser().resolve(),
        log_dir=_resolve(base_dir, raw.get("log_dir") or "logs"),
        install_script=raw.get("install_script") or DEFAULT_INSTALL_SCRIPT,
        staging_dir=_resolve(base_dir, staging_dir) if staging_dir else None,
        source_path=config_path,
    )


def _resolve(base_dir: Path, value: str | Path) -> Path:
    """Resolve a configured path relative to the config file's directory."""
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return path.resolve()
