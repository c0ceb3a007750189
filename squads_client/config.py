"""Client configuration from arguments, a YAML file and the environment."""

import os
from dataclasses import dataclass, fields, replace
from typing import Optional

import yaml
from dotenv import load_dotenv
from solders.pubkey import Pubkey

from .errors import InvalidArgument
from .pda import SQUADS_PROGRAM_ID
from .transport import check_commitment

DEFAULT_ENDPOINT = "https://api.mainnet-beta.solana.com"


def get_rpc_endpoint() -> Optional[str]:
    """RPC endpoint from the environment, None when unset."""
    if api_key := os.environ.get("HELIUS_API_KEY"):
        return f"https://mainnet.helius-rpc.com/?api-key={api_key}"
    if rpc_url := os.environ.get("SOLANA_RPC_URL"):
        return rpc_url
    return None


@dataclass(frozen=True)
class ClientConfig:
    endpoint: str = DEFAULT_ENDPOINT
    program_id: Pubkey = SQUADS_PROGRAM_ID
    commitment: str = "confirmed"
    max_attempts: int = 10
    backoff_initial: float = 0.5
    backoff_max: float = 8.0
    request_timeout: float = 30.0

    def __post_init__(self):
        if isinstance(self.program_id, str):
            object.__setattr__(self, "program_id", _pubkey(self.program_id, "program_id"))
        check_commitment(self.commitment)
        if int(self.max_attempts) < 1:
            raise InvalidArgument(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.backoff_initial <= 0 or self.backoff_max < self.backoff_initial:
            raise InvalidArgument(
                f"Backoff must satisfy 0 < initial <= max, got {self.backoff_initial}/{self.backoff_max}"
            )
        if self.request_timeout <= 0:
            raise InvalidArgument(f"request_timeout must be positive, got {self.request_timeout}")

    @classmethod
    def from_env(cls, **overrides) -> "ClientConfig":
        """Defaults, then environment (and .env file), then ``overrides``."""
        return cls.load(None, **overrides)

    @classmethod
    def from_yaml(cls, path: str, **overrides) -> "ClientConfig":
        """Defaults, then the YAML file at ``path``, then ``overrides``."""
        return replace(cls(**_yaml_values(path)), **_given(overrides))

    @classmethod
    def load(cls, path: Optional[str] = None, **overrides) -> "ClientConfig":
        """Full precedence: overrides, YAML file, environment, defaults."""
        values = _env_values()
        if path is not None:
            values.update(_yaml_values(path))
        values.update(_given(overrides))
        return cls(**values)


def _given(overrides: dict) -> dict:
    names = {f.name for f in fields(ClientConfig)}
    unknown = set(overrides) - names
    if unknown:
        raise InvalidArgument(f"Unknown config option(s): {', '.join(sorted(unknown))}")
    return {k: v for k, v in overrides.items() if v is not None}


def _pubkey(value: str, name: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except ValueError as e:
        raise InvalidArgument(f"{name} is not a valid address: {value!r}") from e


def _env_values() -> dict:
    load_dotenv()
    values = {}
    if endpoint := get_rpc_endpoint():
        values["endpoint"] = endpoint
    if program_id := os.environ.get("SQUADS_PROGRAM_ID"):
        values["program_id"] = program_id
    if commitment := os.environ.get("SQUADS_COMMITMENT"):
        values["commitment"] = commitment
    if max_attempts := os.environ.get("SQUADS_MAX_ATTEMPTS"):
        try:
            values["max_attempts"] = int(max_attempts)
        except ValueError:
            raise InvalidArgument(f"SQUADS_MAX_ATTEMPTS must be an integer, got {max_attempts!r}") from None
    return values


def _yaml_values(path: str) -> dict:
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise InvalidArgument(f"Error loading config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise InvalidArgument(f"Config file {path} must contain a mapping")
    return _given(data)
