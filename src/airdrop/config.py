import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, NonNegativeInt, PositiveFloat, PositiveInt, ValidationError, field_validator

from airdrop.constants import MAX_TRANSFERS_PER_TX, URL_MONIKERS, Commitment
from airdrop.errors import ConfigurationError

pkg_root = Path(__file__).parent
config_file = pkg_root / "config.toml"

# Environment variable -> dotted settings key
ENV_OVERRIDES = {
    "RPC_URL": "rpc.url",
    "AIRDROP_KEYPAIR": "keypair",
    "AIRDROP_COMMITMENT": "rpc.commitment",
    "LOG_LEVEL": "log_level",
}


def normalize_to_url_if_moniker(url_or_moniker: str) -> str:
    return URL_MONIKERS.get(url_or_moniker.strip(), url_or_moniker.strip())


class RpcSettings(BaseModel):
    url: str
    commitment: Commitment = Commitment.CONFIRMED
    timeout: PositiveFloat = 30.0

    @field_validator("url")
    @classmethod
    def _normalize_url(cls, v: str) -> str:
        url = normalize_to_url_if_moniker(v)
        if not url.startswith(("http://", "https://")):
            raise ValueError(f"not an RPC URL or known moniker: {v!r}")
        return url


class FeeSettings(BaseModel):
    compute_unit_limit: PositiveInt
    compute_unit_price: NonNegativeInt


class BatchSettings(BaseModel):
    max_transfers_per_tx: PositiveInt = MAX_TRANSFERS_PER_TX
    recovery_file: Path


class Settings(BaseModel):
    keypair: str
    log_level: str = "INFO"
    rpc: RpcSettings
    fees: FeeSettings
    batch: BatchSettings


def deep_update(base: dict, override: dict) -> dict:
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            deep_update(base[k], v)
        else:
            base[k] = v
    return base


def _set_dotted(d: dict, dotted: str, value: Any) -> None:
    *parents, leaf = dotted.split(".")
    for p in parents:
        d = d.setdefault(p, {})
    d[leaf] = value


def _read_toml(path: Path) -> dict:
    try:
        return tomllib.loads(Path(path).expanduser().read_text())
    except FileNotFoundError as e:
        raise ConfigurationError(f"config file not found: {path}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"invalid TOML in {path}: {e}") from e


def load_settings(path: str | Path | None = None, overrides: dict | None = None,
                  environ: dict[str, str] | None = None) -> Settings:
    """Merge packaged defaults, an optional user file, the environment and explicit overrides.

    Later sources win. ``overrides`` uses the same nested layout as config.toml;
    ``None`` values are ignored so unset CLI flags don't clobber anything.
    """
    cfg = _read_toml(config_file)
    if path is not None:
        deep_update(cfg, _read_toml(Path(path)))

    env = os.environ if environ is None else environ
    for var, dotted in ENV_OVERRIDES.items():
        if env.get(var):
            _set_dotted(cfg, dotted, env[var])

    if overrides:
        deep_update(cfg, _drop_none(overrides))

    try:
        return Settings.model_validate(cfg)
    except ValidationError as e:
        raise ConfigurationError(f"invalid settings: {e}") from e


def _drop_none(d: dict) -> dict:
    out = {}
    for k, v in d.items():
        if isinstance(v, dict):
            v = _drop_none(v)
            if v:
                out[k] = v
        elif v is not None:
            out[k] = v
    return out
