# src/humanmine/runtime/runtime_config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from humanmine.errors import InvalidConfig
from humanmine.ledger.config import GameConfig, game_config_from_json
from humanmine.ledger.constants import DEFAULT_GROUP_ID, TOKEN

Json = Dict[str, Any]


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_str_tuple(v: Any, default: Tuple[str, ...]) -> Tuple[str, ...]:
    if v is None:
        return tuple(default)
    if isinstance(v, str):
        parts = [p.strip() for p in v.split(",")]
    elif isinstance(v, (list, tuple)):
        parts = [str(p).strip() for p in v]
    else:
        return tuple(default)
    return tuple(p for p in parts if p)


def _as_amount(v: Any, default: int, *, name: str) -> int:
    if v is None:
        return int(default)
    if isinstance(v, bool) or isinstance(v, float):
        raise ValueError(f"{name} must be an integer amount; got: {v!r}")
    try:
        n = int(v)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{name} must be an integer amount; got: {v!r}") from e
    if n < 0:
        raise ValueError(f"{name} must be >= 0; got: {n}")
    return n


def _as_balances(v: Any, default: Json) -> Json:
    if v is None:
        return dict(default)
    if not isinstance(v, dict):
        raise ValueError("dev_balances must be a mapping of address -> amount")
    out: Json = {}
    for addr, amount in v.items():
        a = str(addr).strip().lower()
        if not a:
            raise ValueError("dev_balances has an empty address")
        out[a] = _as_amount(amount, 0, name=f"dev_balances[{a}]")
    return out


@dataclass(frozen=True)
class RuntimeConfig:
    mode: str  # "dev" | "testnet" | "prod"
    chain_id: str

    db_path: str

    engine_address: str
    admin: str

    # Proof scope: signal binds the caller, (app_id, action) binds the deployment.
    app_id: str
    action: str
    group_id: int
    oracle_pubkeys: Tuple[str, ...]

    # "module:factory" returning spend_token / reward_token / verifier.
    collaborators: str

    api_host: str
    api_port: int
    log_level: str

    game: Json = field(default_factory=dict)

    # Seed for the in-memory dev collaborators, minted on every boot.
    dev_treasury: int = 0
    dev_balances: Json = field(default_factory=dict)

    def game_config(self) -> GameConfig:
        return game_config_from_json(self.game)


_ALLOWED_MODES = {"dev", "testnet", "prod"}
DEFAULT_DEV_TREASURY = 1_000_000 * TOKEN


def validate_runtime_config(cfg: RuntimeConfig) -> None:
    """Fail-fast validation for operator config."""
    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {_ALLOWED_MODES}; got: {cfg.mode!r}")

    for name in ("chain_id", "db_path", "engine_address", "admin", "app_id", "action"):
        v = getattr(cfg, name)
        if not isinstance(v, str) or not v.strip():
            raise ValueError(f"{name} must be a non-empty string")

    if int(cfg.api_port) <= 0 or int(cfg.api_port) > 65535:
        raise ValueError(f"api_port must be 1..65535; got: {cfg.api_port}")

    if int(cfg.group_id) < 0:
        raise ValueError(f"group_id must be >= 0; got: {cfg.group_id}")

    if mode == "prod" and not cfg.collaborators.strip():
        raise ValueError("prod mode requires an explicit collaborators factory (module:factory)")

    try:
        cfg.game_config()
    except InvalidConfig as e:
        raise ValueError(f"invalid game config: {e}") from e


def default_runtime_config() -> RuntimeConfig:
    return RuntimeConfig(
        # Without an explicit config file we do not drop into a permissive dev posture.
        mode="prod",
        chain_id="humanmine-dev",
        db_path="./data/humanmine.db",
        engine_address="engine",
        admin="admin",
        app_id="app_humanmine",
        action="mine",
        group_id=DEFAULT_GROUP_ID,
        oracle_pubkeys=(),
        collaborators="",
        api_host="127.0.0.1",
        api_port=8080,
        log_level="INFO",
        game={},
        dev_treasury=DEFAULT_DEV_TREASURY,
        dev_balances={},
    )


def _read_mapping(p: Path) -> Json:
    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() in {".yaml", ".yml"}:
        raw = yaml.safe_load(text)
    else:
        raw = json.loads(text)
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError("runtime config must be a mapping")
    return raw


def runtime_config_from_mapping(raw: Json, *, base: Optional[RuntimeConfig] = None) -> RuntimeConfig:
    d = base or default_runtime_config()
    game = raw.get("game")
    if game is not None and not isinstance(game, dict):
        raise ValueError("game must be a mapping")

    cfg = RuntimeConfig(
        mode=_as_str(raw.get("mode"), d.mode).strip().lower(),
        chain_id=_as_str(raw.get("chain_id"), d.chain_id),
        db_path=_as_str(raw.get("db_path"), d.db_path),
        engine_address=_as_str(raw.get("engine_address"), d.engine_address).strip().lower(),
        admin=_as_str(raw.get("admin"), d.admin).strip().lower(),
        app_id=_as_str(raw.get("app_id"), d.app_id),
        action=_as_str(raw.get("action"), d.action),
        group_id=_as_int(raw.get("group_id"), d.group_id),
        oracle_pubkeys=_as_str_tuple(raw.get("oracle_pubkeys"), d.oracle_pubkeys),
        collaborators=_as_str(raw.get("collaborators"), d.collaborators),
        api_host=_as_str(raw.get("api_host"), d.api_host),
        api_port=_as_int(raw.get("api_port"), d.api_port),
        log_level=_as_str(raw.get("log_level"), d.log_level).upper(),
        game=dict(game) if isinstance(game, dict) else dict(d.game),
        dev_treasury=_as_amount(raw.get("dev_treasury"), d.dev_treasury, name="dev_treasury"),
        dev_balances=_as_balances(raw.get("dev_balances"), d.dev_balances),
    )
    validate_runtime_config(cfg)
    return cfg


def read_runtime_config_file(path: str) -> RuntimeConfig:
    return runtime_config_from_mapping(_read_mapping(Path(path)))


_ENV_KEYS = {
    "mode": "HUMANMINE_MODE",
    "chain_id": "HUMANMINE_CHAIN_ID",
    "db_path": "HUMANMINE_DB_PATH",
    "engine_address": "HUMANMINE_ENGINE_ADDRESS",
    "admin": "HUMANMINE_ADMIN",
    "app_id": "HUMANMINE_APP_ID",
    "action": "HUMANMINE_ACTION",
    "group_id": "HUMANMINE_GROUP_ID",
    "oracle_pubkeys": "HUMANMINE_ORACLE_PUBKEYS",
    "collaborators": "HUMANMINE_COLLABORATORS",
    "api_host": "HUMANMINE_API_HOST",
    "api_port": "HUMANMINE_API_PORT",
    "log_level": "HUMANMINE_LOG_LEVEL",
    "dev_treasury": "HUMANMINE_DEV_TREASURY",
}


def load_runtime_config(*, config_path: Optional[str] = None) -> RuntimeConfig:
    """File (HUMANMINE_CONFIG_PATH, JSON or YAML) first, then HUMANMINE_* env overrides."""
    p = config_path or os.environ.get("HUMANMINE_CONFIG_PATH")
    raw: Json = _read_mapping(Path(p)) if p else {}

    for key, env_name in _ENV_KEYS.items():
        v = os.environ.get(env_name)
        if v is not None and v.strip():
            raw[key] = v

    return runtime_config_from_mapping(raw)


__all__ = [
    "DEFAULT_DEV_TREASURY",
    "RuntimeConfig",
    "default_runtime_config",
    "load_runtime_config",
    "read_runtime_config_file",
    "runtime_config_from_mapping",
    "validate_runtime_config",
]
