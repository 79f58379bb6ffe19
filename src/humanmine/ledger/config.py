# src/humanmine/ledger/config.py
from __future__ import annotations

"""Game configuration store.

The configuration is a singleton held in ledger state under `config`. It is
mutated only through `humanmine.engine.admin`, and every mutation is validated
as a whole so the reward engine and solvency guard can rely on:

  0 < stake_min <= stake_max
  level_count >= 1
  0 <= referral_bonus_bps <= 10_000
  0 < safety_discount_bps < 10_000
"""

from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict, Mapping

from humanmine.errors import InvalidConfig
from humanmine.ledger.constants import (
    BPS_DENOMINATOR,
    DEFAULT_COOLDOWN_S,
    DEFAULT_LEVEL_COUNT,
    DEFAULT_MIN_REWARD,
    DEFAULT_PER_LEVEL_BONUS,
    DEFAULT_REFERRAL_BONUS_BPS,
    DEFAULT_SAFETY_DISCOUNT_BPS,
    DEFAULT_STAKE_MAX,
    DEFAULT_STAKE_MIN,
    DEFAULT_STREAK_BONUS,
    DEFAULT_STREAK_WINDOW_S,
)

Json = Dict[str, Any]


@dataclass(frozen=True, slots=True)
class GameConfig:
    stake_min: int = DEFAULT_STAKE_MIN
    stake_max: int = DEFAULT_STAKE_MAX
    min_reward: int = DEFAULT_MIN_REWARD
    per_level_bonus: int = DEFAULT_PER_LEVEL_BONUS
    level_count: int = DEFAULT_LEVEL_COUNT
    referral_bonus_bps: int = DEFAULT_REFERRAL_BONUS_BPS
    cooldown_s: int = DEFAULT_COOLDOWN_S
    streak_window_s: int = DEFAULT_STREAK_WINDOW_S
    streak_bonus: int = DEFAULT_STREAK_BONUS
    safety_discount_bps: int = DEFAULT_SAFETY_DISCOUNT_BPS

    @property
    def top_level(self) -> int:
        return int(self.level_count) - 1

    def with_updates(self, **changes: Any) -> "GameConfig":
        cfg = replace(self, **{k: _as_int_field(k, v) for k, v in changes.items()})
        validate_game_config(cfg)
        return cfg


CONFIG_FIELDS = tuple(f.name for f in fields(GameConfig))


def _as_int_field(name: str, v: Any) -> int:
    if name not in CONFIG_FIELDS:
        raise InvalidConfig("unknown_field", {"field": name})
    if isinstance(v, bool):
        raise InvalidConfig("field_not_integer", {"field": name, "value": v})
    try:
        return int(v)
    except (TypeError, ValueError):
        raise InvalidConfig("field_not_integer", {"field": name, "value": repr(v)})


def validate_game_config(cfg: GameConfig) -> None:
    """Fail-fast validation of the whole configuration."""
    if int(cfg.stake_min) <= 0:
        raise InvalidConfig("stake_min_must_be_positive", {"stake_min": cfg.stake_min})
    if int(cfg.stake_min) > int(cfg.stake_max):
        raise InvalidConfig(
            "stake_min_exceeds_stake_max", {"stake_min": cfg.stake_min, "stake_max": cfg.stake_max}
        )
    if int(cfg.min_reward) < 0:
        raise InvalidConfig("min_reward_negative", {"min_reward": cfg.min_reward})
    if int(cfg.per_level_bonus) < 0:
        raise InvalidConfig("per_level_bonus_negative", {"per_level_bonus": cfg.per_level_bonus})
    if int(cfg.level_count) < 1:
        raise InvalidConfig("level_count_below_one", {"level_count": cfg.level_count})
    if not 0 <= int(cfg.referral_bonus_bps) <= BPS_DENOMINATOR:
        raise InvalidConfig("referral_bonus_bps_out_of_range", {"referral_bonus_bps": cfg.referral_bonus_bps})
    if int(cfg.cooldown_s) <= 0:
        raise InvalidConfig("cooldown_must_be_positive", {"cooldown_s": cfg.cooldown_s})
    if int(cfg.streak_window_s) < 0:
        raise InvalidConfig("streak_window_negative", {"streak_window_s": cfg.streak_window_s})
    if int(cfg.streak_bonus) < 0:
        raise InvalidConfig("streak_bonus_negative", {"streak_bonus": cfg.streak_bonus})
    if not 0 < int(cfg.safety_discount_bps) < BPS_DENOMINATOR:
        raise InvalidConfig(
            "safety_discount_bps_out_of_range", {"safety_discount_bps": cfg.safety_discount_bps}
        )


def game_config_from_json(raw: Mapping[str, Any] | None) -> GameConfig:
    """Build a GameConfig from a mapping; missing fields take defaults, unknown keys are rejected."""
    data = dict(raw or {})
    unknown = sorted(k for k in data if k not in CONFIG_FIELDS)
    if unknown:
        raise InvalidConfig("unknown_field", {"fields": unknown})
    cfg = GameConfig(**{k: _as_int_field(k, v) for k, v in data.items()})
    validate_game_config(cfg)
    return cfg


def game_config_to_json(cfg: GameConfig) -> Json:
    return {k: int(v) for k, v in asdict(cfg).items()}


def game_config_from_state(state: Json) -> GameConfig:
    raw = state.get("config")
    if not isinstance(raw, dict):
        return GameConfig()
    return game_config_from_json(raw)


def store_game_config(state: Json, cfg: GameConfig) -> None:
    validate_game_config(cfg)
    state["config"] = game_config_to_json(cfg)


__all__ = [
    "CONFIG_FIELDS",
    "GameConfig",
    "game_config_from_json",
    "game_config_from_state",
    "game_config_to_json",
    "store_game_config",
    "validate_game_config",
]
