# src/humanmine/ledger/constants.py
from __future__ import annotations

"""Monetary and timing constants.

- Spend token and reward token both use 18 decimals.
- Rewards are quoted per whole spend token staked (STAKE_UNIT).
- Ratios are expressed in basis points.
"""

TOKEN_DECIMALS: int = 18
TOKEN: int = 10**TOKEN_DECIMALS

# Reward formulas scale linearly in stake relative to one whole spend token.
STAKE_UNIT: int = TOKEN

BPS_DENOMINATOR: int = 10_000

# Share of sessions the solvency guard assumes will earn the full referral bonus.
EXPECTED_REFERRAL_SHARE_BPS: int = 5_000

HOUR_SECONDS: int = 60 * 60
DAY_SECONDS: int = 24 * HOUR_SECONDS

# Default tunables (genesis values, admin-mutable afterwards)
DEFAULT_STAKE_MIN: int = 1 * TOKEN
DEFAULT_STAKE_MAX: int = 100 * TOKEN
DEFAULT_MIN_REWARD: int = TOKEN // 10  # 0.1 reward token per staked unit
DEFAULT_PER_LEVEL_BONUS: int = 9 * TOKEN // 100  # 0.09
DEFAULT_LEVEL_COUNT: int = 10
DEFAULT_REFERRAL_BONUS_BPS: int = 1_000  # 10%
DEFAULT_COOLDOWN_S: int = DAY_SECONDS
DEFAULT_STREAK_WINDOW_S: int = 2 * DAY_SECONDS
DEFAULT_STREAK_BONUS: int = 5 * TOKEN // 100  # 0.05
DEFAULT_SAFETY_DISCOUNT_BPS: int = 9_000

# World-ID style group id for orb-verified humans.
DEFAULT_GROUP_ID: int = 1
