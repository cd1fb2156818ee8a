"""Reward issuance."""

from questline.modules.rewards.ledger import AwardResult, RewardLedger

__all__ = ["RewardLedger", "AwardResult"]
