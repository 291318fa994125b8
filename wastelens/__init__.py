"""Waste Lens: scan scoring, quests, stats roll-up and reward redemption."""

__version__ = "0.1.0"
