"""Epoch aggregate record."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class EpochStats:
    """Aggregates over one epoch's layer range.

    Every field is recomputable from stored layers, transactions,
    activations, accounts and rewards.
    """

    number: int
    start_layer: int
    end_layer: int
    layers: int = 0
    transactions: int = 0
    txs_amount: int = 0
    activations: int = 0
    smeshers: int = 0
    capacity: int = 0
    accounts: int = 0
    rewards: int = 0
    rewards_number: int = 0
