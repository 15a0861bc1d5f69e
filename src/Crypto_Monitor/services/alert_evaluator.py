"""Pure alert-rule evaluation against price snapshots.

No I/O and no state: the same rule and snapshot always give the same answer.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from Crypto_Monitor.models.alerts import AlertRule
from Crypto_Monitor.models.enums import AlertCondition
from Crypto_Monitor.models.market_data import PriceSnapshot


def evaluate(rule: AlertRule, snapshot: PriceSnapshot) -> bool:
    """Return True if ``rule`` fires for ``snapshot``.

    - above: price strictly greater than target
    - below: price strictly less than target
    - percent_increase: 24h change >= threshold
    - percent_decrease: 24h change <= -threshold

    Inactive rules, a symbol mismatch, a missing threshold, or a missing 24h
    percentage all evaluate to False.
    """
    if not rule.is_active:
        return False
    if rule.symbol.upper() != snapshot.symbol.upper():
        return False

    match rule.condition:
        case AlertCondition.ABOVE:
            if rule.target_price is None:
                return False
            return snapshot.current_price > rule.target_price
        case AlertCondition.BELOW:
            if rule.target_price is None:
                return False
            return snapshot.current_price < rule.target_price
        case AlertCondition.PERCENT_INCREASE:
            pct = snapshot.price_change_percentage_24h
            if rule.percentage_change is None or pct is None:
                return False
            return pct >= rule.percentage_change
        case AlertCondition.PERCENT_DECREASE:
            pct = snapshot.price_change_percentage_24h
            if rule.percentage_change is None or pct is None:
                return False
            return pct <= -rule.percentage_change
    return False


def find_snapshot(snapshots: Iterable[PriceSnapshot], symbol: str) -> PriceSnapshot | None:
    """Return the first snapshot whose symbol matches, case-insensitively."""
    wanted = symbol.strip().upper()
    for snapshot in snapshots:
        if snapshot.symbol.upper() == wanted:
            return snapshot
    return None


def evaluate_rules(
    rules: Iterable[AlertRule],
    snapshots: Sequence[PriceSnapshot],
) -> list[tuple[AlertRule, PriceSnapshot]]:
    """Pair each firing rule with the snapshot that fired it, in rule order.

    Rules whose symbol has no snapshot in this batch are skipped.
    """
    fired: list[tuple[AlertRule, PriceSnapshot]] = []
    for rule in rules:
        snapshot = find_snapshot(snapshots, rule.symbol)
        if snapshot is not None and evaluate(rule, snapshot):
            fired.append((rule, snapshot))
    return fired
