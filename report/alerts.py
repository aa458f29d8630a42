"""
Alert evaluator. Checks every active alert against a cycle's opportunities.

Edge-triggered: an alert fires only when its condition holds now and did not
hold at the previous observation (the first observation counts as a crossing).
A firing alert stays active, so it can fire again on the next distinct crossing.
"""

from __future__ import annotations

import logging
import sqlite3
import time

from report.store import AlertStore
from scanner.models import Alert, ArbOpportunity, Direction, TriggeredAlert

logger = logging.getLogger(__name__)


def observe(alert: Alert, opportunities: list[ArbOpportunity] | tuple[ArbOpportunity, ...]) -> ArbOpportunity | None:
    """
    The opportunity an alert is watching this cycle, or None.

    Market alerts match either leg of an opportunity. Category wildcards take
    the widest spread in that category ("all" = every category).
    """
    ref = alert.market_ref
    if ref.is_wildcard:
        pool = [
            o for o in opportunities
            if not ref.category or ref.category == "all" or o.category == ref.category
        ]
    else:
        pool = [
            o for o in opportunities
            if (o.buy_platform is ref.platform and o.buy_external_id == ref.external_id)
            or (o.sell_platform is ref.platform and o.sell_external_id == ref.external_id)
        ]
    if not pool:
        return None
    return max(pool, key=lambda o: (o.spread_pct, o.id))


def condition_met(direction: Direction, observed_spread_pct: float, target_spread_pct: float) -> bool:
    if direction is Direction.ABOVE:
        return observed_spread_pct >= target_spread_pct
    return observed_spread_pct <= target_spread_pct


class AlertEvaluator:
    def __init__(self, store: AlertStore) -> None:
        self.store = store

    def evaluate(
        self,
        opportunities: list[ArbOpportunity] | tuple[ArbOpportunity, ...],
        now: float | None = None,
    ) -> list[TriggeredAlert]:
        """
        Evaluate all active alerts against one cycle's opportunities.
        Writes the new edge state and any triggered records in one transaction.
        """
        ts = time.time() if now is None else now
        triggered: list[TriggeredAlert] = []
        store = self.store
        try:
            store.begin_transaction()
            for alert, previously_met in store.active_alert_states():
                opp = observe(alert, opportunities)
                if opp is None:
                    # Spread gone: an "above" alert re-arms, a "below" alert has nothing to compare
                    if alert.direction is Direction.ABOVE and previously_met:
                        store.record_condition(alert.id, False, commit=False)
                    continue
                met = condition_met(alert.direction, opp.spread_pct, alert.target_spread_pct)
                if met and not previously_met:
                    triggered.append(store.insert_triggered(
                        alert, opp.spread_pct, opportunity_id=opp.id, triggered_at=ts, commit=False,
                    ))
                    logger.info(
                        "Alert %d (%s) TRIGGERED: %s spread %.2f%% %s target %.2f%%",
                        alert.id, alert.owner_id, opp.event_title, opp.spread_pct,
                        alert.direction.value, alert.target_spread_pct,
                        extra={"alert_id": alert.id},
                    )
                if met != previously_met:
                    store.record_condition(alert.id, met, commit=False)
            store.commit()
        except sqlite3.Error:
            store.rollback()
            raise
        return triggered
