"""
Profit calculator. Stateless, callable with any hypothetical prices.
"""

from __future__ import annotations

import math

from scanner.models import ProfitEstimate, TradeProjection


def compute_profit(buy_price: float, sell_price: float, stake: float) -> ProfitEstimate:
    """
    Project profit for buying at buy_price and selling at sell_price.

        profit = stake * (sell - buy) / buy
        roi    = profit / stake * 100

    Prices may be in any consistent unit (cents or 0-1).
    """
    if buy_price <= 0:
        raise ValueError(f"buy_price must be positive, got {buy_price}")
    if stake <= 0:
        raise ValueError(f"stake must be positive, got {stake}")
    profit = stake * (sell_price - buy_price) / buy_price
    return ProfitEstimate(profit=profit, roi_pct=profit / stake * 100.0)


def project_trade(
    buy_price: float,
    sell_price: float,
    stake: float,
    fee_pct_per_platform: float = 1.0,
) -> TradeProjection:
    """
    Whole-contract projection with platform fees. Prices in cents (1-99).

    Buys floor(stake / buy) contracts, sells them at sell_price, and charges
    fee_pct_per_platform on the stake for each of the two platforms.
    """
    if buy_price <= 0:
        raise ValueError(f"buy_price must be positive, got {buy_price}")
    if stake <= 0:
        raise ValueError(f"stake must be positive, got {stake}")
    contracts = math.floor(stake * 100.0 / buy_price)
    gross_revenue = contracts * sell_price / 100.0
    gross_profit = gross_revenue - stake
    total_fees = stake * 2.0 * fee_pct_per_platform / 100.0
    net_profit = gross_profit - total_fees
    return TradeProjection(
        contracts=contracts,
        gross_revenue=gross_revenue,
        gross_profit=gross_profit,
        total_fees=total_fees,
        net_profit=net_profit,
        net_roi_pct=net_profit / stake * 100.0,
    )
