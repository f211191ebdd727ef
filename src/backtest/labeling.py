"""Ground-truth labeling of simulated units.

A :class:`LabelContext` indexes a dataset once; a labeler then maps each
:class:`EvaluationUnit` to ``True`` / ``False`` or ``None`` when no rule
can decide.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field

from src.backtest.types import EvaluationUnit, LabelingPolicy, TimeWindow
from src.core.types import HistoricalAlert, HistoricalDataset, HistoricalMarket, HistoricalWallet, Outcome

Labeler = Callable[[EvaluationUnit, "LabelContext"], bool | None]


@dataclass
class LabelContext:
    """Lookup tables over one dataset, shared by every unit of a run."""

    wallets: dict[str, HistoricalWallet] = field(default_factory=dict)
    markets: dict[str, HistoricalMarket] = field(default_factory=dict)
    resolutions: dict[str, Outcome] = field(default_factory=dict)
    alerts_by_wallet: dict[str, list[HistoricalAlert]] = field(default_factory=dict)
    alerts_by_market: dict[str, list[HistoricalAlert]] = field(default_factory=dict)

    @classmethod
    def from_dataset(cls, dataset: HistoricalDataset) -> LabelContext:
        ctx = cls(
            wallets={w.address.lower(): w for w in dataset.wallets},
            markets={m.market_id: m for m in dataset.markets},
        )

        for market in dataset.markets:
            if market.resolution is not None:
                ctx.resolutions[market.market_id] = market.resolution
        # Explicit resolution records override the market snapshot.
        for resolution in dataset.resolutions:
            ctx.resolutions[resolution.market_id] = resolution.outcome

        by_wallet: defaultdict[str, list[HistoricalAlert]] = defaultdict(list)
        by_market: defaultdict[str, list[HistoricalAlert]] = defaultdict(list)
        for alert in dataset.alerts:
            if alert.was_correct is None:
                continue
            if alert.wallet_address:
                by_wallet[alert.wallet_address.lower()].append(alert)
            if alert.market_id:
                by_market[alert.market_id].append(alert)
        ctx.alerts_by_wallet = dict(by_wallet)
        ctx.alerts_by_market = dict(by_market)
        return ctx

    def wallet(self, address: str) -> HistoricalWallet | None:
        return self.wallets.get(address.lower())

    def market(self, market_id: str) -> HistoricalMarket | None:
        return self.markets.get(market_id)


def _alert_verdict(alerts: list[HistoricalAlert], window: TimeWindow) -> bool | None:
    """Any confirmed alert in the window wins over refuted ones."""
    verdict: bool | None = None
    for alert in alerts:
        if not window.contains(alert.timestamp):
            continue
        if alert.was_correct:
            return True
        verdict = False
    return verdict


def label_unit(unit: EvaluationUnit, ctx: LabelContext, policy: LabelingPolicy) -> bool | None:
    """Apply *policy* to one unit; the first rule that decides wins."""
    trade = unit.trade

    if policy.use_known_insiders:
        wallet = unit.wallet or ctx.wallet(trade.wallet_address)
        if wallet is not None and wallet.known_insider is not None:
            return wallet.known_insider

    if policy.use_alerts:
        verdict = _alert_verdict(ctx.alerts_by_wallet.get(trade.wallet_address.lower(), []), unit.window)
        if verdict is None and policy.match_alerts_by_market:
            verdict = _alert_verdict(ctx.alerts_by_market.get(trade.market_id, []), unit.window)
        if verdict is not None:
            return verdict

    if policy.use_resolutions:
        outcome = ctx.resolutions.get(trade.market_id)
        if outcome is not None:
            return trade.outcome == outcome

    return None


def policy_labeler(policy: LabelingPolicy) -> Labeler:
    """Bind *policy* into a :data:`Labeler`."""

    def _label(unit: EvaluationUnit, ctx: LabelContext) -> bool | None:
        return label_unit(unit, ctx, policy)

    return _label
