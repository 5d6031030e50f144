"""
Ownership aggregation: insider transactions + beneficial owners + 13F
holders -> breakdown by category and a ranked list of top holders.

Shares outstanding is not reported in ownership filings, so it is estimated
by a pluggable strategy (see `SharesOutstandingEstimator`).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ownership_pipeline.schemas import (
    BeneficialOwnerRecord,
    HolderType,
    InsiderOwner,
    InstitutionalHolderRecord,
    OwnershipBreakdown,
    TopHolder,
    TransactionKind,
    TransactionRecord,
    TransactionSummary,
)


TOP_HOLDERS_LIMIT = 20
DEFAULT_KNOWN_FRACTION = 0.7


def summarize_transactions(transactions: Iterable[TransactionRecord]) -> TransactionSummary:
    """Common-share totals. Derivative rows are in their own units and are skipped."""
    buys = 0.0
    sells = 0.0
    for tx in transactions:
        if tx.derivative:
            continue
        if tx.kind == TransactionKind.BUY:
            buys += tx.shares
        elif tx.kind == TransactionKind.SELL:
            sells += tx.shares
    return TransactionSummary(total_buy_shares=buys, total_sell_shares=sells, net_shares=buys - sells)


def current_insider_holdings(transactions: Iterable[TransactionRecord]) -> List[InsiderOwner]:
    """
    Net position per insider: buys add, sells subtract, other kinds and
    derivative rows are ignored.

    Insiders whose balance ends at or below zero are dropped. Sorted by shares
    descending (first-seen order on ties).
    """
    balances: Dict[str, float] = {}
    last_dates: Dict[str, Optional[str]] = {}
    sources: Dict[str, str] = {}
    for tx in transactions:
        if tx.shares == 0 or tx.derivative:
            continue
        name = tx.party_name
        balances.setdefault(name, 0.0)
        if tx.kind == TransactionKind.BUY:
            balances[name] += tx.shares
        elif tx.kind == TransactionKind.SELL:
            balances[name] -= tx.shares
        if tx.date and (last_dates.get(name) is None or tx.date > last_dates[name]):
            last_dates[name] = tx.date
            sources[name] = f"Form {tx.form_type}"
        sources.setdefault(name, f"Form {tx.form_type}")

    holders = [
        InsiderOwner(name=name, shares=shares, last_transaction_date=last_dates.get(name), source=sources[name])
        for name, shares in balances.items()
        if shares > 0
    ]
    holders.sort(key=lambda h: h.shares, reverse=True)
    return holders


# ---------------------------------------------------------------------------
# Shares-outstanding estimation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ShareCountEstimate:
    total_shares: float
    method: str
    is_approximation: bool


class SharesOutstandingEstimator:
    name = "estimator"

    def estimate(self, known_shares: float, beneficial: Sequence[BeneficialOwnerRecord]) -> Optional[ShareCountEstimate]:
        raise NotImplementedError


class BeneficialBackSolveEstimator(SharesOutstandingEstimator):
    """Back-solve from a 13D/G filing that states both shares and percent of class."""

    name = "beneficial_back_solve"

    def estimate(self, known_shares, beneficial):
        for record in beneficial:
            pct = record.percent_ownership
            if record.shares > 0 and pct is not None and 0 < pct <= 100:
                return ShareCountEstimate(record.shares / (pct / 100.0), self.name, False)
        return None


class KnownFloatRatioEstimator(SharesOutstandingEstimator):
    """
    Assume the holders we know about own `known_fraction` of all shares.

    This is an approximation with no basis in any filing; results using it
    are flagged as such.
    """

    name = "known_float_ratio"

    def __init__(self, known_fraction: float = DEFAULT_KNOWN_FRACTION) -> None:
        if not 0 < known_fraction <= 1:
            raise ValueError("known_fraction must be in (0, 1]")
        self.known_fraction = known_fraction

    def estimate(self, known_shares, beneficial):
        if known_shares <= 0:
            return None
        return ShareCountEstimate(known_shares / self.known_fraction, self.name, True)


class ChainedEstimator(SharesOutstandingEstimator):
    """First strategy that produces an estimate wins."""

    name = "chained"

    def __init__(self, strategies: Sequence[SharesOutstandingEstimator]) -> None:
        self.strategies = list(strategies)

    def estimate(self, known_shares, beneficial):
        for strategy in self.strategies:
            result = strategy.estimate(known_shares, beneficial)
            if result is not None:
                return result
        return None


def default_estimator() -> SharesOutstandingEstimator:
    return ChainedEstimator([BeneficialBackSolveEstimator(), KnownFloatRatioEstimator()])


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def _pct(shares: float, total: float) -> float:
    if total <= 0:
        return 0.0
    return min(100.0, max(0.0, shares / total * 100.0))


def _cap_to_hundred(parts: List[float]) -> List[float]:
    # Rounding three shares of the same total can overshoot 100 by a hair.
    excess = round(sum(parts) - 100.0, 2)
    if excess > 0:
        i = max(range(len(parts)), key=lambda k: parts[k])
        parts[i] = round(max(0.0, parts[i] - excess), 2)
    return parts


class OwnershipAggregator:
    def __init__(self, estimator: Optional[SharesOutstandingEstimator] = None) -> None:
        self.estimator = estimator or default_estimator()

    def aggregate(
        self,
        insider_transactions: Sequence[TransactionRecord],
        beneficial: Sequence[BeneficialOwnerRecord],
        institutional: Sequence[InstitutionalHolderRecord],
    ) -> Tuple[OwnershipBreakdown, List[TopHolder]]:
        insiders = current_insider_holdings(insider_transactions)
        insider_shares = sum(h.shares for h in insiders)
        beneficial_shares = sum(b.shares for b in beneficial if b.shares > 0)
        institutional_shares = sum(i.shares for i in institutional if i.shares > 0)
        known = insider_shares + beneficial_shares + institutional_shares

        estimate = self.estimator.estimate(known, beneficial)
        if estimate is None or estimate.total_shares <= 0:
            return OwnershipBreakdown(), []

        # Never let the estimate fall below what we can account for.
        total = max(estimate.total_shares, known)

        insider_pct, beneficial_pct, institutional_pct = _cap_to_hundred(
            [
                round(_pct(insider_shares, total), 2),
                round(_pct(beneficial_shares, total), 2),
                round(_pct(institutional_shares, total), 2),
            ]
        )
        public_pct = max(0.0, round(100.0 - (insider_pct + beneficial_pct + institutional_pct), 2))

        breakdown = OwnershipBreakdown(
            insider_shares=insider_shares,
            insider_percent=insider_pct,
            beneficial_shares=beneficial_shares,
            beneficial_percent=beneficial_pct,
            institutional_shares=institutional_shares,
            institutional_percent=institutional_pct,
            public_shares=float(round(max(0.0, total - known))),
            public_percent=public_pct,
            float_shares=float(round(max(0.0, total - insider_shares - beneficial_shares))),
            shares_outstanding_estimate=float(round(total)),
            estimation_method=estimate.method,
            shares_outstanding_is_approximation=estimate.is_approximation,
        )
        return breakdown, self._top_holders(insiders, beneficial, institutional, total)

    def _top_holders(
        self,
        insiders: Sequence[InsiderOwner],
        beneficial: Sequence[BeneficialOwnerRecord],
        institutional: Sequence[InstitutionalHolderRecord],
        total: float,
    ) -> List[TopHolder]:
        holders: List[TopHolder] = []
        for h in insiders:
            holders.append(
                TopHolder(
                    name=h.name,
                    shares=h.shares,
                    percent_ownership=round(_pct(h.shares, total), 2),
                    type=HolderType.INSIDER,
                    source=h.source,
                )
            )
        for b in beneficial:
            if b.shares <= 0:
                continue
            pct = b.percent_ownership if b.percent_ownership is not None else _pct(b.shares, total)
            holders.append(
                TopHolder(
                    name=b.name,
                    shares=b.shares,
                    percent_ownership=round(min(100.0, max(0.0, pct)), 2),
                    type=HolderType.BENEFICIAL,
                    source=b.form_type,
                )
            )
        for i in institutional:
            if i.shares <= 0:
                continue
            holders.append(
                TopHolder(
                    name=i.name,
                    shares=i.shares,
                    percent_ownership=round(_pct(i.shares, total), 2),
                    type=HolderType.INSTITUTIONAL,
                    source=i.form_type,
                )
            )
        holders.sort(key=lambda h: h.shares, reverse=True)
        return holders[:TOP_HOLDERS_LIMIT]
