"""
billing_engines.commission_split -- Distribute a commission base.

A seller's commission rule gives the seller a percentage of the booking's
commission base and optionally grants fixed percentages to team leaders.
Whatever is left over stays with the agency.

Percentages here are percent points (0-100), not proportions, because that
is how agencies enter them.  Values outside 0-100 are clamped.  When the
seller's and leaders' percentages add up to more than 100, the leader
shares are scaled down so the total is exactly 100.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence

from billing_kernel.domain.amounts import ZERO, non_negative
from billing_kernel.logging_config import get_logger
from billing_engines.tracer import traced_engine

logger = get_logger("engines.commission_split")

HUNDRED = Decimal("100")
_PCT_QUANTUM = Decimal("0.01")


def clamp_pct(value: Decimal) -> Decimal:
    """Clamp to 0-100 and round to two decimals."""
    clamped = min(max(value, ZERO), HUNDRED)
    return clamped.quantize(_PCT_QUANTUM, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CommissionShare:
    """Percentage of the commission base granted to a team leader."""

    beneficiary_id: str
    pct: Decimal


@dataclass(frozen=True)
class CommissionRuleSet:
    """Commission rule of one seller, effective from ``valid_from``."""

    owner_id: str
    valid_from: date
    own_pct: Decimal = HUNDRED
    shares: tuple[CommissionShare, ...] = field(default_factory=tuple)

    @classmethod
    def default(cls, owner_id: str) -> CommissionRuleSet:
        return cls(owner_id=owner_id, valid_from=date.min)

    @property
    def shares_pct(self) -> Decimal:
        return sum((share.pct for share in self.shares), ZERO)

    def normalized(self) -> CommissionRuleSet:
        """Clamp every percentage and fit leader shares into what is left."""
        own_pct = clamp_pct(self.own_pct)
        shares = [
            CommissionShare(share.beneficiary_id, clamp_pct(share.pct))
            for share in self.shares
            if share.beneficiary_id
        ]
        leaders_total = sum((share.pct for share in shares), ZERO)

        if own_pct + leaders_total > HUNDRED and leaders_total > ZERO:
            factor = (HUNDRED - own_pct) / leaders_total
            shares = [
                CommissionShare(
                    share.beneficiary_id,
                    (share.pct * factor).quantize(_PCT_QUANTUM, rounding=ROUND_HALF_UP),
                )
                for share in shares
            ]
            overflow = own_pct + sum((s.pct for s in shares), ZERO) - HUNDRED
            if overflow > ZERO:
                last = shares[-1]
                shares[-1] = CommissionShare(
                    last.beneficiary_id, non_negative(last.pct - overflow)
                )

        return CommissionRuleSet(
            owner_id=self.owner_id,
            valid_from=self.valid_from,
            own_pct=own_pct,
            shares=tuple(shares),
        )


@dataclass(frozen=True)
class CommissionSplit:
    """How one commission base is distributed."""

    commission_base: Decimal
    seller: Decimal
    leaders: dict[str, Decimal]
    agency_share: Decimal
    rule: CommissionRuleSet

    @property
    def leaders_total(self) -> Decimal:
        return sum(self.leaders.values(), ZERO)


def resolve_commission_rule(
    rule_sets: Sequence[CommissionRuleSet],
    owner_id: str,
    as_of: date,
) -> CommissionRuleSet:
    """
    Pick the rule in force for a seller on a date.

    The latest rule of the owner with ``valid_from <= as_of`` wins.  Sellers
    without a rule keep the whole commission (own_pct 100, no shares).
    """
    candidates = [
        rule
        for rule in rule_sets
        if rule.owner_id == owner_id and rule.valid_from <= as_of
    ]
    if not candidates:
        logger.debug("commission_rule_defaulted", extra={
            "owner_id": owner_id,
            "as_of": as_of.isoformat(),
        })
        return CommissionRuleSet.default(owner_id)
    return max(candidates, key=lambda rule: rule.valid_from)


@traced_engine("commission_split", "1.0", fingerprint_fields=("commission_base", "rule"))
def split_commission(
    commission_base: Decimal,
    rule: CommissionRuleSet,
) -> CommissionSplit:
    """Split a commission base between seller, leaders and agency."""
    rule = rule.normalized()
    base = non_negative(commission_base)

    seller = base * rule.own_pct / HUNDRED
    leaders: dict[str, Decimal] = {}
    for share in rule.shares:
        leaders[share.beneficiary_id] = (
            leaders.get(share.beneficiary_id, ZERO) + base * share.pct / HUNDRED
        )
    agency_share = non_negative(base - seller - sum(leaders.values(), ZERO))

    logger.debug("commission_split_computed", extra={
        "owner_id": rule.owner_id,
        "commission_base": str(base),
        "seller": str(seller),
        "leaders_count": len(leaders),
        "agency_share": str(agency_share),
    })
    return CommissionSplit(
        commission_base=base,
        seller=seller,
        leaders=leaders,
        agency_share=agency_share,
        rule=rule,
    )
