"""Slippage policy: from a quote to the minimum acceptable output.

The percentage grows with risk:
- 0.5% base for single-hop, low-impact trades
- at least 3% when price impact is above 5% or the path is multi-hop
- one impact surcharge: +2% (>5%), +5% (>10%), +10% (>20%), +20% (>50%)
- +15% for fee-on-transfer tokens
- never more than the cap (50%)

The minimum is computed in integer base units and floored to a coarse
granularity so it never sits one unit above the venue's own rounding.
"""

import logging
from dataclasses import dataclass, field
from decimal import ROUND_FLOOR, Decimal, localcontext
from enum import Enum
from typing import Optional

from swapflow.config import Settings, get_settings
from swapflow.errors import UnprotectedSwapNotAllowed
from swapflow.routing.base import Quote

logger = logging.getLogger(__name__)

BASE_SLIPPAGE = Decimal("0.5")
LOW_LIQUIDITY_SLIPPAGE = Decimal("3")
FEE_ON_TRANSFER_SURCHARGE = Decimal("15")
MAX_SLIPPAGE = Decimal("50")

# (impact threshold, surcharge), highest first; only the first match applies
IMPACT_SURCHARGES = [
    (Decimal("50"), Decimal("20")),
    (Decimal("20"), Decimal("10")),
    (Decimal("10"), Decimal("5")),
    (Decimal("5"), Decimal("2")),
]

# Unprotected mode keeps 0.01% of the expected output
UNPROTECTED_MIN_DIVISOR = 10000
UNPROTECTED_WARNING = (
    "Slippage protection is OFF: this swap accepts almost any output amount "
    "and can lose nearly all of its value."
)
HIGH_SLIPPAGE_WARNING_PERCENT = Decimal("10")


class SlippageMode(str, Enum):
    AUTO = "auto"  # derived from impact, hops and fee-on-transfer
    FIXED = "fixed"  # user-chosen percentage
    UNPROTECTED = "unprotected"  # explicit opt-in, near-zero minimum


@dataclass(frozen=True)
class SlippageResult:
    """Slippage decision for one quote."""

    slippage_percent: Decimal
    amount_out_min_base_units: int
    expected_output_base_units: int
    mode: SlippageMode = SlippageMode.AUTO
    warnings: tuple[str, ...] = field(default_factory=tuple)


def compute_slippage_percent(
    price_impact_percent: Decimal,
    hop_count: int,
    is_fee_on_transfer: bool,
    cap: Decimal = MAX_SLIPPAGE,
) -> Decimal:
    """Slippage percentage for a trade.

    Examples:
        >>> compute_slippage_percent(Decimal("12"), 1, False)
        Decimal('8')
    """
    impact = Decimal(price_impact_percent)
    slippage = BASE_SLIPPAGE

    if impact > 5 or hop_count > 1:
        slippage = max(slippage, LOW_LIQUIDITY_SLIPPAGE)

    for threshold, surcharge in IMPACT_SURCHARGES:
        if impact > threshold:
            slippage += surcharge
            break

    if is_fee_on_transfer:
        slippage += FEE_ON_TRANSFER_SURCHARGE

    return min(slippage, cap)


def granularity_step(value: int) -> int:
    """Rounding step for a minimum output value.

    Multiples of 1000 above 1000 and of 100 above 100, but never coarser
    than 1/1000 of the value.
    """
    if value > 1000:
        step = 1000
    elif value > 100:
        step = 100
    else:
        return 1

    limit = 1
    while limit * 10 <= value // 1000:
        limit *= 10
    return min(step, limit)


def apply_slippage(expected_output_base_units: int, slippage_percent: Decimal) -> int:
    """Minimum output: floor(expected x (100 - pct) / 100), floored to granularity."""
    if expected_output_base_units <= 0:
        return 0

    with localcontext() as ctx:
        ctx.prec = 100
        raw = Decimal(expected_output_base_units) * (Decimal(100) - Decimal(slippage_percent)) / Decimal(100)
        minimum = int(raw.to_integral_value(rounding=ROUND_FLOOR))

    minimum = max(0, min(minimum, expected_output_base_units))
    step = granularity_step(minimum)
    return minimum - (minimum % step)


class SlippagePolicy:
    """Turns quotes into minimum acceptable outputs."""

    def __init__(
        self,
        mode: SlippageMode = SlippageMode.AUTO,
        fixed_percent: Optional[Decimal] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.mode = SlippageMode(mode)
        self.cap = min(Decimal(self.settings.slippage_cap_percent), MAX_SLIPPAGE)

        if self.mode == SlippageMode.FIXED:
            if fixed_percent is None:
                raise ValueError("Fixed slippage mode needs a percentage")
            fixed_percent = Decimal(str(fixed_percent))
            if not 0 < fixed_percent <= self.cap:
                raise ValueError(f"Slippage must be between 0 and {self.cap}%")

        if self.mode == SlippageMode.UNPROTECTED and not self.settings.allow_unprotected_swaps:
            raise UnprotectedSwapNotAllowed()

        self.fixed_percent = fixed_percent

    def slippage_for(self, quote: Quote) -> Decimal:
        """Slippage percentage the policy applies to a quote."""
        if self.mode == SlippageMode.FIXED:
            return self.fixed_percent
        return compute_slippage_percent(
            quote.price_impact_percent,
            quote.hop_count,
            quote.is_fee_on_transfer,
            cap=self.cap,
        )

    def evaluate(self, quote: Quote, *, reduced_output: Optional[int] = None) -> SlippageResult:
        """Compute the slippage result for a quote.

        Args:
            quote: Quote to protect
            reduced_output: Output for ~90% of the input on a multi-hop path;
                the lower of the two minimums is used

        Returns:
            SlippageResult with ``amount_out_min <= expected_output``
        """
        expected = quote.expected_output_base_units

        if self.mode == SlippageMode.UNPROTECTED:
            minimum = max(expected // UNPROTECTED_MIN_DIVISOR, 1) if expected > 0 else 0
            logger.warning(f"Unprotected swap on {quote.venue}: minimum output {minimum} of {expected}")
            return SlippageResult(
                slippage_percent=Decimal("99.99"),
                amount_out_min_base_units=minimum,
                expected_output_base_units=expected,
                mode=self.mode,
                warnings=(UNPROTECTED_WARNING,),
            )

        slippage = self.slippage_for(quote)
        minimum = apply_slippage(expected, slippage)

        if reduced_output is not None and quote.is_multi_hop:
            reduced_minimum = apply_slippage(reduced_output, slippage)
            if reduced_minimum < minimum:
                logger.debug(f"Multi-hop: using reduced-input minimum {reduced_minimum} over {minimum}")
                minimum = reduced_minimum

        warnings = []
        if slippage > HIGH_SLIPPAGE_WARNING_PERCENT:
            warnings.append(f"High slippage ({slippage}%): you may receive much less than quoted.")
        if quote.is_fee_on_transfer:
            warnings.append("Token charges a transfer fee; slippage was raised to cover it.")

        logger.info(
            f"Slippage for {quote.venue}: {slippage}% "
            f"(impact {quote.price_impact_percent}%, hops {quote.hop_count}, "
            f"fot {quote.is_fee_on_transfer}) -> min {minimum} of {expected}"
        )

        return SlippageResult(
            slippage_percent=slippage,
            amount_out_min_base_units=minimum,
            expected_output_base_units=expected,
            mode=self.mode,
            warnings=tuple(warnings),
        )
