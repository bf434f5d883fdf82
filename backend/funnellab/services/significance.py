"""Significance engine: winner / trending / need_data verdicts per variant.

Each non-baseline variant is compared with the baseline using a pooled
two-proportion z-test (normal approximation to the binomial):

    p_pool = (x_v + x_b) / (n_v + n_b)
    se     = sqrt(p_pool * (1 - p_pool) * (1/n_v + 1/n_b))
    z      = (x_v/n_v - x_b/n_b) / se

The test is one-sided: only a variant beating the baseline can win.
"""
import enum
import math
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from scipy.stats import norm

DEFAULT_Z_THRESHOLD = 1.65
DEFAULT_MIN_VISITORS = 10


class Confidence(str, enum.Enum):
    """Verdict for a variant compared with the baseline."""
    WINNER = "winner"
    TRENDING = "trending"
    NEED_DATA = "need_data"


@dataclass(frozen=True)
class VariantCounts:
    key: Any
    visitors: int
    conversions: int
    is_control: bool = False


@dataclass(frozen=True)
class Verdict:
    key: Any
    confidence: Confidence
    is_baseline: bool = False
    z_score: Optional[float] = None
    p_value: Optional[float] = None


def pick_baseline(variants: Sequence[VariantCounts]) -> int:
    """Index of the flagged control, else of the variant with the most visitors."""
    for index, variant in enumerate(variants):
        if variant.is_control:
            return index

    best = 0
    for index, variant in enumerate(variants):
        if variant.visitors > variants[best].visitors:
            best = index
    return best


def two_proportion_z(
    conversions: int,
    visitors: int,
    baseline_conversions: int,
    baseline_visitors: int
) -> Optional[float]:
    """
    Pooled two-proportion z statistic of a variant against the baseline.

    Returns:
        z, or None when the test carries no signal (no visitors, no
        conversions in either arm, or zero pooled variance).
    """
    if visitors <= 0 or baseline_visitors <= 0:
        return None
    if conversions == 0 and baseline_conversions == 0:
        return None

    rate = conversions / visitors
    baseline_rate = baseline_conversions / baseline_visitors
    pooled = (conversions + baseline_conversions) / (visitors + baseline_visitors)
    variance = pooled * (1 - pooled) * (1 / visitors + 1 / baseline_visitors)
    if variance <= 0:
        return None

    return (rate - baseline_rate) / math.sqrt(variance)


def classify(
    variants: Sequence[VariantCounts],
    z_threshold: float = DEFAULT_Z_THRESHOLD,
    min_visitors: int = DEFAULT_MIN_VISITORS
) -> List[Verdict]:
    """
    Classify every variant against the baseline.

    - Variants (or a baseline) under `min_visitors` are need_data.
    - winner: z >= z_threshold and the variant's rate beats the baseline.
    - trending: 0 < z < z_threshold.
    - need_data: everything else, including no conversions in either arm.

    The baseline itself is returned with is_baseline=True and need_data.

    Args:
        variants: Visitor/conversion counts per variant
        z_threshold: z needed for a winner (1.65 is ~95% one-tailed)
        min_visitors: Minimum visitors before a variant can be judged

    Returns:
        One verdict per input variant, in input order

    Raises:
        ValueError: Negative counts, or more conversions than visitors
    """
    if not variants:
        return []

    for variant in variants:
        if variant.visitors < 0 or variant.conversions < 0:
            raise ValueError(f"Negative counts for variant {variant.key!r}")
        if variant.conversions > variant.visitors:
            raise ValueError(f"More conversions than visitors for variant {variant.key!r}")

    baseline_index = pick_baseline(variants)
    baseline = variants[baseline_index]
    baseline_conversions = baseline.conversions

    verdicts = []
    for index, variant in enumerate(variants):
        if index == baseline_index:
            verdicts.append(Verdict(key=variant.key, confidence=Confidence.NEED_DATA, is_baseline=True))
            continue

        if variant.visitors < min_visitors or baseline.visitors < min_visitors:
            verdicts.append(Verdict(key=variant.key, confidence=Confidence.NEED_DATA))
            continue

        conversions = variant.conversions
        z = two_proportion_z(conversions, variant.visitors, baseline_conversions, baseline.visitors)
        if z is None:
            verdicts.append(Verdict(key=variant.key, confidence=Confidence.NEED_DATA))
            continue

        beats_baseline = conversions / variant.visitors > baseline_conversions / baseline.visitors
        if z >= z_threshold and beats_baseline:
            confidence = Confidence.WINNER
        elif z > 0:
            confidence = Confidence.TRENDING
        else:
            confidence = Confidence.NEED_DATA

        verdicts.append(Verdict(
            key=variant.key,
            confidence=confidence,
            z_score=round(z, 4),
            p_value=round(float(norm.sf(z)), 6)
        ))

    return verdicts
