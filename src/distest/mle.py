"""
Maximum likelihood estimate of the distance between two contigs.

The provisional fragment size s of a pair is its size if the two contigs were placed side
by side with no gap. Under a distance theta the true fragment size is s + theta, so the
likelihood of theta is the product over all pairs of f(s + theta), where f is the empirical
fragment-size PDF. Because both mates must land on a contig, only fragments that straddle
the join can be observed: f is reweighted by a window function W counting the placements of
a fragment across the two contigs, and normalised by c(theta) = sum_x f(x) W(x - theta).
"""
import enum
import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .distributions import PDF

logger = logging.getLogger(__name__)


class EstimateStatus(enum.Enum):
    VALID = "valid"
    TOO_FEW_PAIRS = "too_few_pairs"
    NO_FEASIBLE_OFFSET = "no_feasible_offset"


@dataclass(frozen=True)
class MLEResult:
    status: EstimateStatus
    distance: Optional[int] = None
    num_fit: int = 0

    @property
    def is_valid(self) -> bool:
        return self.status is EstimateStatus.VALID


TOO_FEW_PAIRS = MLEResult(EstimateStatus.TOO_FEW_PAIRS)
NO_FEASIBLE_OFFSET = MLEResult(EstimateStatus.NO_FEASIBLE_OFFSET)


class WindowFunction:
    """A trapezoid: rises on (0, x1), flat on [x1, x2), falls on [x2, x3) and zero
    elsewhere, scaled so that the flat top is 1. Here x1 and x2 are the shorter and longer
    contig lengths and x3 their sum."""

    def __init__(self, len0: int, len1: int):
        if len0 <= 0 or len1 <= 0:
            raise ValueError(f"Contig lengths must be positive, got {len0} and {len1}")
        self.x1 = min(len0, len1)
        self.x2 = max(len0, len1)
        self.x3 = len0 + len1

    def __call__(self, x):
        x = np.asarray(x, dtype=np.int64)
        values = np.select(
            [x <= 0, x < self.x1, x < self.x2, x < self.x3],
            [0, x, self.x1, self.x3 - x],
            default=0,
        )
        return values / self.x1

    def normalizing_constants(self, pdf: PDF, thetas) -> np.ndarray:
        """c(theta) = sum_i pdf[i] * W(i - theta) over the PDF support, for each theta.

        The window is piecewise linear, so each segment is a difference of prefix sums of
        pdf[i] and i * pdf[i].
        """
        thetas = np.asarray(thetas, dtype=np.int64)
        dist = pdf.dist
        idx = np.arange(len(dist))
        prefix = np.concatenate([[0.0], np.cumsum(dist)])
        prefix_i = np.concatenate([[0.0], np.cumsum(idx * dist)])

        def segment(lo, hi):
            # Sums of pdf[i] and i * pdf[i] for lo <= i < hi, clipped to the support
            lo = np.clip(lo, 0, len(dist))
            hi = np.clip(hi, 0, len(dist))
            hi = np.maximum(hi, lo)
            return prefix[hi] - prefix[lo], prefix_i[hi] - prefix_i[lo]

        rise, rise_i = segment(thetas + 1, thetas + self.x1)
        flat, _ = segment(thetas + self.x1, thetas + self.x2)
        fall, fall_i = segment(thetas + self.x2, thetas + self.x3)

        c = (rise_i - thetas * rise) + self.x1 * flat + ((self.x3 + thetas) * fall - fall_i)
        return c / self.x1


def log_likelihoods(thetas, samples, pdf: PDF, window: WindowFunction):
    """Log likelihood of each theta and the number of samples landing on an observed size"""
    thetas = np.asarray(thetas, dtype=np.int64)
    log_dist = np.log(pdf.dist)
    log_min_p = np.log(pdf.min_p)
    observed = pdf.observed

    values, multiplicity = np.unique(np.asarray(samples, dtype=np.int64), return_counts=True)
    total = np.zeros(len(thetas))
    num_fit = np.zeros(len(thetas), dtype=np.int64)
    for sample, mult in zip(values, multiplicity):
        x = sample + thetas
        inside = (x >= 0) & (x <= pdf.max_idx)
        logp = np.full(len(thetas), log_min_p)
        logp[inside] = log_dist[x[inside]]
        total += mult * logp
        hit = np.zeros(len(thetas), dtype=bool)
        hit[inside] = observed[x[inside]]
        num_fit += mult * hit

    c = window.normalizing_constants(pdf, thetas)
    with np.errstate(divide="ignore"):
        total -= len(samples) * np.log(np.where(c > 0, c, 0.0))
    total[c <= 0] = -np.inf
    return total, num_fit


def maximum_likelihood_estimate(
    first: int, last: int, samples, pdf: PDF, len0: int, len1: int, min_pairs: int = 1
) -> MLEResult:
    """Return the distance in [first, last] that maximises the likelihood of the provisional
    fragment sizes in samples, given contigs of length len0 and len1.

    The result is TOO_FEW_PAIRS when there are fewer than min_pairs samples, and
    NO_FEASIBLE_OFFSET when no distance in range places any sample on an observed
    fragment size. Ties are resolved towards the smaller distance.
    """
    if len(samples) < min_pairs or len(samples) == 0:
        return TOO_FEW_PAIRS

    if last < first:
        return NO_FEASIBLE_OFFSET

    thetas = np.arange(first, last + 1, dtype=np.int64)
    window = WindowFunction(len0, len1)
    likelihood, num_fit = log_likelihoods(thetas, samples, pdf, window)
    likelihood[num_fit == 0] = -np.inf

    best = int(np.argmax(likelihood))
    if not np.isfinite(likelihood[best]):
        return NO_FEASIBLE_OFFSET

    return MLEResult(EstimateStatus.VALID, distance=int(thetas[best]), num_fit=int(num_fit[best]))
