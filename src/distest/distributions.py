import logging
import math

import numpy as np
import matplotlib as mpl

mpl.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
from matplotlib import rc  # noqa: E402

logger = logging.getLogger(__name__)

TRIM_FRACTION = 0.0001
BARPLOT_LEVELS = " .:-=+*#%@"


class Histogram:
    """Fragment-size histogram; an ordered mapping of signed sizes to observation counts.

    All transforms return a new Histogram. Keys are kept sorted and unique, and keys with a
    count of zero are dropped.
    """

    __slots__ = ["keys", "counts"]

    def __init__(self, keys=(), counts=()):
        keys = np.asarray(keys, dtype=np.int64).ravel()
        counts = np.asarray(counts, dtype=np.int64).ravel()
        if len(keys) != len(counts):
            raise ValueError("Histogram keys and counts differ in length")

        if len(keys) > 0:
            keys, inverse = np.unique(keys, return_inverse=True)
            counts = np.bincount(inverse.ravel(), weights=counts, minlength=len(keys)).astype(np.int64)
            nonzero = counts > 0
            keys, counts = keys[nonzero], counts[nonzero]

        self.keys = keys
        self.counts = counts

    def __repr__(self):
        return f"Histogram(n={self.size()}, min={self.minimum()}, max={self.maximum()})"

    def __eq__(self, other):
        return (
            isinstance(other, Histogram)
            and np.array_equal(self.keys, other.keys)
            and np.array_equal(self.counts, other.counts)
        )

    def __len__(self):
        return len(self.keys)

    @classmethod
    def from_counts(cls, counts):
        """Build from a mapping of fragment size to count"""
        return cls(list(counts.keys()), list(counts.values()))

    @classmethod
    def from_file(cls, open_file):
        """Read 'value count' pairs, one per line. Repeated values are summed."""
        keys = []
        counts = []
        for nr, line in enumerate(open_file, start=1):
            line = line.strip()
            if line == "" or line.startswith("#"):
                continue

            fields = line.split()
            if len(fields) != 2:
                raise ValueError(f"Expected 'value count' on line {nr}, got '{line}'")
            keys.append(int(fields[0]))
            counts.append(int(fields[1]))
        return cls(keys, counts)

    def items(self):
        return zip(self.keys.tolist(), self.counts.tolist())

    def empty(self) -> bool:
        return len(self.keys) == 0

    def size(self) -> int:
        """Total number of observations"""
        return int(self.counts.sum())

    def count(self, lo: int, hi: int) -> int:
        """Number of observations with lo <= size <= hi"""
        mask = (self.keys >= lo) & (self.keys <= hi)
        return int(self.counts[mask].sum())

    def minimum(self) -> int:
        return int(self.keys[0]) if len(self.keys) else 0

    def maximum(self) -> int:
        return int(self.keys[-1]) if len(self.keys) else 0

    def mean(self) -> float:
        return float(np.average(self.keys, weights=self.counts))

    def variance(self) -> float:
        return float(np.average((self.keys - self.mean()) ** 2, weights=self.counts))

    def sd(self) -> float:
        return math.sqrt(self.variance())

    def percentile(self, p: float) -> int:
        """Smallest size whose cumulative count reaches ceil(size * p)"""
        if self.empty():
            raise ValueError("percentile of an empty histogram")

        target = math.ceil(self.size() * p)
        idx = int(np.searchsorted(np.cumsum(self.counts), target, side="left"))
        return int(self.keys[min(idx, len(self.keys) - 1)])

    def median(self) -> int:
        return self.percentile(0.5)

    def negate(self) -> "Histogram":
        return Histogram(-self.keys, self.counts)

    def erase_negative(self) -> "Histogram":
        keep = self.keys >= 0
        return Histogram(self.keys[keep], self.counts[keep])

    def trim_fraction(self, fraction: float) -> "Histogram":
        """Remove at most `fraction` of the observations from each tail"""
        if not 0 <= fraction < 0.5:
            raise ValueError(f"Trim fraction must be in [0, 0.5), got {fraction}")

        if self.empty():
            return Histogram()

        lower = self.percentile(fraction)
        upper = self.percentile(1 - fraction)
        keep = (self.keys >= lower) & (self.keys <= upper)
        return Histogram(self.keys[keep], self.counts[keep])

    def barplot(self, nbins: int = 80) -> str:
        """Single line text plot of the distribution"""
        if self.empty():
            return ""

        span = self.maximum() - self.minimum() + 1
        nbins = min(nbins, span)
        bins = ((self.keys - self.minimum()) * nbins) // span
        heights = np.bincount(bins, weights=self.counts, minlength=nbins)
        levels = np.ceil(heights / heights.max() * (len(BARPLOT_LEVELS) - 1)).astype(int)
        return "".join(BARPLOT_LEVELS[level] for level in levels)


class PDF:
    """Empirical probability of each fragment size, built once from a finalized histogram.

    Sizes without observations, and any size outside [0, max_idx], get the minimum
    probability 1 / n so that a single outlier never yields a zero likelihood.
    """

    __slots__ = ["max_idx", "min_p", "dist", "observed", "mean", "sd"]

    def __init__(self, hist: Histogram):
        if hist.empty():
            raise ValueError("Cannot build a PDF from an empty histogram")
        if hist.minimum() < 0:
            raise ValueError("Cannot build a PDF from a histogram with negative sizes")

        size = hist.size()
        self.max_idx = hist.maximum()
        self.min_p = 1.0 / size
        dist = np.full(self.max_idx + 1, self.min_p)
        dist[hist.keys] = hist.counts / size
        dist.setflags(write=False)
        observed = np.zeros(self.max_idx + 1, dtype=bool)
        observed[hist.keys] = True
        observed.setflags(write=False)
        self.observed = observed
        self.dist = dist
        self.mean = hist.mean()
        self.sd = hist.sd()

    def __repr__(self):
        return f"PDF(max_idx={self.max_idx}, mean={self.mean:.1f}, sd={self.sd:.1f})"

    def p(self, x):
        """Probability of fragment size(s) x"""
        x = np.asarray(x, dtype=np.int64)
        inside = (x >= 0) & (x <= self.max_idx)
        probs = np.full(x.shape, self.min_p)
        probs[inside] = self.dist[x[inside]]
        return probs

    def sample_sd(self, n: int) -> float:
        """Standard deviation of a distance estimated from n pairs"""
        if n <= 0:
            return float("nan")
        return self.sd / math.sqrt(n)


def detect_orientation(hist: Histogram):
    """Return True if the library is reverse-forward (RF), i.e. has more non-positive
    than positive fragment sizes, together with the FR and RF counts."""
    num_rf = hist.count(np.iinfo(np.int64).min, 0)
    num_fr = hist.count(1, np.iinfo(np.int64).max)
    return num_fr < num_rf, num_fr, num_rf


def prepare_distribution(hist: Histogram, trim_fraction: float = TRIM_FRACTION):
    """Orientation-correct, drop negative sizes and trim the tails of a raw histogram.

    Returns the finalized histogram and whether the library is reverse-forward.
    """
    if hist.empty():
        raise ValueError("Empty histogram")

    rf, num_fr, num_rf = detect_orientation(hist)
    total = hist.size()
    logger.info(f"Mate orientation FR: {num_fr:,} ({num_fr / total:.1%}) RF: {num_rf:,} ({num_rf / total:.1%})")
    if rf:
        logger.warning("The mate pairs of this library are oriented reverse-forward (RF).")
        hist = hist.negate()

    hist = hist.erase_negative()
    if hist.empty():
        raise ValueError("No positive fragment sizes in histogram")

    hist = hist.trim_fraction(trim_fraction)
    logger.info(
        f"Stats mean: {hist.mean():.4g} median: {hist.median()} sd: {hist.sd():.4g} "
        f"n: {hist.size():,} min: {hist.minimum()} max: {hist.maximum()}"
    )
    logger.info(hist.barplot(), extra={"nofmt": True})
    return hist, rf


def plot_distribution(hist: Histogram, fname, xlab="Fragment size (bp)", ylab="Frequency", title=None):
    """Plot the fragment-size distribution to fname. The format follows the file extension."""
    if title is None:
        title = "Fragment-size distribution"
    fig, ax = plt.subplots()
    rc("axes", linewidth=1)
    probs = hist.counts / hist.size()
    ax.bar(hist.keys, probs, width=1.0, color="blue", alpha=0.70)
    ax.axvline(hist.mean(), color="r", linewidth=2, label=f"mean = {hist.mean():.1f}")
    ax.axvline(hist.median(), color="k", linestyle="--", linewidth=1, label=f"median = {hist.median()}")
    ax.set_xlabel(xlab)
    ax.set_ylabel(ylab)
    ax.set_title(title)
    ax.legend()
    fig.savefig(fname)
    plt.close("all")
    logger.info(f"Wrote fragment-size distribution plot to {fname}")
