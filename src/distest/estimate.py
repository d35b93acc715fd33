import collections
import logging
import re
import threading
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .distributions import PDF
from .mle import TOO_FEW_PAIRS, MLEResult, maximum_likelihood_estimate
from .utils import AlignPair, ContigNode, ContigTable

logger = logging.getLogger(__name__)

ADJ_ESTIMATE_RE = re.compile(r"^(?P<name>.+)(?P<sense>[+-]),(?P<distance>-?\d+),(?P<num_pairs>\d+),(?P<sd>[^,]+)$")


@dataclass(frozen=True)
class Estimate:
    """Distance from a primary contig to a neighbour, supported by num_pairs unique pairs"""

    contig: ContigNode
    distance: int
    num_pairs: int
    sd: float

    def flip(self) -> "Estimate":
        return Estimate(self.contig.flip(), self.distance, self.num_pairs, self.sd)

    def to_adj(self, contigs: ContigTable) -> str:
        return f"{self.contig.name(contigs)},{self.distance},{self.num_pairs},{self.sd:.1f}"

    def to_dot(self, contigs: ContigTable) -> str:
        return f'"{self.contig.name(contigs)}" [d={self.distance} e={self.sd:.1f} n={self.num_pairs}]'

    @classmethod
    def from_adj(cls, field: str, contigs: ContigTable):
        """Parse one 'name+,distance,num_pairs,sd' field of the list format"""
        match = ADJ_ESTIMATE_RE.match(field.strip())
        if match is None:
            raise ValueError(f"Malformed estimate '{field}'")
        return cls(
            contig=ContigNode(contigs.id(match["name"]), match["sense"] == "-"),
            distance=int(match["distance"]),
            num_pairs=int(match["num_pairs"]),
            sd=float(match["sd"]),
        )


def parse_adj_line(line: str, contigs: ContigTable):
    """Parse a list-format line into the primary contig id and the estimates for its
    forward and reverse sense"""
    fields = line.split()
    if not fields:
        raise ValueError("Empty line")

    id0 = contigs.id(fields[0])
    estimates: Tuple[List[Estimate], List[Estimate]] = ([], [])
    sense0 = 0
    for field in fields[1:]:
        if field == ";":
            sense0 = 1
            continue
        estimates[sense0].append(Estimate.from_adj(field, contigs))
    return id0, estimates


def format_dot_edge(node0: ContigNode, estimate: Estimate, contigs: ContigTable) -> str:
    """Directed edge from node0. Estimates for the reverse sense of the primary contig point
    at the flipped neighbour."""
    if node0.sense:
        estimate = estimate.flip()
    return f'"{node0.name(contigs)}" -> {estimate.to_dot(contigs)}'


def dot_header(k: int, seed_len: int, min_pairs: int) -> str:
    return f"digraph dist {{\ngraph [k={k} s={seed_len} n={min_pairs}]\n"


def dot_footer() -> str:
    return "}\n"


def provisional_fragment(pair: AlignPair, len0: int, len1: int, rf: bool = False) -> Tuple[int, int]:
    """Start and end of the fragment of pair if its two contigs were placed side by side
    with no gap. Ends aligned in reverse are measured from the far end of their contig."""
    a0 = pair.target_at_query_start
    a1 = pair.mate_target_at_query_start
    if pair.is_reverse:
        a0 = len0 - a0
    if not pair.mate_is_reverse:
        a1 = len1 - a1

    if rf:
        return a1, len1 + a0
    return a0, len0 + a1


def provisional_fragment_sizes(pairs, len0: int, len1: int, rf: bool = False) -> List[int]:
    """Sizes of the unique provisional fragments of pairs. Pairs with the same start and
    end are duplicates of one molecule and counted once."""
    fragments = sorted({provisional_fragment(pair, len0, len1, rf) for pair in pairs})
    return [end - start for start, end in fragments]


def estimate_distance(
    len0: int, len1: int, pairs, pdf: PDF, k: int, min_pairs: int, rf: bool = False
) -> Tuple[MLEResult, int]:
    """Estimate the distance between two contigs from the pairs linking them.

    Returns the estimate and the number of unique supporting pairs. Contigs may overlap by
    at most k - 1 bases, which bounds the search from below.
    """
    samples = provisional_fragment_sizes(pairs, len0, len1, rf)
    num_pairs = len(samples)
    if num_pairs < min_pairs:
        return TOO_FEW_PAIRS, num_pairs

    result = maximum_likelihood_estimate(-k + 1, pdf.max_idx, samples, pdf, len0, len1, min_pairs=min_pairs)
    return result, num_pairs


class ContigPairEstimator:
    """Turns one batch of alignments sharing a primary contig into formatted estimates.

    Only the final write to the shared output is serialised; everything else runs
    concurrently with other batches.
    """

    def __init__(self, contigs: ContigTable, pdf: PDF, configs, rf: bool, out, out_lock=None):
        self.contigs = contigs
        self.pdf = pdf
        self.configs = configs
        self.rf = rf
        self.out = out
        self.out_lock = threading.Lock() if out_lock is None else out_lock

    def estimate(self, node0: ContigNode, node1: ContigNode, pairs) -> Optional[Estimate]:
        len0 = self.contigs.length(node0.id)
        len1 = self.contigs.length(node1.id)
        result, num_pairs = estimate_distance(
            len0, len1, pairs, self.pdf, k=self.configs.K, min_pairs=self.configs.MIN_PAIRS, rf=self.rf
        )
        names = f"{node0.name(self.contigs)},{node1.name(self.contigs)}"
        if num_pairs < self.configs.MIN_PAIRS:
            logger.debug(f"{names} {num_pairs} unique of {len(pairs)} pairs, fewer than {self.configs.MIN_PAIRS}")
            return None

        if not result.is_valid:
            logger.debug(f"{names} {num_pairs} pairs do not fit the expected distribution")
            return None

        return Estimate(
            contig=node1,
            distance=result.distance,
            num_pairs=num_pairs,
            sd=self.pdf.sample_sd(num_pairs),
        )

    def group_pairs(self, batch):
        """Partition a batch by the strand of the primary contig's read, then by neighbour
        node. The neighbour is reverse when both reads align to the same strand."""
        groups = (collections.defaultdict(list), collections.defaultdict(list))
        for pair in batch:
            node1 = ContigNode(pair.mate_contig_id, int(pair.is_reverse == pair.mate_is_reverse))
            groups[int(pair.is_reverse)][node1].append(pair)
        return groups

    def estimates_for_batch(self, batch) -> List[Tuple[ContigNode, List[Estimate]]]:
        """Estimates for the forward and reverse sense of the batch's primary contig.
        Empty if the contig is shorter than the seed length."""
        id0 = batch[0].contig_id
        if self.contigs.length(id0) < self.configs.SEED_LEN:
            return []

        groups = self.group_pairs(batch)
        result = []
        for sense0 in (0, 1):
            node0 = ContigNode(id0, sense0)
            group = groups[sense0 ^ int(self.rf)]
            estimates = []
            for node1 in sorted(group):
                estimate = self.estimate(node0, node1, group[node1])
                if estimate is not None:
                    estimates.append(estimate)
            result.append((node0, estimates))
        return result

    def format_batch(self, batch) -> str:
        by_sense = self.estimates_for_batch(batch)
        if not by_sense:
            return ""

        if self.configs.DOT:
            return "".join(
                format_dot_edge(node0, estimate, self.contigs) + "\n"
                for node0, estimates in by_sense
                for estimate in estimates
            )

        fields = [self.contigs.name(batch[0].contig_id)]
        for node0, estimates in by_sense:
            if node0.sense:
                fields.append(";")
            fields.extend(estimate.to_adj(self.contigs) for estimate in estimates)
        return " ".join(fields) + "\n"

    def write_estimates(self, batch):
        text = self.format_batch(batch)
        if text:
            with self.out_lock:
                self.out.write(text)

    def write_header(self):
        if self.configs.DOT:
            self.out.write(dot_header(self.configs.K, self.configs.SEED_LEN, self.configs.MIN_PAIRS))

    def write_footer(self):
        if self.configs.DOT:
            self.out.write(dot_footer())
