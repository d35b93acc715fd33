from dataclasses import dataclass
from multiprocessing.pool import ThreadPool
import logging
import re
import sys

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class ContigNode:
    """A contig identity paired with an orientation. Sense 0 is forward (+), 1 is reverse (-)."""

    id: int
    sense: int = 0

    def flip(self) -> "ContigNode":
        return ContigNode(self.id, 1 - self.sense)

    def name(self, contigs) -> str:
        return contigs.name(self.id) + ("-" if self.sense else "+")


class ContigTable:
    """Frozen lookup of contig names and lengths, shared read-only by all workers.
    Ids follow the order in which names were first added to the builder."""

    __slots__ = ["_names", "_lengths", "_ids"]

    def __init__(self, names, lengths):
        self._names = tuple(names)
        self._lengths = np.array(lengths, dtype=np.int64)
        self._lengths.setflags(write=False)
        self._ids = {name: i for i, name in enumerate(self._names)}

    def __len__(self):
        return len(self._names)

    def __contains__(self, name):
        return name in self._ids

    def __repr__(self):
        return f"ContigTable(n={len(self)})"

    def id(self, name: str) -> int:
        return self._ids[name]

    def name(self, id: int) -> str:
        return self._names[id]

    def length(self, id: int) -> int:
        return int(self._lengths[id])

    @property
    def names(self):
        return self._names

    @classmethod
    def from_header(cls, header):
        """Build from the @SQ records of a pysam AlignmentHeader. No @SQ records is fatal."""
        builder = ContigTableBuilder()
        for name, length in zip(header.references, header.lengths):
            builder.add(name, length)

        if len(builder) == 0:
            logger.error("no @SQ records in the SAM header")
            sys.exit(1)

        return builder.freeze()


class ContigTableBuilder:
    """Collects contig names and lengths while the header is read"""

    def __init__(self):
        self._names = []
        self._lengths = []
        self._seen = set()
        self.frozen = False

    def __len__(self):
        return len(self._names)

    def add(self, name: str, length: int) -> int:
        if self.frozen:
            raise RuntimeError(f"Cannot add contig '{name}' after the contig table is frozen")

        if name in self._seen:
            raise ValueError(f"Duplicate contig name '{name}' in header")

        self._seen.add(name)
        self._names.append(name)
        self._lengths.append(int(length))
        return len(self._names) - 1

    def freeze(self) -> ContigTable:
        self.frozen = True
        return ContigTable(self._names, self._lengths)


CIGAR_CLIPS = {4, 5}  # S, H
CIGAR_CONSUMES_REF = set("MDN=X")
CIGAR_RE = re.compile(r"(\d+)([MIDNSHP=X])")


class AlignPair:
    """One admissible paired-end alignment reduced to what distance estimation needs.
    The read name, sequence and qualities are not kept."""

    __slots__ = [
        "contig_id",
        "mate_contig_id",
        "is_reverse",
        "mate_is_reverse",
        "target_at_query_start",
        "mate_target_at_query_start",
        "mapq",
    ]

    def __init__(
        self,
        contig_id: int,
        mate_contig_id: int,
        is_reverse: bool,
        mate_is_reverse: bool,
        target_at_query_start: int,
        mate_target_at_query_start: int,
        mapq: int = 255,
    ):
        self.contig_id = contig_id
        self.mate_contig_id = mate_contig_id
        self.is_reverse = is_reverse
        self.mate_is_reverse = mate_is_reverse
        self.target_at_query_start = target_at_query_start
        self.mate_target_at_query_start = mate_target_at_query_start
        self.mapq = mapq

    def __repr__(self):
        return (
            f"AlignPair(contig_id={self.contig_id}, mate_contig_id={self.mate_contig_id}, "
            f"is_reverse={self.is_reverse}, mate_is_reverse={self.mate_is_reverse}, "
            f"target_at_query_start={self.target_at_query_start}, "
            f"mate_target_at_query_start={self.mate_target_at_query_start}, mapq={self.mapq})"
        )

    @classmethod
    def from_read(cls, read):
        return cls(
            contig_id=read.reference_id,
            mate_contig_id=read.next_reference_id,
            is_reverse=read.is_reverse,
            mate_is_reverse=read.mate_is_reverse,
            target_at_query_start=target_at_query_start(read),
            mate_target_at_query_start=mate_target_at_query_start(read),
            mapq=read.mapping_quality,
        )


def target_at_query_start(read) -> int:
    """Position on the target of the first base of the read, extrapolated over any clipping.
    For a reverse read the first base is at the right end of the alignment."""
    cigar = read.cigartuples or []
    if read.is_reverse:
        clip = 0
        for op, length in reversed(cigar):
            if op not in CIGAR_CLIPS:
                break
            clip += length
        return read.reference_end + clip

    clip = 0
    for op, length in cigar:
        if op not in CIGAR_CLIPS:
            break
        clip += length
    return read.reference_start - clip


def mate_target_at_query_start(read) -> int:
    """Position on the target of the first base of the mate. The span of a reverse mate is
    taken from its MC tag, or assumed to equal the length of this read if the tag is missing."""
    if not read.mate_is_reverse:
        return read.next_reference_start

    mate_cigar = get_tag_default(read, "MC")
    if mate_cigar is not None:
        ops = CIGAR_RE.findall(mate_cigar)
        span = sum(int(length) for length, op in ops if op in CIGAR_CONSUMES_REF)
        for length, op in reversed(ops):
            if op not in "SH":
                break
            span += int(length)
        return read.next_reference_start + span

    return read.next_reference_start + read.infer_read_length()


def get_tag_default(read, tag, default=None):
    try:
        return read.get_tag(tag)
    except KeyError:
        return default


def parallel_execute(function, input_list, threads=1):
    """Run function over input_list on a pool of threads. Results keep the input order."""
    if threads > 1 and len(input_list) > 1:
        with ThreadPool(threads) as pool:
            logger.info("running on %s threads" % str(threads))
            data = pool.map(function, input_list)
    else:
        data = list(map(function, input_list))
    return data


class ConditionalFormatter(logging.Formatter):
    # Taken from https://stackoverflow.com/a/34954532
    def format(self, record):
        if hasattr(record, "nofmt") and record.nofmt:
            return record.getMessage()
        else:
            return logging.Formatter.format(self, record)
