import logging
import sys
import threading
import time
from itertools import cycle

import numpy as np

from .utils import AlignPair, ContigTable, parallel_execute

logger = logging.getLogger(__name__)


class UnsortedInputError(Exception):
    """A primary contig reappeared after its batch was closed"""

    def __init__(self, contig):
        super().__init__(f"input must be sorted: `{contig}'")
        self.contig = contig


def is_admissible(read, min_mapq: int) -> bool:
    """True if read is a mapped pair with a CIGAR, linking two different contigs with sufficient
    mapping quality. Secondary and supplementary records are kept."""
    if read.is_unmapped or read.mate_is_unmapped or not read.is_paired:
        return False

    # No CIGAR, so no position for the start of the read
    if not read.cigartuples:
        return False

    if read.reference_id == read.next_reference_id:
        return False

    return read.mapping_quality >= min_mapq


def progress(iterator, desc=None, unit=None, interval=0.5):
    """Simple progress meter"""
    # Defaults
    desc = "Processed" if desc is None else desc
    unit = "els" if unit is None else unit

    # Initials
    t0 = time.perf_counter()
    t_start = time.perf_counter()
    nr = 0
    prev_nr = 0
    spinner = cycle(["-", "\\", "|", "/"])
    for nr, el in enumerate(iterator, start=1):
        yield el

        if time.perf_counter() - t0 > interval:
            step = nr - prev_nr
            prev_nr += step
            units_per_s = step // (time.perf_counter() - t0)
            print(
                f"\r{desc}: {next(spinner)} {nr:,} {unit} ({units_per_s:,.0f} {unit}/s)",
                file=sys.stderr,
                end="\r",
            )
            t0 = time.perf_counter()

    # Final printout
    print(
        f"\r{desc}: DONE! {nr:,} {unit} (total time = {time.perf_counter() - t_start:.3f} s)!",
        file=sys.stderr,
    )


class AlignmentStream:
    """Groups a stream of alignments sorted by primary contig into per-contig batches.

    Any number of workers may call next_batch(). Advancing the stream and updating the
    set of finished contigs happens under a lock, and each returned batch belongs to the
    caller alone.
    """

    def __init__(self, reads, contigs: ContigTable, min_mapq: int = 1):
        self._reads = iter(reads)
        self._contigs = contigs
        self._min_mapq = min_mapq
        self._lock = threading.Lock()
        self._seen = np.zeros(len(contigs), dtype=bool)
        self._batch = []
        self._done = False
        self.n_reads = 0
        self.n_pairs = 0
        self.n_batches = 0

    @property
    def done(self) -> bool:
        return self._done

    def _start_batch(self, pair: AlignPair):
        if self._seen[pair.contig_id]:
            self._done = True
            raise UnsortedInputError(self._contigs.name(pair.contig_id))
        self._seen[pair.contig_id] = True

        batch, self._batch = self._batch, [pair]
        return batch

    def next_batch(self):
        """Return the next complete batch of AlignPairs, or None once the stream is exhausted"""
        with self._lock:
            if self._done:
                return None

            for read in self._reads:
                self.n_reads += 1
                if not is_admissible(read, self._min_mapq):
                    continue

                self.n_pairs += 1
                pair = AlignPair.from_read(read)
                if self._batch and pair.contig_id == self._batch[0].contig_id:
                    self._batch.append(pair)
                    continue

                batch = self._start_batch(pair)
                if batch:
                    self.n_batches += 1
                    return batch

            self._done = True
            batch, self._batch = self._batch, []
            if not batch:
                return None

            self.n_batches += 1
            return batch


def run_workers(stream: AlignmentStream, estimator, threads: int = 1) -> int:
    """Drain stream with `threads` workers, each writing the estimates of the batches it
    takes. Returns the number of batches processed."""

    def work(worker_nr):
        nr = 0
        while True:
            batch = stream.next_batch()
            if batch is None:
                logger.debug(f"Worker {worker_nr} finished after {nr:,} contigs")
                return nr

            estimator.write_estimates(batch)
            nr += 1

    return sum(parallel_execute(work, list(range(threads)), threads=threads))
