import threading

import pysam
import pytest

from conftest import MATE_UNMAPPED, PAIRED, READ1, SECONDARY, UNMAPPED
from distest.get_reads import AlignmentStream, UnsortedInputError, is_admissible, progress, run_workers
from distest.utils import ContigTable

CONTIGS = [("contig0", 1000), ("contig1", 1000), ("contig2", 1000)]


class BatchCollector:
    def __init__(self):
        self.lock = threading.Lock()
        self.batches = []

    def write_estimates(self, batch):
        with self.lock:
            self.batches.append(batch)


def open_stream(path, min_mapq=1):
    reads = pysam.AlignmentFile(str(path), "r")
    return reads, AlignmentStream(iter(reads), ContigTable.from_header(reads.header), min_mapq=min_mapq)


@pytest.fixture
def mixed_sam(write_sam, make_sam_line):
    lines = [
        make_sam_line("r1", "contig0", 10, "contig1", 100),
        make_sam_line("r2", "contig0", 20, "contig2", 200, mate_reverse=True),
        make_sam_line("r3", "contig0", 30, "=", 300),
        make_sam_line("r4", "contig1", 40, "contig0", 10, reverse=True),
        make_sam_line("r5", "contig1", 50, "contig0", 10, flag=PAIRED | READ1 | UNMAPPED),
        make_sam_line("r6", "contig1", 60, "contig0", 10, mapq=0),
        make_sam_line("r7", "contig2", 70, "contig0", 10, flag=PAIRED | READ1 | SECONDARY),
        make_sam_line("r8", "contig2", 80, "contig0", 20, flag=PAIRED | READ1 | MATE_UNMAPPED),
        make_sam_line("r9", "contig2", 90, "contig1", 30),
        make_sam_line("r10", "contig2", 95, "contig1", 35, flag=READ1),
        make_sam_line("r11", "contig2", 97, "contig1", 40, cigar="*"),
    ]
    return write_sam(CONTIGS, lines)


def test_is_admissible(mixed_sam):
    with pysam.AlignmentFile(str(mixed_sam), "r") as reads:
        admissible = [read.query_name for read in reads if is_admissible(read, min_mapq=1)]
    assert admissible == ["r1", "r2", "r4", "r7", "r9"]


def test_is_admissible_min_mapq(mixed_sam):
    with pysam.AlignmentFile(str(mixed_sam), "r") as reads:
        admissible = [read.query_name for read in reads if is_admissible(read, min_mapq=0)]
    assert admissible == ["r1", "r2", "r4", "r6", "r7", "r9"]


def test_is_admissible_without_cigar(write_sam, make_sam_line):
    sam = write_sam(CONTIGS, [make_sam_line("r1", "contig0", 10, "contig1", 100, cigar="*")])
    with pysam.AlignmentFile(str(sam), "r") as reads:
        assert not any(is_admissible(read, min_mapq=1) for read in reads)


def test_alignment_stream_batches(mixed_sam):
    reads, stream = open_stream(mixed_sam)
    with reads:
        batches = []
        while True:
            batch = stream.next_batch()
            if batch is None:
                break
            batches.append(batch)

    assert [[pair.contig_id for pair in batch] for batch in batches] == [[0, 0], [1], [2, 2]]
    assert [pair.mate_contig_id for pair in batches[0]] == [1, 2]
    assert batches[0][1].mate_is_reverse
    assert batches[1][0].is_reverse
    assert batches[1][0].target_at_query_start == 90
    assert stream.done
    assert stream.n_reads == 11
    assert stream.n_pairs == 5
    assert stream.n_batches == 3
    assert stream.next_batch() is None


def test_alignment_stream_empty(write_sam):
    reads, stream = open_stream(write_sam(CONTIGS, []))
    with reads:
        assert stream.next_batch() is None
    assert stream.n_batches == 0


def test_alignment_stream_unsorted(write_sam, make_sam_line):
    lines = [
        make_sam_line("r1", "contig0", 10, "contig1", 100),
        make_sam_line("r2", "contig1", 20, "contig0", 200),
        make_sam_line("r3", "contig0", 30, "contig2", 300),
    ]
    reads, stream = open_stream(write_sam(CONTIGS, lines))
    with reads:
        assert len(stream.next_batch()) == 1
        with pytest.raises(UnsortedInputError, match="input must be sorted: `contig0'"):
            stream.next_batch()
    assert stream.done


@pytest.mark.parametrize("threads", [1, 4], ids=["singlethread", "multithread"])
def test_run_workers_drains_stream(write_sam, make_sam_line, threads):
    contigs = [(f"contig{i}", 1000) for i in range(20)]
    lines = [
        make_sam_line(f"r{i}_{j}", f"contig{i}", 10 * j, f"contig{(i + 1) % 20}", 100)
        for i in range(20)
        for j in range(5)
    ]
    reads, stream = open_stream(write_sam(contigs, lines))
    collector = BatchCollector()
    with reads:
        n_batches = run_workers(stream, collector, threads=threads)

    assert n_batches == 20
    assert sorted(batch[0].contig_id for batch in collector.batches) == list(range(20))
    assert all(len(batch) == 5 for batch in collector.batches)
    assert all(len({pair.contig_id for pair in batch}) == 1 for batch in collector.batches)


def test_progress(capsys):
    assert list(progress(range(5), desc="Reading", unit="reads")) == [0, 1, 2, 3, 4]
    assert "Reading: DONE! 5 reads" in capsys.readouterr().err
