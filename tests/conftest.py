import pytest

PAIRED = 0x1
UNMAPPED = 0x4
MATE_UNMAPPED = 0x8
REVERSE = 0x10
MATE_REVERSE = 0x20
READ1 = 0x40
READ2 = 0x80
SECONDARY = 0x100


def sam_line(qname, rname, pos, rnext, pnext, reverse=False, mate_reverse=False, mapq=60, length=50, flag=None, cigar=None, tags=()):
    """A SAM record; pos and pnext are 0-based"""
    if flag is None:
        flag = PAIRED | READ1
        flag |= REVERSE if reverse else 0
        flag |= MATE_REVERSE if mate_reverse else 0
    if cigar is None:
        cigar = f"{length}M"
    fields = [qname, str(flag), rname, str(pos + 1), str(mapq), cigar, rnext, str(pnext + 1), "0", "A" * length, "*"]
    return "\t".join(fields + list(tags))


def write_sam_file(path, contigs, lines):
    with open(path, "w") as f:
        print("@HD\tVN:1.6\tSO:unsorted", file=f)
        for name, length in contigs:
            print(f"@SQ\tSN:{name}\tLN:{length}", file=f)
        for line in lines:
            print(line, file=f)
    return path


def write_hist_file(path, counts):
    with open(path, "w") as f:
        for size, count in counts.items():
            print(size, count, sep="\t", file=f)
    return path


@pytest.fixture
def make_sam_line():
    return sam_line


@pytest.fixture
def write_sam(tmp_path):
    def _write(contigs, lines, name="pairs.sam"):
        return write_sam_file(tmp_path / name, contigs, lines)

    return _write


@pytest.fixture
def write_hist(tmp_path):
    def _write(counts, name="hist.txt"):
        return write_hist_file(tmp_path / name, counts)

    return _write
