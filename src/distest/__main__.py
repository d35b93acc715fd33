"""
distest - Estimate distances between contigs using paired-end alignments

Usage: distest [OPTION]... HIST [PAIR]

  HIST  distribution of fragment sizes, one 'size count' pair per line
  PAIR  SAM/BAM alignments of read pairs to contigs, sorted by contig.
        Default: read from stdin

For every contig at least as long as the seed length, and every contig linked to it by at
least NPAIRS read pairs, the maximum likelihood distance between the two is estimated from
the fragment-size distribution. Output is one line per contig listing the estimates for its
forward strand, then ';', then the estimates for its reverse strand. Each estimate is
written as contig+/-,distance,pairs,sd. With --dot the estimates are written as the edges
of a directed graph instead.

Negative distances are overlaps. Contigs may overlap by at most k-1 bases.
"""
import argparse
import contextlib
import logging
import sys
import time

import pysam

from . import __version__
from .distributions import PDF, plot_distribution, prepare_distribution
from .estimate import ContigPairEstimator
from .get_reads import AlignmentStream, UnsortedInputError, progress, run_workers
from .global_vars import PROGRAM, STDIN, Configs, load_histogram
from .utils import ConditionalFormatter, ContigTable

logger = logging.getLogger(__name__)

_handler = None


@contextlib.contextmanager
def smart_open(filename=None):
    # From https://stackoverflow.com/questions/17602878/how-to-handle-both-with-open-and-sys-stdout-nicely
    if filename and filename is not None and filename != STDIN:
        try:
            fh = open(filename, "w")
        except OSError as e:
            sys.exit(f"{PROGRAM}: error: cannot write `{filename}': {e.strerror}")
    else:
        fh = sys.stdout

    try:
        yield fh
    finally:
        if fh is not sys.stdout:
            fh.close()


def open_alignments(fname):
    """Open a SAM/BAM file, or stdin for '-'. An unreadable file is fatal."""
    try:
        return pysam.AlignmentFile(fname, "r", check_sq=False)
    except (OSError, ValueError) as e:
        sys.exit(f"{PROGRAM}: error: cannot read alignments `{fname}': {e}")


def build_parser():
    parser = argparse.ArgumentParser(
        prog=PROGRAM,
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        usage="%(prog)s [OPTION]... HIST [PAIR]",
    )
    arg = parser.add_argument
    arg("files", nargs="*", metavar="FILE", help="HIST and optionally PAIR")
    arg("-k", "--kmer", dest="k", type=int, metavar="KMER_SIZE", help="k-mer size")
    arg("-n", "--npairs", type=int, metavar="NPAIRS", help="minimum number of pairs")
    arg("-s", "--seed-length", type=int, metavar="L", help="minimum length of the seed contigs")
    arg(
        "-q",
        "--min-mapq",
        type=int,
        default=1,
        metavar="N",
        help="ignore alignments with mapping quality less than this threshold. Default: %(default)s",
    )
    arg("-o", "--out", metavar="FILE", help="write result to FILE. Default: write to stdout")
    arg("--dot", action="store_true", help="output overlaps in dot format")
    arg("-j", "--threads", type=int, default=1, metavar="N", help="use N parallel threads. Default: %(default)s")
    arg("-v", "--verbose", action="count", default=0, help="display verbose output, repeat for more")
    arg("--plot", metavar="FILE", help="plot the fragment-size distribution to FILE (e.g. .pdf, .png)")
    arg("--version", action="version", version=f"{PROGRAM} {__version__}")
    return parser


def parse_args(args):
    """Parse command line arguments"""
    return Configs.from_args(build_parser().parse_args(args))


def setup_logging(verbose: int):
    """Log to stderr; stdout may carry the results. Verbosity 1 is INFO, 2 and above DEBUG."""
    global _handler
    root = logging.getLogger(__package__)
    if _handler is not None:
        root.removeHandler(_handler)

    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose >= 2:
        level = logging.DEBUG
    root.setLevel(level)

    # Special formatter that can be turned off
    formatter = ConditionalFormatter("%(asctime)s - %(levelname)s: %(message)s")
    _handler = logging.StreamHandler(stream=sys.stderr)
    _handler.setFormatter(formatter)
    root.addHandler(_handler)


def run(configs):
    starttime = time.time()

    logger.info(f"========= {PROGRAM} =========", extra={"nofmt": True})
    logger.info(f"version: {__version__}", extra={"nofmt": True})
    logger.info("-------- CONFIGS --------", extra={"nofmt": True})
    logger.info("FILES", extra={"nofmt": True})
    logger.info(f"  hist = {configs.HIST_FILE}", extra={"nofmt": True})
    logger.info(f"  pairs = {configs.ALIGN_FILE}", extra={"nofmt": True})
    logger.info(f"  out = {configs.OUT or STDIN}", extra={"nofmt": True})
    logger.info("PARAMETERS", extra={"nofmt": True})
    logger.info(f"  k =           {configs.K:>9}", extra={"nofmt": True})
    logger.info(f"  seed_length = {configs.SEED_LEN:>9,}", extra={"nofmt": True})
    logger.info(f"  npairs =      {configs.MIN_PAIRS:>9}", extra={"nofmt": True})
    logger.info(f"  min_mapq =    {configs.MIN_MAPQ:>9}", extra={"nofmt": True})
    logger.info(f"  dot =         {str(configs.DOT).rjust(9)}", extra={"nofmt": True})
    logger.info(f"  threads =     {configs.NUM_THREADS:>9}", extra={"nofmt": True})
    logger.info("-------------------------", extra={"nofmt": True})

    if configs.SEED_LEN < 2 * configs.K:
        logger.warning(f"the seed-length should be at least twice k: k={configs.K}, s={configs.SEED_LEN}")

    hist = load_histogram(configs.HIST_FILE)
    try:
        hist, rf = prepare_distribution(hist)
    except ValueError as e:
        sys.exit(f"{PROGRAM}: error: {configs.HIST_FILE}: {e}")

    if configs.PLOT_FILE is not None:
        plot_distribution(hist, configs.PLOT_FILE)
    pdf = PDF(hist)

    with open_alignments(configs.ALIGN_FILE) as reads, smart_open(configs.OUT) as out:
        contigs = ContigTable.from_header(reads.header)
        logger.info(f"Read lengths of {len(contigs):,} contigs")

        records = iter(reads)
        if configs.VERBOSE > 0:
            records = progress(records, desc="Reading alignments", unit="reads")

        stream = AlignmentStream(records, contigs, min_mapq=configs.MIN_MAPQ)
        estimator = ContigPairEstimator(contigs, pdf, configs, rf, out)
        estimator.write_header()
        try:
            n_batches = run_workers(stream, estimator, threads=configs.NUM_THREADS)
        except UnsortedInputError as e:
            logger.error(str(e))
            sys.exit(1)
        estimator.write_footer()

    logger.info(
        f"Processed {stream.n_reads:,} alignments, {stream.n_pairs:,} linking contigs, "
        f"in {n_batches:,} contig batches"
    )
    logger.info(f"Finished in {(time.time() - starttime) / 60.0} minutes")
    return 0


def main(args=None):
    if args is None:
        args = sys.argv[1:]

    configs = parse_args(args)
    setup_logging(configs.VERBOSE)
    return run(configs)


if __name__ == "__main__":
    sys.exit(main())
