import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, TYPE_CHECKING

from .distributions import Histogram

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    PathType = os.PathLike[str]
else:
    # Remove when python >= 3.9 is required
    # see https://mypy.readthedocs.io/en/latest/runtime_troubles.html#generic-builtins
    PathType = os.PathLike

PROGRAM = "distest"
STDIN = "-"


def load_histogram(fname: PathType) -> Histogram:
    """Read a fragment-size histogram. An unreadable or empty histogram is fatal."""
    try:
        with open(fname) as f:
            hist = Histogram.from_file(f)
    except OSError as e:
        sys.exit(f"{PROGRAM}: error: cannot read histogram `{fname}': {e.strerror}")
    except ValueError as e:
        sys.exit(f"{PROGRAM}: error: malformed histogram `{fname}': {e}")

    if hist.empty():
        sys.exit(f"{PROGRAM}: error: the histogram `{fname}' is empty")
    return hist


@dataclass(frozen=True)
class Configs:
    HIST_FILE: Optional[PathType] = None
    ALIGN_FILE: str = STDIN
    K: int = 0
    SEED_LEN: int = 0
    MIN_PAIRS: int = 0
    MIN_MAPQ: int = 1
    DOT: bool = False
    OUT: Optional[PathType] = None
    NUM_THREADS: int = 1
    VERBOSE: int = 0
    PLOT_FILE: Optional[PathType] = None

    @classmethod
    def from_args(cls, args):
        """Validate parsed command line arguments. Any problem is a fatal usage error."""
        errors = []
        if args.k is None or args.k <= 0:
            errors.append(f"{PROGRAM}: missing -k,--kmer option")

        if args.seed_length is None or args.seed_length <= 0:
            errors.append(f"{PROGRAM}: missing -s,--seed-length option")

        if args.npairs is None or args.npairs <= 0:
            errors.append(f"{PROGRAM}: missing -n,--npairs option")

        if args.min_mapq < 0:
            errors.append(f"{PROGRAM}: -q,--min-mapq must be non-negative")

        if args.threads < 1:
            errors.append(f"{PROGRAM}: -j,--threads must be at least 1")

        if len(args.files) < 1:
            errors.append(f"{PROGRAM}: missing arguments")
        elif len(args.files) > 2:
            errors.append(f"{PROGRAM}: too many arguments")
        else:
            for fname in args.files:
                if fname != STDIN and not Path(fname).exists():
                    errors.append(f"{PROGRAM}: {fname}: No such file or directory")

        if errors:
            errors.append(f"Try `{PROGRAM} --help' for more information.")
            sys.exit("\n".join(errors))

        return cls(
            HIST_FILE=Path(args.files[0]),
            ALIGN_FILE=args.files[1] if len(args.files) > 1 else STDIN,
            K=args.k,
            SEED_LEN=args.seed_length,
            MIN_PAIRS=args.npairs,
            MIN_MAPQ=args.min_mapq,
            DOT=args.dot,
            OUT=Path(args.out) if args.out not in {None, STDIN} else None,
            NUM_THREADS=args.threads,
            VERBOSE=args.verbose,
            PLOT_FILE=Path(args.plot) if args.plot is not None else None,
        )
