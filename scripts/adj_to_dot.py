#!/usr/bin/env python3
"""
Convert distest estimates from the list format to the dot graph format
"""
import argparse
import sys

from distest.__main__ import smart_open
from distest.estimate import dot_footer, dot_header, format_dot_edge, parse_adj_line
from distest.utils import ContigNode, ContigTableBuilder


def get_contigs(reference):
    builder = ContigTableBuilder()
    with open(reference) as f:
        for line in f:
            name, length, *_ = line.strip().split("\t")
            assert str.isnumeric(length)
            builder.add(name, int(length))

    assert len(builder) > 0, f"No contigs in reference '{reference}'"
    return builder.freeze()


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    arg = parser.add_argument
    arg("estimates", help="Estimates in the distest list format.")
    arg("-r", "--ref", required=True, help="List of contig lengths e.g. `*.fai`")
    arg("-o", "--output-dot", default="-", help="Output graph. Default: write to stdout")
    arg("-k", "--kmer", type=int, default=0, help="k-mer size written to the graph header. Default: %(default)s")
    arg("-s", "--seed-length", type=int, default=0, help="Seed length written to the graph header. Default: %(default)s")
    arg("-n", "--npairs", type=int, default=0, help="Minimum pairs written to the graph header. Default: %(default)s")
    run(parser.parse_args())
    sys.exit(0)


def run(args):
    contigs = get_contigs(args.ref)

    with open(args.estimates, "r") as adj_reader, smart_open(args.output_dot) as dot_writer:
        print(dot_header(args.kmer, args.seed_length, args.npairs), file=dot_writer, end="")
        for line in adj_reader:
            if line.strip() == "":
                continue

            id0, by_sense = parse_adj_line(line, contigs)
            for sense0, estimates in enumerate(by_sense):
                for estimate in estimates:
                    print(format_dot_edge(ContigNode(id0, sense0), estimate, contigs), file=dot_writer)
        print(dot_footer(), file=dot_writer, end="")


if __name__ == "__main__":
    main()
