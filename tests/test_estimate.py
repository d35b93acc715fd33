import io

import pytest

from distest.distributions import PDF, Histogram
from distest.estimate import (
    ContigPairEstimator,
    Estimate,
    estimate_distance,
    format_dot_edge,
    parse_adj_line,
    provisional_fragment,
    provisional_fragment_sizes,
)
from distest.global_vars import Configs
from distest.mle import TOO_FEW_PAIRS
from distest.utils import AlignPair, ContigNode, ContigTable


@pytest.fixture
def contigs():
    return ContigTable(["contig0", "contig1"], [100, 100])


@pytest.fixture
def pdf():
    return PDF(Histogram.from_counts({300: 1, 310: 2, 320: 1}))


def forward_pairs(offsets):
    """Forward reads at the start of contig0 with reverse mates whose provisional fragment
    sizes are 100 + offset"""
    return [AlignPair(0, 1, False, True, 0, offset) for offset in offsets]


def reverse_pairs(offsets):
    """Mirror image of forward_pairs: reverse reads with forward mates"""
    return [AlignPair(0, 1, True, False, 100, 100 - offset) for offset in offsets]


@pytest.mark.parametrize(
    "is_reverse,mate_is_reverse,target,mate_target",
    [
        (False, True, 900, 100),
        (False, False, 900, 400),
        (True, True, 100, 100),
        (True, False, 100, 400),
    ],
    ids=["FR", "FF", "RR", "RF"],
)
def test_provisional_fragment_strand_cases(is_reverse, mate_is_reverse, target, mate_target):
    pair = AlignPair(0, 1, is_reverse, mate_is_reverse, target, mate_target)
    assert provisional_fragment(pair, 1000, 500) == (900, 1100)


def test_provisional_fragment_rf_library():
    pair = AlignPair(0, 1, False, True, 900, 100)
    assert provisional_fragment(pair, 1000, 500, rf=True) == (100, 1400)


def test_provisional_fragment_sizes_dedup():
    pairs = forward_pairs([205, 208, 208, 212]) + [AlignPair(0, 1, False, True, 3, 211)]
    assert provisional_fragment_sizes(pairs, 100, 100) == [305, 308, 312, 308]


def test_estimate_distance_too_few_unique_pairs(pdf):
    result, num_pairs = estimate_distance(100, 100, forward_pairs([205, 205, 205]), pdf, k=20, min_pairs=2)
    assert result == TOO_FEW_PAIRS
    assert num_pairs == 1


def test_estimate_distance(pdf):
    result, num_pairs = estimate_distance(100, 100, forward_pairs([205, 208, 212]), pdf, k=20, min_pairs=2)
    assert result.is_valid
    assert result.distance == -2
    assert num_pairs == 3


def test_estimate_formats(contigs):
    estimate = Estimate(ContigNode(1, 0), -2, 3, 4.0825)
    assert estimate.to_adj(contigs) == "contig1+,-2,3,4.1"
    assert estimate.to_dot(contigs) == '"contig1+" [d=-2 e=4.1 n=3]'
    assert estimate.flip().to_adj(contigs) == "contig1-,-2,3,4.1"


def test_estimate_from_adj(contigs):
    estimate = Estimate.from_adj("contig1-,-15,12,3.5", contigs)
    assert estimate == Estimate(ContigNode(1, 1), -15, 12, 3.5)


@pytest.mark.parametrize("field", ["contig1,-15,12,3.5", "contig1+,x,12,3.5", "contig1+,-15,12"])
def test_estimate_from_adj_malformed(contigs, field):
    with pytest.raises(ValueError):
        Estimate.from_adj(field, contigs)


def test_parse_adj_line(contigs):
    id0, (forward, reverse) = parse_adj_line("contig0 contig1+,-2,3,4.1 ; contig1-,10,5,2.0\n", contigs)
    assert id0 == 0
    assert forward == [Estimate(ContigNode(1, 0), -2, 3, 4.1)]
    assert reverse == [Estimate(ContigNode(1, 1), 10, 5, 2.0)]


def test_parse_adj_line_without_estimates(contigs):
    assert parse_adj_line("contig1 ;", contigs) == (1, ([], []))


def test_format_dot_edge_flips_neighbour_of_reverse_contig(contigs):
    estimate = Estimate(ContigNode(1, 0), 7, 4, 1.25)
    assert format_dot_edge(ContigNode(0, 0), estimate, contigs) == '"contig0+" -> "contig1+" [d=7 e=1.2 n=4]'
    assert format_dot_edge(ContigNode(0, 1), estimate, contigs) == '"contig0-" -> "contig1-" [d=7 e=1.2 n=4]'


def make_estimator(contigs, pdf, rf=False, **kwargs):
    configs = Configs(**{"K": 20, "SEED_LEN": 40, "MIN_PAIRS": 2, **kwargs})
    out = io.StringIO()
    return ContigPairEstimator(contigs, pdf, configs, rf, out), out


def test_estimator_list_format(contigs, pdf):
    estimator, out = make_estimator(contigs, pdf)
    estimator.write_header()
    estimator.write_estimates(forward_pairs([205, 208, 208, 212]))
    estimator.write_footer()
    assert out.getvalue() == "contig0 contig1+,-2,3,4.1 ;\n"


def test_estimator_list_format_reverse_sense(contigs, pdf):
    estimator, out = make_estimator(contigs, pdf)
    estimator.write_estimates(reverse_pairs([205, 208, 212]))
    assert out.getvalue() == "contig0 ; contig1+,-2,3,4.1\n"


def test_estimator_dot_format(contigs, pdf):
    estimator, out = make_estimator(contigs, pdf, DOT=True)
    estimator.write_header()
    estimator.write_estimates(forward_pairs([205, 208, 212]) + reverse_pairs([205, 208, 212]))
    estimator.write_footer()
    assert out.getvalue() == (
        "digraph dist {\n"
        "graph [k=20 s=40 n=2]\n"
        '"contig0+" -> "contig1+" [d=-2 e=4.1 n=3]\n'
        '"contig0-" -> "contig1-" [d=-2 e=4.1 n=3]\n'
        "}\n"
    )


def test_estimator_rf_library_swaps_sense(contigs, pdf):
    estimator, out = make_estimator(contigs, pdf, rf=True)
    pairs = [AlignPair(0, 1, True, False, 100 - offset, 100) for offset in (205, 208, 212)]
    estimator.write_estimates(pairs)
    assert out.getvalue() == "contig0 contig1+,-2,3,4.1 ;\n"


def test_estimator_groups_neighbours_in_order(pdf):
    contigs = ContigTable(["contig0", "contig1", "contig2"], [100, 100, 100])
    estimator, out = make_estimator(contigs, pdf)
    batch = [AlignPair(0, 2, False, True, 0, offset) for offset in (205, 208, 212)]
    batch += [AlignPair(0, 2, False, False, 0, 100 - offset) for offset in (205, 208, 212)]
    batch += forward_pairs([205, 208, 212])
    estimator.write_estimates(batch)
    assert out.getvalue() == "contig0 contig1+,-2,3,4.1 contig2+,-2,3,4.1 contig2-,-2,3,4.1 ;\n"


def test_estimator_too_few_pairs(contigs, pdf):
    estimator, out = make_estimator(contigs, pdf, MIN_PAIRS=4)
    estimator.write_estimates(forward_pairs([205, 208, 212]))
    assert out.getvalue() == "contig0 ;\n"


def test_estimator_skips_short_seed(contigs, pdf):
    estimator, out = make_estimator(contigs, pdf, SEED_LEN=200)
    estimator.write_estimates(forward_pairs([205, 208, 212]))
    assert out.getvalue() == ""
