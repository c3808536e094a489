from signaldesk.domain.watchlists import matching
from signaldesk.domain.watchlists.matching import MatchType

from tests.conftest import make_candidate


def test_normalize_folds_case_and_whitespace():
    assert matching.normalize("  Black   Lives\tMatter ") == "black lives matter"
    assert matching.normalize(None) == ""


def test_similarity_bounds():
    assert matching.similarity("Hamas", "hamas") == 1.0
    assert matching.similarity("", "hamas") == 0.0
    assert 0.0 < matching.similarity("Hamas", "Hammas") < 1.0


def test_exact_match_beats_busier_substring_and_fuzzy_candidates():
    candidates = [
        make_candidate("Cairo", mentions_24h=500),
        make_candidate("CAIR-NY", mentions_24h=300),
        make_candidate("CAIR", mentions_24h=5),
    ]

    match = matching.match_entry(["cair"], candidates)

    assert match is not None
    assert match.match_type == MatchType.EXACT
    assert match.candidate.entity_name == "CAIR"
    assert match.score == 1.0


def test_substring_match_scores_by_length_ratio():
    match = matching.match_entry(["planned parenthood"], [make_candidate("Planned Parenthood Action Fund")])

    assert match is not None
    assert match.match_type == MatchType.SUBSTRING
    assert match.score == round(len("planned parenthood") / len("planned parenthood action fund"), 4)


def test_short_terms_never_substring_match():
    assert matching.match_entry(["ai"], [make_candidate("Air Force")]) is None


def test_fuzzy_match_respects_threshold():
    match = matching.match_entry(["hamas"], [make_candidate("Hammas")])
    assert match is not None
    assert match.match_type == MatchType.FUZZY
    assert match.score >= matching.FUZZY_MATCH_THRESHOLD

    assert matching.match_entry(["gaza"], [make_candidate("Gaze")]) is None


def test_alias_matches_and_reports_term():
    terms = matching.match_terms("Alexandria Ocasio-Cortez", ["AOC", " aoc ", ""])
    assert terms == ["alexandria ocasio-cortez", "aoc"]

    match = matching.match_entry(terms, [make_candidate("AOC")])

    assert match is not None
    assert match.match_type == MatchType.EXACT
    assert match.term == "aoc"


def test_ties_within_a_tier_prefer_busier_candidate():
    candidates = [
        make_candidate("Sunrise East", mentions_24h=10),
        make_candidate("Sunrise West", mentions_24h=40),
    ]

    match = matching.match_entry(["sunrise"], candidates)

    assert match is not None
    assert match.match_type == MatchType.SUBSTRING
    assert match.candidate.entity_name == "Sunrise West"


def test_no_terms_or_candidates_means_no_match():
    assert matching.match_entry([], [make_candidate("CAIR")]) is None
    assert matching.match_entry(["cair"], []) is None
