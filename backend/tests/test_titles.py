import re

import pytest

from modules.validation.titles import (
    check_quote_number,
    extract_deal_id_from_reference,
    generate_project_key,
    normalize_title,
    parse_title,
    strip_duplicate_suffix,
    suggest_title,
)

ODD_INPUTS = [
    None,
    "",
    "   ",
    123,
    "-",
    "---",
    "()",
    "(2)",
    "NY",
    "2594",
    "NY2594",
    "NY2594-",
    "NY2594 - ",
    "ED1-",
    "ED1--",
    "QU",
    "QU12",
    "Ocean Star",
    "NY2594-Ocean-Star-(copy)",
    "ÄÖ2594-Vessel",
    "NY2594\t-\tOcean Star",
]


class TestParseTitle:
    def test_standard_title(self):
        parsed = parse_title("NY2594-Ocean Star")

        assert not parsed.is_invalid
        assert parsed.project_code == "NY2594"
        assert parsed.vessel_name == "Ocean Star"
        assert parsed.canonical_title == "NY2594-Ocean Star"

    def test_spaced_separator_is_equivalent(self):
        spaced = parse_title("NY2594 - Ocean Star")

        assert not spaced.is_invalid
        assert spaced.canonical_title == "NY2594-Ocean Star"
        assert normalize_title("NY2594 - Ocean Star") == normalize_title("NY2594-Ocean Star") == "ny2594-ocean star"

    def test_code_is_uppercased(self):
        assert parse_title("ny2594-Ocean Star").project_code == "NY2594"

    @pytest.mark.parametrize("title", ["NY2594-Ocean Star (2)", "NY2594-Ocean Star (copy)", "NY2594-Ocean Star (COPY)"])
    def test_duplicate_suffix_is_ignored(self, title):
        parsed = parse_title(title)

        assert not parsed.is_invalid
        assert parsed.vessel_name == "Ocean Star"

    def test_ed_title_keeps_last_segment_as_vessel(self):
        parsed = parse_title("ED12345-Survey-Ocean Star")

        assert not parsed.is_invalid
        assert parsed.is_ed_format
        assert parsed.project_code == "ED12345"
        assert parsed.vessel_name == "Ocean Star"

    @pytest.mark.parametrize(
        "title, reason",
        [
            ("", "empty_title"),
            (None, "empty_title"),
            ("QU0349-Ocean Star", "quote_number_as_title"),
            ("Ocean Star", "missing_project_code"),
            ("NY2594 Ocean Star", "missing_separator"),
            ("NY2594-Ocean-Star", "unexpected_segments"),
            ("NY2594-", "missing_vessel"),
            ("NY2594", "missing_vessel"),
            ("NY2594-12345", "numeric_vessel"),
        ],
    )
    def test_invalid_titles(self, title, reason):
        parsed = parse_title(title)

        assert parsed.is_invalid
        assert parsed.invalid_reason == reason
        assert normalize_title(title) == ""

    @pytest.mark.parametrize("title", ODD_INPUTS)
    def test_never_raises_and_valid_means_complete(self, title):
        parsed = parse_title(title)

        if not parsed.is_invalid:
            assert parsed.project_code
            assert parsed.vessel_name

    def test_suggestion_only_for_missing_separator(self):
        assert suggest_title(parse_title("NY2594 Ocean Star")) == "NY2594-Ocean Star"
        assert suggest_title(parse_title("NY2594-Ocean-Star")) is None
        assert suggest_title(parse_title("Ocean Star")) is None

    def test_strip_duplicate_suffix(self):
        assert strip_duplicate_suffix("NY1-Vessel (3)") == "NY1-Vessel"
        assert strip_duplicate_suffix("NY1-Vessel") == "NY1-Vessel"


class TestProjectKey:
    @pytest.mark.parametrize(
        "name, key",
        [
            ("NY2594 - Ocean Star", "ny2594-oceanstar"),
            ("NY2594-Ocean Star", "ny2594-oceanstar"),
            ("NY2594-Ocean Star (2)", "ny2594-oceanstar"),
            ("NY2594 Ocean Star", "ny2594-oceanstar"),
            ("ED255007Vessel", "ed255007-vessel"),
            ("Some Project!", "someproject"),
            ("", ""),
        ],
    )
    def test_keys(self, name, key):
        assert generate_project_key(name) == key

    @pytest.mark.parametrize("name", ODD_INPUTS)
    def test_total_and_deterministic(self, name):
        key = generate_project_key(name)

        assert isinstance(key, str)
        assert re.fullmatch(r"[a-z0-9-]*", key)
        assert generate_project_key(name) == key


class TestReferenceParser:
    @pytest.mark.parametrize(
        "text",
        [
            "Pipedrive Deal Id: 189",
            "Deal ID:189",
            "deal id : 189",
            "PIPEDRIVE DEAL ID:189",
            "PO 4411 / Pipedrive Deal ID: 189 / rev 2",
            "Deal Id #189",
        ],
    )
    def test_variants(self, text):
        assert extract_deal_id_from_reference(text) == 189

    @pytest.mark.parametrize("text", [None, "", "PO 4411", "Deal: 189", "Dealid"])
    def test_no_match(self, text):
        assert extract_deal_id_from_reference(text) is None


class TestQuoteNumbers:
    @pytest.mark.parametrize("number", ["NY2594-QU22554-1", "NY2450-QU19757-1-v2", "ED12345-Survey-QU100"])
    def test_valid_numbers(self, number):
        check = check_quote_number(number)

        assert check.is_valid
        assert check.reasons == ()

    @pytest.mark.parametrize(
        "number, reasons",
        [
            ("QU0349-v2", ("missing_project_prefix", "malformed_version_suffix")),
            ("QU0349", ("missing_project_prefix", "missing_version")),
            ("NY2594-22554-1", ("missing_qu_marker",)),
            ("NY2594QU22554-1", ("missing_separator",)),
            ("NY2594-QU22554", ("missing_version",)),
        ],
    )
    def test_invalid_numbers(self, number, reasons):
        check = check_quote_number(number)

        assert not check.is_valid
        assert check.reasons == reasons
        assert check.reason == reasons[0]
        assert check.suggested_fix

    def test_suggestion_uses_project_code(self):
        check = check_quote_number("QU0349", project_code="NY2594")

        assert check.suggested_number == "NY2594-QU0349-1"
        assert "NY2594-QU0349-1" in check.suggested_fix

    def test_suggestion_keeps_revision(self):
        assert check_quote_number("QU0349-1-v2", project_code="ny2594").suggested_number == "NY2594-QU0349-1-v2"

    def test_numeric_sequence_becomes_qu_marker(self):
        assert check_quote_number("NY2594-22554-1").suggested_number == "NY2594-QU22554-1"

    def test_missing_number(self):
        check = check_quote_number(None, project_code="NY2594")

        assert not check.is_valid
        assert check.reasons == ("missing_number",)
        assert check.suggested_number is None
        assert "NY2594-QU<number>-1" in check.suggested_fix
