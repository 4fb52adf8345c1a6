"""Unit tests for recorded-name parsing."""

import pytest

from sovereign.resolution.names import (
    ParsedName,
    expand_initial,
    first_names_compatible,
    is_organization,
    parse_names,
)


def keys(raw: str, order: str = "auto") -> list[str]:
    return [name.key for name in parse_names(raw, order)]


class TestNameOrder:
    """Tests for county index, comma and natural name orders."""

    def test_joint_owners_share_surname(self):
        assert keys("SMITH JOHN & MARY") == ["JOHN SMITH", "MARY SMITH"]

    def test_comma_form_keeps_middle_initial(self):
        (name,) = parse_names("Smith, John J.")

        assert name.key == "JOHN SMITH"
        assert name.middle == "J"

    def test_initial_only(self):
        (name,) = parse_names("J. Smith")

        assert name.first == "J"
        assert name.last == "SMITH"
        assert name.has_initial_only

    def test_natural_joint_owners(self):
        assert keys("John & Mary Smith") == ["JOHN SMITH", "MARY SMITH"]

    def test_natural_with_middle_initial_in_caps(self):
        assert keys("MICHAEL A JOHNSON") == ["MICHAEL JOHNSON"]

    def test_honorific_and_suffix(self):
        (name,) = parse_names("Mr. John A. Smith Jr.")

        assert (name.first, name.middle, name.last, name.suffix) == ("JOHN", "A", "SMITH", "JR")
        assert name.display == "John A Smith Jr"

    def test_explicit_order_overrides_guess(self):
        assert keys("JOHN SMITH", order="natural") == ["JOHN SMITH"]
        assert keys("JOHN SMITH", order="last_first") == ["SMITH JOHN"]

    @pytest.mark.parametrize("raw", ["", "   ", "TR", "ET AL"])
    def test_nothing_usable(self, raw):
        assert parse_names(raw) == []


class TestQualifiers:
    """Trust, estate and tenancy qualifiers are stripped and flagged."""

    def test_trustee(self):
        (name,) = parse_names("SMITH JOHN TR")

        assert name.key == "JOHN SMITH"
        assert name.is_trust

    def test_family_trust_keeps_surname(self):
        (name,) = parse_names("SMITH FAMILY TRUST DTD 01/02/2003")

        assert name.last == "SMITH"
        assert name.is_trust
        assert not name.is_organization

    def test_estate(self):
        (name,) = parse_names("SMITH JOHN ESTATE")

        assert name.key == "JOHN SMITH"
        assert name.is_estate

    def test_tenancy_markers(self):
        assert keys("DOE JANE ET AL") == ["JANE DOE"]


class TestOrganizations:
    def test_organization_is_one_identity(self):
        (name,) = parse_names("Acme Holdings, LLC")

        assert name.is_organization
        assert name.key == "ACME HOLDINGS LLC"

    def test_lender_is_organization(self):
        assert is_organization("FIRST COASTAL BANK")
        assert not is_organization("SMITH JOHN")


class TestFirstNameCompatibility:
    @pytest.mark.parametrize(
        "a,b,expected",
        [
            ("JOHN", "JOHN", True),
            ("BOB", "ROBERT", True),
            ("J", "JOHN", True),
            ("JOHN", "MARY", False),
            ("", "JOHN", False),
        ],
    )
    def test_pairs(self, a, b, expected):
        assert first_names_compatible(a, b) is expected

    def test_expand_initial(self):
        initial = ParsedName(first="J", last="SMITH")
        full = ParsedName(first="JOHN", last="SMITH")

        assert expand_initial(initial, full) == "JOHN SMITH"
        assert expand_initial(full, initial) == "JOHN SMITH"

    def test_canonical_first(self):
        assert ParsedName(first="BILL", last="JONES").canonical_first == "WILLIAM"


def test_storage_key_round_trip():
    name = ParsedName(first="JOHN", middle="A", last="SMITH")

    assert ParsedName.from_storage_key(name.storage_key) == name
