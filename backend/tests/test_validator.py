from __future__ import annotations

from datetime import datetime, timezone

import pytest

from ingestion.core.config import VOLATILITY_ENUM
from ingestion.core.errors import ValidationError
from ingestion.core.validator import (
    canonical_provider,
    check_content_safety,
    check_source_compliance,
    compute_confidence,
    filter_compliant_sources,
    is_provider_safe,
    normalize_max_win,
    normalize_release_year,
    normalize_rtp,
    normalize_slot_name,
    normalize_volatility,
    validate_input,
    validate_slot_data,
)


# validate_input


def test_validate_input_trims_and_normalizes_options():
    req = validate_input({"name": "  Mental ", "provider": " Nolimit City ", "skipCache": 1, "force_refresh": "yes"})
    assert req.name == "Mental"
    assert req.provider == "Nolimit City"
    assert req.options.skip_cache is True
    assert req.options.force_refresh is True
    assert req.options.skip_image is False


def test_validate_input_blank_provider_becomes_absent():
    assert validate_input({"name": "Mental", "provider": "   "}).provider is None


@pytest.mark.parametrize(
    "payload",
    [
        None,
        ["Mental"],
        {},
        {"name": "   "},
        {"name": "M"},
        {"name": "x" * 201},
        {"name": "Mental", "provider": "p" * 101},
    ],
)
def test_validate_input_rejects(payload):
    with pytest.raises(ValidationError):
        validate_input(payload)


def test_validate_input_accepts_length_bounds():
    assert validate_input({"name": "ab"}).name == "ab"
    assert len(validate_input({"name": "x" * 200}).name) == 200


# content safety


@pytest.mark.parametrize("text", ["xXx Slot", "Hot N-S-F-W Reels", "Naked Riches"])
def test_blocked_terms(text):
    verdict = check_content_safety(text)
    assert verdict.blocked is True
    assert verdict.term


@pytest.mark.parametrize("text", ["Mental", "Gates of Olympus", "Nolimit City", "Pragmatic Play", "", None])
def test_clean_terms(text):
    assert check_content_safety(text).blocked is False


# providers and names


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("nolimit", "Nolimit City"),
        ("NOLIMIT CITY", "Nolimit City"),
        ("Pragmatic Play Ltd", "Pragmatic Play"),
        ("playngo", "Play'n GO"),
        ("acme reels", "Acme Reels"),
        ("", ""),
        (None, ""),
    ],
)
def test_canonical_provider(raw, expected):
    assert canonical_provider(raw) == expected


def test_normalize_slot_name_collapses_whitespace_and_keeps_capitals():
    assert normalize_slot_name("  gates   of olympus ") == "Gates Of Olympus"
    assert normalize_slot_name("big bass XL") == "Big Bass XL"
    assert normalize_slot_name(None) == ""


def test_provider_safety_list():
    assert is_provider_safe("Nolimit City") is True
    assert is_provider_safe("Shady Reels Co") is False
    assert is_provider_safe(None) is True


# field normalizers


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Very High", "very_high"),
        ("very-high", "very_high"),
        ("extreme", "very_high"),
        ("med-high", "high"),
        ("Medium/Low", "medium"),
        ("moderate", "medium"),
        ("LOW", "low"),
        ("bananas", "unknown"),
        (None, "unknown"),
        ({"v": 1}, "unknown"),
    ],
)
def test_normalize_volatility(raw, expected):
    assert normalize_volatility(raw) == expected


def test_normalize_volatility_accepts_configured_enum():
    assert [normalize_volatility(v) for v in VOLATILITY_ENUM] == list(VOLATILITY_ENUM)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("96.5%", 96.5),
        (96.5, 96.5),
        ("96.487", 96.49),
        (80, 80.0),
        (99.99, 99.99),
        ("79.9", None),
        (100, None),
        ("N/A", None),
        ("", None),
        ("abc", None),
        (True, None),
        (None, None),
    ],
)
def test_normalize_rtp(raw, expected):
    assert normalize_rtp(raw) == expected


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("10,000x", 10000.0),
        ("5000X", 5000.0),
        (2500, 2500.0),
        ("x", None),
        (0, None),
        ("2000000x", None),
        (None, None),
    ],
)
def test_normalize_max_win(raw, expected):
    assert normalize_max_win(raw) == expected


@pytest.mark.parametrize(
    "raw,expected",
    [(2024, 2024), (2025, 2025), (2026, None), (2004, None), ("2019-03-01", 2019), ("n/a", None), (None, None)],
)
def test_normalize_release_year(raw, expected):
    today = datetime(2024, 6, 1, tzinfo=timezone.utc)
    assert normalize_release_year(raw, today=today) == expected


# sources


def test_source_compliance():
    ok = check_source_compliance("https://www.slotcatalog.com/en/slots/mental")
    assert ok.compliant is True and ok.domain == "slotcatalog.com"

    sub = check_source_compliance("https://news.igamingbusiness.com/article")
    assert sub.compliant is True

    blocked = check_source_compliance("https://stake.com/casino/games/mental")
    assert blocked.compliant is False and blocked.blocked is True

    unlisted = check_source_compliance("https://random.blog/post")
    assert unlisted.compliant is False and unlisted.blocked is False

    invalid = check_source_compliance("not a url")
    assert invalid.compliant is False and invalid.domain == "invalid_url"


def test_filter_compliant_sources_splits_lists():
    result = filter_compliant_sources(
        ["https://www.nolimitcity.com/games/mental", "https://kick.com/somebody", 42]
    )
    assert [s.domain for s in result.compliant] == ["nolimitcity.com"]
    assert result.rejected == ["https://kick.com/somebody", "42"]


# confidence


def test_compute_confidence_weights():
    assert compute_confidence(name="A", provider="B", rtp=96.0, volatility="high", max_win_multiplier=5000.0) == 100
    assert compute_confidence(name="A", provider="B", rtp=None, volatility="unknown", max_win_multiplier=None) == 40
    assert compute_confidence(name="A", provider="B", rtp=96.0, volatility="unknown", max_win_multiplier=None) == 60
    assert compute_confidence(name=None, provider=None, rtp=None, volatility=None, max_win_multiplier=None) == 0


# validate_slot_data


def test_validate_slot_data_full_record():
    record, sources = validate_slot_data(
        {
            "name": "mental",
            "provider": "nolimit",
            "rtp": "96.08%",
            "volatility": "Very High",
            "max_win": "66,666x",
            "theme": "Asylum horror",
            "features": ["xWays", "xSplit"],
            "release_year": 2021,
            "confidence": 84.6,
            "sources": ["https://www.nolimitcity.com/games/mental", "https://stake.com/x"],
        },
        "Mental",
    )
    assert record.name == "Mental"
    assert record.provider == "Nolimit City"
    assert record.rtp == 96.08
    assert record.volatility == "very_high"
    assert record.max_win_multiplier == 66666.0
    assert record.features == "xWays, xSplit"
    assert record.release_year == 2021
    assert record.confidence_score == 85
    assert record.twitch_safe is True
    assert record.source_citations == ["https://www.nolimitcity.com/games/mental"]
    assert sources.rejected == ["https://stake.com/x"]
    assert record.image_safety_status == "pending"
    assert record.ingestion_version == "2.0.0"


def test_validate_slot_data_aliases_and_fallbacks():
    record, _ = validate_slot_data(
        {
            "provider": "Acme Reels",
            "max_win_multiplier": 5000,
            "source_citations": ["https://www.slotcatalog.com/x"],
        },
        "gates of olympus",
    )
    assert record.name == "Gates Of Olympus"
    assert record.max_win_multiplier == 5000.0
    assert record.source_citations == ["https://www.slotcatalog.com/x"]
    # unknown provider is not on the stream-safe list
    assert record.twitch_safe is False
    # no model confidence: name 20 + provider 20 + max win 15
    assert record.confidence_score == 55


def test_validate_slot_data_clamps_confidence():
    record, _ = validate_slot_data({"name": "Mental", "provider": "Nolimit City", "confidence": 140}, "Mental")
    assert record.confidence_score == 100


@pytest.mark.parametrize("confidence", [95, 95.4, "95", "95.0"])
def test_ungrounded_confidence_is_capped(confidence):
    draft = {"name": "Mental", "provider": "Nolimit City", "confidence": confidence}

    capped, _ = validate_slot_data(draft, "Mental", grounded=False)
    grounded, _ = validate_slot_data(draft, "Mental")

    assert capped.confidence_score == 70
    assert grounded.confidence_score == 95


def test_ungrounded_computed_confidence_is_capped():
    draft = {"name": "Mental", "provider": "Nolimit City", "rtp": 96.08, "volatility": "high", "max_win": "66666x"}

    capped, _ = validate_slot_data(draft, "Mental", grounded=False)
    grounded, _ = validate_slot_data(draft, "Mental")

    assert grounded.confidence_score == 100
    assert capped.confidence_score == 70


def test_ungrounded_low_confidence_is_untouched():
    record, _ = validate_slot_data(
        {"name": "Mental", "provider": "Nolimit City", "confidence": "40"}, "Mental", grounded=False
    )
    assert record.confidence_score == 40


def test_validate_slot_data_requires_provider():
    with pytest.raises(ValidationError, match="provider"):
        validate_slot_data({"name": "Mental"}, "Mental")


def test_validate_slot_data_rejects_non_mapping():
    with pytest.raises(ValidationError):
        validate_slot_data(None, "Mental")
