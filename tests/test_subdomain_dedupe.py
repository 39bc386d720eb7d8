from datetime import timezone

from domain_risk.utils.normalize import dedupe_subdomains, normalize_domain, parse_timestamp, to_fqdn


def test_dedupe_and_normalize():
    names = ["*.Example.com", "foo.example.com", "FOO.example.com.", "invalid..example.com", "bar.other.org"]
    result = dedupe_subdomains(names, "example.com")
    assert result == ["foo.example.com"]


def test_domain_normalization():
    assert normalize_domain("  Example.COM. ") == "example.com"
    assert to_fqdn("example.com") == "example.com."
    assert to_fqdn("example.com.") == "example.com."


def test_parse_timestamp_shapes():
    assert parse_timestamp(None) is None
    assert parse_timestamp("") is None
    assert parse_timestamp("not a date") is None
    shodan = parse_timestamp("20250102030405Z")
    assert (shodan.year, shodan.month, shodan.day, shodan.hour) == (2025, 1, 2, 3)
    threatfox = parse_timestamp("2024-05-05 19:13:04 UTC")
    assert threatfox.tzinfo == timezone.utc
    assert parse_timestamp(0).year == 1970
    assert parse_timestamp("2024-01-01T00:00:00Z").tzinfo is not None
