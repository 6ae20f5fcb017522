"""Unit tests for qrlens/url_scanner.py: URL parsing and the ordered risk rules."""

from __future__ import annotations

import idna
import pytest

from qrlens.url_scanner import RiskLevel, analyze_url, evaluate, parse_url

IP_WARNING = "Uses IP address instead of domain name"
SHORTENER_WARNING = "Shortened URL - destination unknown"
SENSITIVE_HTTP_WARNING = "Insecure connection (HTTP) for sensitive page"
HTTP_WARNING = "Uses HTTP instead of HTTPS"
HOMOGRAPH_WARNING = "Contains non-Latin characters (possible homograph attack)"
PATH_WARNING = "Contains suspicious keywords in URL path"


class TestReferenceCases:
    def test_ip_literal_with_login_is_high(self) -> None:
        result = analyze_url("http://192.168.0.1/login")
        assert result.is_url is True
        assert result.risk_level is RiskLevel.HIGH
        assert list(result.warnings) == [IP_WARNING, SENSITIVE_HTTP_WARNING]

    def test_shortener_only(self) -> None:
        result = analyze_url("https://bit.ly/abc123")
        assert result.risk_level is RiskLevel.MEDIUM
        assert list(result.warnings) == [SHORTENER_WARNING]

    def test_not_a_url(self) -> None:
        result = analyze_url("not a url at all")
        assert result.as_dict() == {
            "warnings": [],
            "risk_level": "low",
            "is_url": False,
            "summary": "No obvious security issues detected.",
        }


class TestRules:
    def test_clean_https_url_is_low(self) -> None:
        result = analyze_url("https://example.com/menu")
        assert result.is_url
        assert result.warnings == ()
        assert result.risk_level is RiskLevel.LOW

    def test_plain_http_lifts_low_to_medium(self) -> None:
        result = analyze_url("http://example.com")
        assert list(result.warnings) == [HTTP_WARNING]
        assert result.risk_level is RiskLevel.MEDIUM

    def test_plain_http_never_lowers_high(self) -> None:
        result = analyze_url("http://1.2.3.4/")
        assert list(result.warnings) == [IP_WARNING, HTTP_WARNING]
        assert result.risk_level is RiskLevel.HIGH

    def test_shortener_subdomain_matches(self) -> None:
        result = analyze_url("https://go.bit.ly/x")
        assert SHORTENER_WARNING in result.warnings

    def test_lookalike_shortener_host_does_not_match(self) -> None:
        result = analyze_url("https://notbit.ly/x")
        assert SHORTENER_WARNING not in result.warnings

    def test_suspicious_tld_and_urgency_path(self) -> None:
        result = analyze_url("https://paypal.example.xyz/verify")
        assert list(result.warnings) == ["Suspicious domain extension", PATH_WARNING]
        assert result.risk_level is RiskLevel.MEDIUM

    def test_subdomain_depth(self) -> None:
        assert "Unusually many subdomains" in analyze_url("https://a.b.c.d.example.com/").warnings
        assert "Unusually many subdomains" not in analyze_url("https://a.b.example.com/").warnings

    def test_at_sign_is_high(self) -> None:
        result = analyze_url("https://trusted.com@evil.example/")
        assert "Contains @ symbol (may hide real destination)" in result.warnings
        assert result.risk_level is RiskLevel.HIGH

    def test_mailto_at_sign_is_exempt(self) -> None:
        result = analyze_url("mailto:someone@example.com")
        assert result.is_url
        assert result.warnings == ()
        assert result.risk_level is RiskLevel.LOW

    @pytest.mark.parametrize("url", ["javascript:alert(1)", "data:text/html,<b>hi</b>"])
    def test_dangerous_schemes(self, url: str) -> None:
        result = analyze_url(url)
        assert result.is_url
        assert "Potentially dangerous protocol" in result.warnings
        assert result.risk_level is RiskLevel.HIGH

    def test_sensitive_keyword_anywhere_in_http_url(self) -> None:
        result = analyze_url("http://bank.example.com/")
        assert list(result.warnings) == [SENSITIVE_HTTP_WARNING]
        assert result.risk_level is RiskLevel.HIGH

    def test_cyrillic_host(self) -> None:
        result = analyze_url("https://аpple.com/")
        assert HOMOGRAPH_WARNING in result.warnings
        assert result.risk_level is RiskLevel.HIGH

    def test_punycode_host_is_decoded_before_matching(self) -> None:
        host = idna.encode("аpple.com").decode("ascii")
        assert host.startswith("xn--")
        result = analyze_url(f"https://{host}/")
        assert HOMOGRAPH_WARNING in result.warnings


class TestOrderingAndMonotonicity:
    def test_warnings_follow_rule_order(self) -> None:
        result = analyze_url("http://1.2.3.4/login/verify")
        assert list(result.warnings) == [IP_WARNING, SENSITIVE_HTTP_WARNING, PATH_WARNING]

    @pytest.mark.parametrize(
        "url",
        [
            "http://1.2.3.4/login/verify",
            "http://a.b.c.d.bit.ly/update",
            "https://user@x.top/secure",
            "http://example.click/",
        ],
    )
    def test_level_never_decreases(self, url: str) -> None:
        levels = [level for _, _, level in evaluate(parse_url(url))]
        assert levels == sorted(levels)
        assert analyze_url(url).risk_level == (levels[-1] if levels else RiskLevel.LOW)

    def test_deterministic(self) -> None:
        url = "http://a.b.c.d.bit.ly/update"
        assert analyze_url(url) == analyze_url(url)

    def test_summary_joins_warnings(self) -> None:
        assert analyze_url("https://bit.ly/abc").summary() == SHORTENER_WARNING + "."


class TestParseUrl:
    @pytest.mark.parametrize("text", ["", "   ", "example.com", "http://", "http://999.1.1.1/", "http://a b.com/"])
    def test_rejects(self, text: str) -> None:
        assert parse_url(text) is None

    def test_normalizes_host_and_path(self) -> None:
        parsed = parse_url("  HTTPS://Example.COM/Path?q=1 ")
        assert parsed.scheme == "https"
        assert parsed.host == "example.com"
        assert parsed.path == "/path"

    def test_malformed_port(self) -> None:
        assert parse_url("http://example.com:99999/") is None
