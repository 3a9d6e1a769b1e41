"""
Tests for the signal extractor.

Covers URL structure, domain and brand features, SSL/content/reputation
context handling, totality on malformed input, and the display summary.
"""

from datetime import datetime, timedelta, timezone

import pytest

pytestmark = pytest.mark.core

from guardianlink.heuristics.conditions import CONDITION_TABLE
from guardianlink.signals import (
    extract_signals,
    get_signal_summary,
    is_brand_hyphenated,
    is_brand_typosquat,
    is_ip_host,
    levenshtein,
    second_level_label,
)

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


class TestHelpers:

    def test_levenshtein(self):
        assert levenshtein("paypal", "paypal") == 0
        assert levenshtein("paypa1", "paypal") == 1
        assert levenshtein("", "abc") == 3
        assert levenshtein("kitten", "sitting") == 3

    @pytest.mark.parametrize("host", ["192.168.1.1", "[::1]", "::1", "[2001:db8::1]"])
    def test_ip_hosts(self, host):
        assert is_ip_host(host)

    @pytest.mark.parametrize("host", ["example.com", "", "1.2.3", "not:an:ip"])
    def test_non_ip_hosts(self, host):
        assert not is_ip_host(host)

    def test_second_level_label_strips_www_and_tld(self):
        assert second_level_label("www.paypa1.com") == "paypa1"
        assert second_level_label("login.paypa1.com") == "login.paypa1"
        assert second_level_label("localhost") == "localhost"

    def test_brand_hyphenated(self):
        assert is_brand_hyphenated("fake-amazon.tk")
        assert is_brand_hyphenated("paypal-secure.com")
        assert is_brand_hyphenated("amazons.com")
        assert not is_brand_hyphenated("amazon.com")

    def test_brand_typosquat(self):
        assert is_brand_typosquat("paypa1.com")
        assert is_brand_typosquat("www.gooogle.com")
        assert not is_brand_typosquat("paypal.com")
        assert not is_brand_typosquat("example.com")


class TestUrlStructure:

    def test_basic_https_url(self):
        signals = extract_signals("https://www.example.com/path?q=1", now=NOW)
        assert signals["https"] is True
        assert signals["hostname"] == "www.example.com"
        assert signals["tld"] == "com"
        assert signals["subdomain_count"] == 1
        assert signals["path_and_query"] == "/path?q=1"
        assert signals["url_unparseable"] is False

    def test_missing_scheme_is_not_https(self):
        signals = extract_signals("example.com/login", now=NOW)
        assert signals["hostname"] == "example.com"
        assert signals["https"] is False

    @pytest.mark.parametrize("url,host", [
        ("httpbin.org", "httpbin.org"),
        ("http-login.example.com/x", "http-login.example.com"),
        ("https.example.org", "https.example.org"),
    ])
    def test_host_starting_with_http_needs_no_scheme(self, url, host):
        signals = extract_signals(url, now=NOW)
        assert signals["url_unparseable"] is False
        assert signals["hostname"] == host
        assert signals["https"] is False

    def test_ip_literal_host(self):
        signals = extract_signals("http://192.168.1.5/admin", now=NOW)
        assert signals["url_uses_ip"] is True
        assert signals["tld"] == ""
        assert signals["brand_match"] is False

    def test_bracketed_ipv6_host(self):
        signals = extract_signals("http://[2001:db8::1]/", now=NOW)
        assert signals["url_uses_ip"] is True

    def test_long_encoded_url(self):
        url = "https://example.com/" + "%41" * 40
        signals = extract_signals(url, now=NOW)
        assert signals["url_length"] == len(url)
        assert signals["url_length_suspicious"] is True
        assert signals["url_encoded"] is True
        assert signals["url_encoded_ratio"] == pytest.approx(40 / len(url))

    def test_credentials_marker(self):
        signals = extract_signals("https://paypal.com@evil.tk/", now=NOW)
        assert signals["url_contains_at"] is True
        assert signals["url_has_credentials"] is True
        assert signals["hostname"] == "evil.tk"

    def test_at_sign_in_query_is_not_credentials(self):
        signals = extract_signals("https://example.com/share?to=bob@example.org", now=NOW)
        assert signals["url_contains_at"] is True
        assert signals["url_has_credentials"] is False

    def test_many_labels(self):
        signals = extract_signals("https://a.b.c.d.example.com/", now=NOW)
        assert signals["subdomain_count"] == 4
        assert signals["subdomain_count_high"] is True
        assert signals["url_contains_multiple_dots"] is True

    def test_host_and_path_is_lowercase(self):
        signals = extract_signals("https://Example.com/Verify-Account", now=NOW)
        assert signals["host_and_path"] == "example.com /verify-account"


class TestDomainSignals:

    def test_suspicious_tld(self):
        signals = extract_signals("https://fake-amazon.tk", now=NOW)
        assert signals["domain_suspicious_tld"] is True
        assert signals["brand"] == "amazon"
        assert signals["brand_hyphenated"] is True
        assert signals["brand_typosquat"] is False

    def test_domain_age_from_days(self):
        signals = extract_signals("https://x.com", {"whois": {"domainAgeDays": 3}}, now=NOW)
        assert signals["domain_age_days"] == 3
        assert signals["domain_very_new"] is True

    def test_domain_age_from_created_date(self):
        created = (NOW - timedelta(days=400)).isoformat()
        signals = extract_signals("https://x.com", {"whois": {"createdDate": created}}, now=NOW)
        assert signals["domain_age_days"] == 400
        assert signals["domain_very_new"] is False

    def test_domain_age_from_timestamp_ms(self):
        created = NOW - timedelta(days=10)
        whois = {"createdDateTimestamp": created.timestamp() * 1000}
        signals = extract_signals("https://x.com", {"whois": whois}, now=NOW)
        assert signals["domain_age_days"] == 10

    def test_domain_age_absent(self):
        signals = extract_signals("https://x.com", now=NOW)
        assert signals["domain_age_days"] is None
        assert signals["domain_very_new"] is False

    def test_whois_fields(self):
        whois = {"registrar": "NameCheap", "private": True, "createdDate": "2024-01-01"}
        signals = extract_signals("https://x.com", {"whois": whois}, now=NOW)
        assert signals["whois_registrar"] == "NameCheap"
        assert signals["whois_hidden"] is True
        assert signals["whois_registration_date"] == "2024-01-01"


class TestContextSignals:

    def test_ssl_signals(self):
        ssl = {"issuer": "Self-Signed CA", "validTo": (NOW + timedelta(days=3)).isoformat()}
        signals = extract_signals("https://x.com", {"ssl": ssl}, now=NOW)
        assert signals["ssl_issuer"] == "Self-Signed CA"
        assert signals["ssl_self_signed"] is True
        assert signals["ssl_days_until_expiry"] == 3
        assert signals["ssl_expired"] is False

    def test_ssl_expired_openssl_format(self):
        signals = extract_signals(
            "https://x.com", {"ssl": {"validTo": "Jan  1 00:00:00 2024 GMT"}}, now=NOW
        )
        assert signals["ssl_expired"] is True
        assert signals["ssl_days_until_expiry"] < 0

    def test_ssl_domain_mismatch(self):
        ssl = {"subject": "*.other.com"}
        assert extract_signals("https://a.x.com", {"ssl": ssl}, now=NOW)["ssl_domain_mismatch"]
        ssl = {"subject": "*.x.com"}
        assert not extract_signals("https://a.x.com", {"ssl": ssl}, now=NOW)["ssl_domain_mismatch"]

    def test_content_findings(self):
        content = {"findings": [
            "Login form detected",
            "Password input field present",
            "JavaScript redirect via window.location",
            "Hidden iframe",
            "External form submission to: evil.example",
        ]}
        signals = extract_signals("http://x.com", {"content": content}, now=NOW)
        assert signals["login_form_detected"] is True
        assert signals["password_field"] is True
        assert signals["js_redirect"] is True
        assert signals["iframe_detected"] is True
        assert signals["hidden_inputs"] is True
        assert signals["external_form_action"] is True
        assert signals["obfuscated_script"] is False
        assert signals["http_with_suspicious_content"] is True

    def test_https_content_is_not_http_suspicious(self):
        content = {"findings": ["Login form detected"]}
        signals = extract_signals("https://x.com", {"content": content}, now=NOW)
        assert signals["http_with_suspicious_content"] is False

    def test_redirects(self):
        redirects = {"redirectCount": 4, "chain": ["https://a", "https://b"]}
        signals = extract_signals("https://x.com", {"redirects": redirects}, now=NOW)
        assert signals["redirect_count"] == 4
        assert signals["redirect_count_excessive"] is True
        assert signals["redirect_chain_long"] is True
        assert signals["redirect_chain"] == ("https://a", "https://b")

    def test_redirect_chain_long_at_three(self):
        signals = extract_signals("https://x.com", {"redirects": {"redirectCount": 3}}, now=NOW)
        assert signals["redirect_chain_long"] is True
        assert signals["redirect_count_excessive"] is False

    def test_reputation(self):
        reputation = {
            "abuseConfidenceScore": 80, "isProxy": True, "isTor": True,
            "isBulletproof": True, "countryCode": "RU",
        }
        signals = extract_signals("https://x.com", {"reputation": reputation}, now=NOW)
        assert signals["asn_abuse_score"] == 80
        assert signals["asn_is_proxy"] is True
        assert signals["asn_is_tor"] is True
        assert signals["asn_is_vpn"] is False
        assert signals["asn_bulletproof"] is True
        assert signals["country"] == "ru"

    def test_security_headers(self):
        headers = {"strict-transport-security": True, "content-security-policy": ""}
        signals = extract_signals("https://x.com", {"security_headers": headers}, now=NOW)
        assert signals["security_headers_missing"] is True


class TestTotality:

    @pytest.mark.parametrize("url", ["", "   ", "http://[bad", "not a url", None, 12345])
    def test_never_raises(self, url):
        signals = extract_signals(url, now=NOW)
        assert "url_unparseable" in signals

    def test_unparseable_uses_raw_string_as_host(self):
        signals = extract_signals("Not A URL", now=NOW)
        assert signals["url_unparseable"] is True
        assert signals["hostname"] == "not a url"

    def test_garbage_context_is_ignored(self):
        context = {"whois": "nope", "ssl": None, "content": {"findings": "x"},
                   "reputation": {"abuseConfidenceScore": float("nan")}}
        signals = extract_signals("https://x.com", context, now=NOW)
        assert signals["asn_abuse_score"] is None
        assert signals["login_form_detected"] is False

    def test_signal_set_is_read_only(self):
        signals = extract_signals("https://x.com", now=NOW)
        with pytest.raises(TypeError):
            signals["https"] = False

    def test_every_condition_signal_is_present(self):
        signals = extract_signals("https://x.com", now=NOW)
        for entry in CONDITION_TABLE.values():
            assert entry.signal in signals


class TestDiagnostics:

    def test_risk_score_is_bounded(self):
        context = {
            "content": {"findings": ["login", "password", "phishing", "iframe", "eval("]},
            "reputation": {"isTor": True, "isProxy": True, "abuseConfidenceScore": 99},
            "redirects": {"redirectCount": 9},
        }
        signals = extract_signals("http://user:pw@10.0.0.1/" + "a" * 120, context, now=NOW)
        assert signals["_risk_score"] == 100
        assert signals["_suspicious_indicators"] > 5

    def test_clean_url_scores_zero(self):
        signals = extract_signals("https://example.com", now=NOW)
        assert signals["_risk_score"] == 0
        assert signals["_suspicious_indicators"] == 0

    def test_summary_groups(self):
        signals = extract_signals("https://fake-amazon.tk", now=NOW)
        summary = get_signal_summary(signals)
        assert set(summary["indicators"]) == {"network", "domain", "content", "security"}
        assert summary["indicators"]["domain"]["suspicious_tld"] is True
        assert summary["indicators"]["security"]["uses_https"] is True
