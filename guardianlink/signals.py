"""
GuardianLink Signal Extractor

Derives a flat feature mapping (the signal set) from a URL and the merged
context returned by evidence producers. Heuristic conditions are evaluated
over these signals only, so every feature a condition reads is present in
every signal set, possibly as None or False.

Signal groups:
- URL structure (length, encoding, IP-literal host, credentials)
- Domain characteristics (TLD, subdomains, age, brand impersonation)
- SSL/TLS indicators
- Content findings (forms, scripts, redirects)
- Network reputation (abuse score, proxy/VPN/Tor, bulletproof hosting)
- Security headers and WHOIS

Extraction is pure and total: it never raises. A malformed URL degrades to
treating the raw string as the hostname and sets ``url_unparseable``.
"""

import ipaddress
import math
import re
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlsplit


SUSPICIOUS_TLDS = frozenset({
    "tk", "ml", "ga", "cf", "gq",  # Free registrations, high abuse
    "top", "click", "download", "stream", "date", "faith", "accountant",
})

KNOWN_BRANDS = (
    "google", "microsoft", "facebook", "apple", "amazon", "paypal",
    "github", "linkedin", "icloud", "office", "spotify", "netflix",
)

LONG_URL_LENGTH = 100
MANY_DOTS = 3
HIGH_LABEL_COUNT = 4
EXCESSIVE_REDIRECTS = 3
LONG_REDIRECT_CHAIN = 3
VERY_NEW_DOMAIN_DAYS = 30

_DAY_SECONDS = 86400

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://", re.IGNORECASE)
_IPV4_RE = re.compile(r"^(?:\d{1,3}\.){3}\d{1,3}$")
_HOST_RE = re.compile(r"^[\w.\-:\[\]]+$")

# Content finding classifiers (case-insensitive)
_CONTENT_PATTERNS = {
    "login_form_detected": re.compile(r"login|sign in|sign up|authentication", re.IGNORECASE),
    "password_field": re.compile(r"password|pass field|password input", re.IGNORECASE),
    "hidden_inputs": re.compile(r'hidden|type="hidden"', re.IGNORECASE),
    "js_redirect": re.compile(
        r"javascript redirect|window\.location|document\.location|location\.href",
        re.IGNORECASE,
    ),
    "meta_refresh": re.compile(r"meta refresh|<meta.*refresh", re.IGNORECASE),
    "iframe_detected": re.compile(r"iframe", re.IGNORECASE),
    "obfuscated_script": re.compile(r"obfuscated|encoded|minified|eval\(", re.IGNORECASE),
    "phishing_keywords": re.compile(
        r"phishing|credential|steal|verify account|confirm identity", re.IGNORECASE
    ),
    "external_form_action": re.compile(r"External form submission to:", re.IGNORECASE),
}

# Signals counted by the diagnostic indicator tally
SUSPICIOUS_INDICATOR_KEYS = (
    "url_uses_ip",
    "url_length_suspicious",
    "url_contains_at",
    "url_has_credentials",
    "domain_very_new",
    "subdomain_count_high",
    "domain_suspicious_tld",
    "ssl_self_signed",
    "ssl_expired",
    "login_form_detected",
    "password_field",
    "js_redirect",
    "meta_refresh",
    "iframe_detected",
    "obfuscated_script",
    "phishing_keywords",
    "redirect_count_excessive",
    "asn_is_proxy",
    "asn_is_vpn",
    "asn_is_tor",
    "security_headers_missing",
    "whois_hidden",
)


def levenshtein(a: str, b: str) -> int:
    """Edit distance between two strings."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def is_suspicious_tld(tld: Optional[str]) -> bool:
    if not tld:
        return False
    return tld.lower() in SUSPICIOUS_TLDS


def is_ip_host(hostname: str) -> bool:
    """True for a dotted-quad IPv4 host or an IPv6 literal (bracketed or bare)."""
    if not hostname:
        return False
    if _IPV4_RE.match(hostname):
        return True
    candidate = hostname[1:-1] if hostname.startswith("[") and hostname.endswith("]") else hostname
    if ":" not in candidate:
        return False
    try:
        return isinstance(ipaddress.ip_address(candidate), ipaddress.IPv6Address)
    except ValueError:
        return False


def second_level_label(hostname: str) -> str:
    """Host with its TLD (and a leading www.) removed."""
    host = hostname.lower()
    if host.startswith("www."):
        host = host[4:]
    labels = host.split(".")
    return ".".join(labels[:-1]) or labels[0]


def find_brand(hostname: str) -> Optional[str]:
    """Return the first known brand mentioned anywhere in the host."""
    host = hostname.lower()
    for brand in KNOWN_BRANDS:
        if brand in host:
            return brand
    return None


def is_brand_hyphenated(hostname: str) -> bool:
    host = hostname.lower()
    sld = second_level_label(host)
    for brand in KNOWN_BRANDS:
        if f"{brand}-" in host or f"-{brand}" in host or sld.endswith(f"{brand}s"):
            return True
    return False


def is_brand_typosquat(hostname: str) -> bool:
    """Host (minus TLD) is exactly one edit away from a known brand."""
    sld = second_level_label(hostname)
    for brand in KNOWN_BRANDS:
        if sld != brand and levenshtein(sld, brand) <= 1:
            return True
    return False


def _section(context: Mapping[str, Any], key: str) -> Dict[str, Any]:
    value = context.get(key)
    return value if isinstance(value, Mapping) else {}


def _findings(section: Mapping[str, Any]) -> List[str]:
    findings = section.get("findings")
    if not isinstance(findings, (list, tuple)):
        return []
    return [str(f) for f in findings if f is not None]


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 or OpenSSL-style date; naive values are UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        parsed = None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            for fmt in ("%b %d %H:%M:%S %Y %Z", "%Y-%m-%d"):
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
        if parsed is None:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _domain_age_days(whois: Mapping[str, Any], now: datetime) -> Optional[int]:
    age = _number(whois.get("domainAgeDays"))
    if age is not None:
        return int(age)

    created = _parse_datetime(whois.get("createdDate"))
    if created is None:
        timestamp_ms = _number(whois.get("createdDateTimestamp"))
        if timestamp_ms is not None:
            try:
                created = datetime.fromtimestamp(timestamp_ms / 1000.0, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                created = None
    if created is None:
        return None
    return int((now - created).total_seconds() // _DAY_SECONDS)


def _host_matches(pattern: str, hostname: str) -> bool:
    pattern = pattern.lower().strip()
    if pattern.startswith("*."):
        suffix = pattern[1:]
        return hostname.endswith(suffix) and hostname.count(".") == pattern.count(".")
    return pattern == hostname


def _parse_url(url: str) -> Tuple[str, str, str, bool, bool]:
    """Split into (scheme, hostname, path_and_query, has_credentials, unparseable).

    Input without a scheme is read as ``https://``; the returned scheme is
    empty in that case.
    """
    candidate = url.strip()
    explicit = bool(_SCHEME_RE.match(candidate))
    if not explicit:
        candidate = f"https://{candidate}"
    try:
        parts = urlsplit(candidate)
        hostname = (parts.hostname or "").lower()
        has_credentials = parts.username is not None
        if parts.netloc and "[" in parts.netloc:
            # urlsplit drops the brackets from IPv6 literals
            hostname = f"[{hostname}]"
    except ValueError:
        return "", url.strip().lower(), "", False, True

    if not hostname or not _HOST_RE.match(hostname):
        return "", url.strip().lower(), "", False, True

    path_and_query = parts.path or ""
    if parts.query:
        path_and_query = f"{path_and_query}?{parts.query}"
    scheme = parts.scheme.lower() if explicit else ""
    return scheme, hostname, path_and_query, has_credentials, False


def extract_signals(
    url: Any,
    context: Optional[Mapping[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Mapping[str, Any]:
    """
    Extract the signal set for a URL.

    Args:
        url: The URL as submitted (scheme optional).
        context: Merged producer context keyed by ``whois``, ``ssl``,
            ``content``, ``reputation``, ``redirects`` and ``security_headers``.
        now: Reference time for age calculations (defaults to UTC now).

    Returns:
        A read-only mapping of feature name to value.
    """
    url = "" if url is None else str(url)
    context = context if isinstance(context, Mapping) else {}
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    scheme, hostname, path_and_query, has_credentials, unparseable = _parse_url(url)
    uses_ip = not unparseable and is_ip_host(hostname)

    labels = hostname.split(".") if hostname else []
    tld = "" if (unparseable or uses_ip or not labels) else labels[-1]
    check_brands = not unparseable and not uses_ip

    whois = _section(context, "whois")
    ssl = _section(context, "ssl")
    content = _section(context, "content")
    reputation = _section(context, "reputation")
    redirects = _section(context, "redirects")
    headers = _section(context, "security_headers")

    findings = _findings(content)
    content_flags = {
        key: any(pattern.search(f) for f in findings)
        for key, pattern in _CONTENT_PATTERNS.items()
    }

    domain_age_days = _domain_age_days(whois, now)

    ssl_issuer = str(ssl.get("issuer") or "")
    ssl_expiry = _parse_datetime(ssl.get("validTo") or ssl.get("expiryDate"))
    ssl_days_until_expiry = None
    if ssl_expiry is not None:
        ssl_days_until_expiry = int((ssl_expiry - now).total_seconds() // _DAY_SECONDS)
    ssl_subject = ssl.get("subject") or ssl.get("commonName")
    ssl_domain_mismatch = bool(
        isinstance(ssl_subject, str)
        and ssl_subject
        and not unparseable
        and not _host_matches(ssl_subject, hostname)
    )

    redirect_count = _number(redirects.get("redirectCount"))
    redirect_count = int(redirect_count) if redirect_count is not None else 0
    chain = redirects.get("chain")
    redirect_chain = [str(c) for c in chain] if isinstance(chain, (list, tuple)) else []

    abuse_score = _number(reputation.get("abuseConfidenceScore"))
    country = reputation.get("countryCode")

    is_https = scheme == "https"

    signals: Dict[str, Any] = {
        # URL structure
        "url_length": len(url),
        "url_length_suspicious": len(url) > LONG_URL_LENGTH,
        "url_encoded": "%" in url,
        "url_encoded_ratio": (url.count("%") / len(url)) if url else 0.0,
        "url_contains_at": "@" in url,
        "url_dot_count": url.count("."),
        "url_contains_multiple_dots": url.count(".") > MANY_DOTS,
        "url_uses_ip": uses_ip,
        "url_has_credentials": has_credentials,
        "url_unparseable": unparseable,
        "path_and_query": path_and_query,
        "host_and_path": f"{hostname} {path_and_query}".lower(),
        # Domain
        "hostname": hostname,
        "hostname_length": len(hostname),
        "tld": tld,
        "subdomain_count": max(0, len(labels) - 2) if not (unparseable or uses_ip) else 0,
        "subdomain_count_high": len(labels) > HIGH_LABEL_COUNT if not (unparseable or uses_ip) else False,
        "domain_age_days": domain_age_days,
        "domain_very_new": domain_age_days is not None and domain_age_days < VERY_NEW_DOMAIN_DAYS,
        "domain_suspicious_tld": is_suspicious_tld(tld),
        "brand": find_brand(hostname) if check_brands else None,
        "brand_match": bool(check_brands and find_brand(hostname)),
        "brand_hyphenated": bool(check_brands and is_brand_hyphenated(hostname)),
        "brand_typosquat": bool(check_brands and is_brand_typosquat(hostname)),
        # SSL/TLS
        "https": is_https,
        "ssl_issuer": ssl_issuer,
        "ssl_self_signed": "self" in ssl_issuer.lower(),
        "ssl_expired": ssl_days_until_expiry is not None and ssl_expiry < now,
        "ssl_days_until_expiry": ssl_days_until_expiry,
        "ssl_domain_mismatch": ssl_domain_mismatch,
        # Content
        **content_flags,
        "http_with_suspicious_content": (not is_https) and bool(findings),
        # Redirects
        "redirect_count": redirect_count,
        "redirect_count_excessive": redirect_count > EXCESSIVE_REDIRECTS,
        "redirect_chain_long": redirect_count >= LONG_REDIRECT_CHAIN,
        "redirect_chain": tuple(redirect_chain),
        # Network
        "asn_abuse_score": abuse_score,
        "asn_is_proxy": bool(reputation.get("isProxy", False)),
        "asn_is_vpn": bool(reputation.get("isVPN", False)),
        "asn_is_tor": bool(reputation.get("isTor", False)),
        "asn_is_datacenter": bool(reputation.get("isDatacenter", False)),
        "asn_bulletproof": bool(reputation.get("isBulletproof", False)),
        "country": country.lower() if isinstance(country, str) and country else None,
        # Headers
        "security_headers_missing": any(not v for v in headers.values()) if headers else False,
        "csp_header": headers.get("content-security-policy"),
        # WHOIS
        "whois_registration_date": whois.get("createdDate") or None,
        "whois_registrar": whois.get("registrar") or None,
        "whois_hidden": bool(whois.get("private", False)),
    }

    signals["_risk_score"] = calculate_risk_score(signals)
    signals["_suspicious_indicators"] = count_suspicious_indicators(signals)

    return MappingProxyType(signals)


def calculate_risk_score(signals: Mapping[str, Any]) -> int:
    """Composite 0-100 risk score. Diagnostic only."""
    score = 0

    # URL structure
    if signals.get("url_uses_ip"):
        score += 15
    if signals.get("url_length_suspicious"):
        score += 5
    if signals.get("url_encoded"):
        score += 3
    if signals.get("url_contains_at"):
        score += 10
    if signals.get("url_has_credentials"):
        score += 20

    # Domain
    if signals.get("domain_very_new"):
        score += 10
    if signals.get("subdomain_count_high"):
        score += 5
    if signals.get("domain_suspicious_tld"):
        score += 10

    # SSL
    if not signals.get("https") and signals.get("login_form_detected"):
        score += 15
    if signals.get("ssl_self_signed"):
        score += 10
    if signals.get("ssl_expired"):
        score += 10

    # Content
    if signals.get("login_form_detected") and signals.get("password_field"):
        score += 10
    if signals.get("js_redirect"):
        score += 8
    if signals.get("meta_refresh"):
        score += 5
    if signals.get("iframe_detected"):
        score += 8
    if signals.get("obfuscated_script"):
        score += 10
    if signals.get("phishing_keywords"):
        score += 15

    # Redirects
    if signals.get("redirect_count_excessive"):
        score += 10

    # Network
    if signals.get("asn_is_proxy"):
        score += 5
    if signals.get("asn_is_vpn"):
        score += 5
    if signals.get("asn_is_tor"):
        score += 20
    if signals.get("asn_is_datacenter") and signals.get("url_uses_ip"):
        score += 5
    abuse = signals.get("asn_abuse_score")
    if abuse is not None and abuse > 50:
        score += 10

    if signals.get("security_headers_missing"):
        score += 3

    return min(100, score)


def count_suspicious_indicators(signals: Mapping[str, Any]) -> int:
    return sum(1 for key in SUSPICIOUS_INDICATOR_KEYS if signals.get(key) is True)


def get_signal_summary(signals: Mapping[str, Any]) -> Dict[str, Any]:
    """Group a signal set for display."""
    return {
        "risk_score": signals.get("_risk_score"),
        "suspicious_indicator_count": signals.get("_suspicious_indicators"),
        "indicators": {
            "network": {
                "uses_ip": signals.get("url_uses_ip"),
                "abuse_score": signals.get("asn_abuse_score"),
                "is_proxy": signals.get("asn_is_proxy"),
                "is_tor": signals.get("asn_is_tor"),
                "country": signals.get("country"),
            },
            "domain": {
                "age": signals.get("domain_age_days"),
                "is_new": signals.get("domain_very_new"),
                "suspicious_tld": signals.get("domain_suspicious_tld"),
                "brand": signals.get("brand"),
            },
            "content": {
                "has_login_form": signals.get("login_form_detected"),
                "has_password_field": signals.get("password_field"),
                "has_redirect": bool(signals.get("js_redirect") or signals.get("meta_refresh")),
                "has_iframe": signals.get("iframe_detected"),
                "phishing_indicators": signals.get("phishing_keywords"),
            },
            "security": {
                "uses_https": signals.get("https"),
                "has_ssl_issues": bool(signals.get("ssl_self_signed") or signals.get("ssl_expired")),
                "missing_security_headers": signals.get("security_headers_missing"),
            },
        },
    }
