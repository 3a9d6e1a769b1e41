"""
GuardianLink Heuristic Condition Keys

The closed vocabulary of condition keys a heuristic rule may use. Each key
has a typed predicate evaluated against a signal set:

- FLAG keys compare a boolean signal with the rule's boolean value
  (``https: false`` matches plain-HTTP URLs)
- GREATER_THAN / LESS_THAN keys compare a numeric signal with a threshold;
  a missing signal never matches
- ONE_OF keys test exact membership in a list; CONTAINS_ANY keys test
  whether any listed keyword occurs in the signal text

Unknown keys and values of the wrong type evaluate False, so they can never
cause a rule to match.
"""

from enum import Enum
from typing import Any, Dict, Mapping, NamedTuple, Optional


class ConditionKind(str, Enum):
    FLAG = "flag"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    ONE_OF = "one_of"
    CONTAINS_ANY = "contains_any"


class ConditionKey(str, Enum):
    # URL structure
    URL_USES_IP = "url_uses_ip"
    URL_LENGTH_GT = "url_length_gt"
    URL_ENCODED = "url_encoded"
    URL_KEYWORDS_ANY = "url_keywords_any"
    URL_HAS_CREDENTIALS = "url_has_credentials"
    URL_UNPARSEABLE = "url_unparseable"
    # Domain
    DOMAIN_AGE_DAYS_LT = "domain_age_days_lt"
    DOMAIN_AGE_VERY_YOUNG = "domain_age_very_young"
    TLD_IN = "tld_in"
    SUBDOMAIN_COUNT_HIGH = "subdomain_count_high"
    BRAND_MATCH = "brand_match"
    BRAND_HYPHENATED = "brand_hyphenated"
    BRAND_TYPOSQUAT = "brand_typosquat"
    # SSL/TLS
    HTTPS = "https"
    SSL_AGE_DAYS_LT = "ssl_age_days_lt"
    SSL_SELF_SIGNED = "ssl_self_signed"
    SSL_EXPIRED = "ssl_expired"
    SSL_DOMAIN_MISMATCH = "ssl_domain_mismatch"
    # Network
    ASN_ABUSE_SCORE_GT = "asn_abuse_score_gt"
    ASN_BULLETPROOF = "asn_bulletproof"
    ASN_IS_TOR = "asn_is_tor"
    ASN_IS_PROXY = "asn_is_proxy"
    ASN_IS_VPN = "asn_is_vpn"
    # Page behaviour
    LOGIN_FORM_DETECTED = "login_form_detected"
    PASSWORD_FIELD = "password_field"
    HIDDEN_INPUTS = "hidden_inputs"
    JS_REDIRECT = "js_redirect"
    META_REFRESH = "meta_refresh"
    IFRAME_DETECTED = "iframe_detected"
    OBFUSCATED_SCRIPT = "obfuscated_script"
    PHISHING_INDICATORS = "phishing_indicators"
    EXTERNAL_FORM_ACTION = "external_form_action"
    HTTP_WITH_SUSPICIOUS_CONTENT = "http_with_suspicious_content"
    # Redirects
    REDIRECT_COUNT_GT = "redirect_count_gt"
    REDIRECT_CHAIN_LONG = "redirect_chain_long"
    # Headers
    SECURITY_HEADERS_MISSING = "security_headers_missing"


class ConditionEntry(NamedTuple):
    kind: ConditionKind
    signal: str


# Condition key -> (kind, signal it reads)
CONDITION_TABLE: Dict[ConditionKey, ConditionEntry] = {
    ConditionKey.URL_USES_IP: ConditionEntry(ConditionKind.FLAG, "url_uses_ip"),
    ConditionKey.URL_LENGTH_GT: ConditionEntry(ConditionKind.GREATER_THAN, "url_length"),
    ConditionKey.URL_ENCODED: ConditionEntry(ConditionKind.FLAG, "url_encoded"),
    ConditionKey.URL_KEYWORDS_ANY: ConditionEntry(ConditionKind.CONTAINS_ANY, "host_and_path"),
    ConditionKey.URL_HAS_CREDENTIALS: ConditionEntry(ConditionKind.FLAG, "url_has_credentials"),
    ConditionKey.URL_UNPARSEABLE: ConditionEntry(ConditionKind.FLAG, "url_unparseable"),
    ConditionKey.DOMAIN_AGE_DAYS_LT: ConditionEntry(ConditionKind.LESS_THAN, "domain_age_days"),
    ConditionKey.DOMAIN_AGE_VERY_YOUNG: ConditionEntry(ConditionKind.FLAG, "domain_very_new"),
    ConditionKey.TLD_IN: ConditionEntry(ConditionKind.ONE_OF, "tld"),
    ConditionKey.SUBDOMAIN_COUNT_HIGH: ConditionEntry(ConditionKind.FLAG, "subdomain_count_high"),
    ConditionKey.BRAND_MATCH: ConditionEntry(ConditionKind.FLAG, "brand_match"),
    ConditionKey.BRAND_HYPHENATED: ConditionEntry(ConditionKind.FLAG, "brand_hyphenated"),
    ConditionKey.BRAND_TYPOSQUAT: ConditionEntry(ConditionKind.FLAG, "brand_typosquat"),
    ConditionKey.HTTPS: ConditionEntry(ConditionKind.FLAG, "https"),
    ConditionKey.SSL_AGE_DAYS_LT: ConditionEntry(ConditionKind.LESS_THAN, "ssl_days_until_expiry"),
    ConditionKey.SSL_SELF_SIGNED: ConditionEntry(ConditionKind.FLAG, "ssl_self_signed"),
    ConditionKey.SSL_EXPIRED: ConditionEntry(ConditionKind.FLAG, "ssl_expired"),
    ConditionKey.SSL_DOMAIN_MISMATCH: ConditionEntry(ConditionKind.FLAG, "ssl_domain_mismatch"),
    ConditionKey.ASN_ABUSE_SCORE_GT: ConditionEntry(ConditionKind.GREATER_THAN, "asn_abuse_score"),
    ConditionKey.ASN_BULLETPROOF: ConditionEntry(ConditionKind.FLAG, "asn_bulletproof"),
    ConditionKey.ASN_IS_TOR: ConditionEntry(ConditionKind.FLAG, "asn_is_tor"),
    ConditionKey.ASN_IS_PROXY: ConditionEntry(ConditionKind.FLAG, "asn_is_proxy"),
    ConditionKey.ASN_IS_VPN: ConditionEntry(ConditionKind.FLAG, "asn_is_vpn"),
    ConditionKey.LOGIN_FORM_DETECTED: ConditionEntry(ConditionKind.FLAG, "login_form_detected"),
    ConditionKey.PASSWORD_FIELD: ConditionEntry(ConditionKind.FLAG, "password_field"),
    ConditionKey.HIDDEN_INPUTS: ConditionEntry(ConditionKind.FLAG, "hidden_inputs"),
    ConditionKey.JS_REDIRECT: ConditionEntry(ConditionKind.FLAG, "js_redirect"),
    ConditionKey.META_REFRESH: ConditionEntry(ConditionKind.FLAG, "meta_refresh"),
    ConditionKey.IFRAME_DETECTED: ConditionEntry(ConditionKind.FLAG, "iframe_detected"),
    ConditionKey.OBFUSCATED_SCRIPT: ConditionEntry(ConditionKind.FLAG, "obfuscated_script"),
    ConditionKey.PHISHING_INDICATORS: ConditionEntry(ConditionKind.FLAG, "phishing_keywords"),
    ConditionKey.EXTERNAL_FORM_ACTION: ConditionEntry(ConditionKind.FLAG, "external_form_action"),
    ConditionKey.HTTP_WITH_SUSPICIOUS_CONTENT: ConditionEntry(
        ConditionKind.FLAG, "http_with_suspicious_content"
    ),
    ConditionKey.REDIRECT_COUNT_GT: ConditionEntry(ConditionKind.GREATER_THAN, "redirect_count"),
    ConditionKey.REDIRECT_CHAIN_LONG: ConditionEntry(ConditionKind.FLAG, "redirect_chain_long"),
    ConditionKey.SECURITY_HEADERS_MISSING: ConditionEntry(
        ConditionKind.FLAG, "security_headers_missing"
    ),
}


def parse_condition_key(key: Any) -> Optional[ConditionKey]:
    """Resolve a raw key to a ConditionKey, or None if it is not recognized."""
    try:
        return ConditionKey(key)
    except (TypeError, ValueError):
        return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_string_list(value: Any) -> bool:
    return isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value)


def check_condition_value(key: Any, value: Any) -> Optional[str]:
    """Return a problem description if a condition is unusable, else None."""
    condition_key = parse_condition_key(key)
    if condition_key is None:
        return f"unknown condition key: {key}"

    kind = CONDITION_TABLE[condition_key].kind
    if kind is ConditionKind.FLAG and not isinstance(value, bool):
        return f"invalid value for {key}: expected true or false"
    if kind in (ConditionKind.GREATER_THAN, ConditionKind.LESS_THAN) and not _is_number(value):
        return f"invalid value for {key}: expected a number"
    if kind in (ConditionKind.ONE_OF, ConditionKind.CONTAINS_ANY) and not _is_string_list(value):
        return f"invalid value for {key}: expected a list of strings"
    return None


def _signal_text(signals: Mapping[str, Any], signal: str) -> str:
    return str(signals.get(signal) or "").lower()


def evaluate_condition(key: Any, value: Any, signals: Mapping[str, Any]) -> bool:
    """Evaluate a single condition against a signal set."""
    if check_condition_value(key, value) is not None:
        return False

    entry = CONDITION_TABLE[ConditionKey(key)]

    if entry.kind is ConditionKind.FLAG:
        return bool(signals.get(entry.signal)) == value

    if entry.kind is ConditionKind.GREATER_THAN:
        actual = signals.get(entry.signal)
        return _is_number(actual) and actual > value

    if entry.kind is ConditionKind.LESS_THAN:
        actual = signals.get(entry.signal)
        return _is_number(actual) and actual < value

    text = _signal_text(signals, entry.signal)
    if entry.kind is ConditionKind.ONE_OF:
        return bool(text) and text in {v.lower() for v in value}

    # CONTAINS_ANY
    return any(v and v.lower() in text for v in value)


def rule_matches(conditions: Mapping[str, Any], signals: Mapping[str, Any]) -> bool:
    """Conjunction over all conditions. An empty condition set never matches."""
    if not conditions:
        return False
    return all(evaluate_condition(k, v, signals) for k, v in conditions.items())
