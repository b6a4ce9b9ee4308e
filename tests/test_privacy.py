from __future__ import annotations

from scaplog import privacy
from scaplog.models import BrowserProfile, PrivacyVerdict, RuleSet
from scaplog.privacy import BrowserType


def _rules(**kwargs) -> RuleSet:
    return RuleSet(**kwargs)


def test_exclude_keyword_is_case_insensitive() -> None:
    rules = _rules(exclude_keywords=("bank",))
    assert privacy.evaluate("My BANK - Chrome", "com.google.chrome", rules) is PrivacyVerdict.EXCLUDE


def test_mask_keyword_masks_login_pages() -> None:
    rules = _rules(mask_keywords=("login",))
    assert privacy.evaluate("Login - Example", None, rules) is PrivacyVerdict.MASK


def test_empty_title_is_allowed() -> None:
    rules = _rules(exclude_keywords=("bank",), mask_keywords=("login",))
    assert privacy.evaluate("", None, rules) is PrivacyVerdict.ALLOW
    assert privacy.evaluate(None, None, rules) is PrivacyVerdict.ALLOW


def test_exclude_dominates_mask() -> None:
    rules = _rules(exclude_keywords=("secret",), mask_keywords=("login",))
    decision = privacy.explain("Secret login portal", None, rules)
    assert decision.verdict is PrivacyVerdict.EXCLUDE
    assert decision.matched == "keyword:secret"


def test_evaluate_is_deterministic() -> None:
    rules = _rules(mask_keywords=("password",))
    results = {privacy.evaluate("Change password", "firefox", rules) for _ in range(5)}
    assert results == {PrivacyVerdict.MASK}


def test_excluded_profile_matches_only_its_browser() -> None:
    work_chrome = BrowserProfile(BrowserType.CHROME, "Profile 1", "Work")
    work_edge = BrowserProfile(BrowserType.EDGE, "Default", "Work")
    rules = _rules(
        excluded_profiles=frozenset({work_chrome.key}),
        known_profiles=(work_chrome, work_edge),
    )
    assert privacy.evaluate("Inbox - Work - Google Chrome", "com.google.chrome", rules) is PrivacyVerdict.EXCLUDE
    assert privacy.evaluate("Inbox - Work - Microsoft Edge", "msedge.exe", rules) is PrivacyVerdict.ALLOW


def test_excluded_profile_applies_when_browser_unknown() -> None:
    personal = BrowserProfile(BrowserType.FIREFOX, "abc.default", "Personal")
    rules = _rules(excluded_profiles=frozenset({personal.key}), known_profiles=(personal,))
    decision = privacy.explain("personal mail", None, rules)
    assert decision.verdict is PrivacyVerdict.EXCLUDE
    assert decision.matched == "profile:firefox:abc.default"


def test_unknown_profile_key_never_matches() -> None:
    rules = _rules(excluded_profiles=frozenset({"chrome:Profile 9", "nonsense"}))
    assert privacy.evaluate("Profile 9", "chrome.exe", rules) is PrivacyVerdict.ALLOW


def test_parse_profile_key_keeps_colons_in_id() -> None:
    assert privacy.parse_profile_key("arc:space:1") == (BrowserType.ARC, "space:1")
    assert privacy.parse_profile_key("safari:x") is None
    assert privacy.parse_profile_key("chrome") is None


def test_private_browsing_detection() -> None:
    assert privacy.is_private_browsing("com.google.chrome", "New Tab - Incognito")
    assert privacy.is_private_browsing("msedge.exe", "Bing - [InPrivate]")
    assert privacy.is_private_browsing("firefox", "Mozilla Firefox Private Browsing")
    assert privacy.is_private_browsing("com.apple.Safari", "Private Browsing")
    assert not privacy.is_private_browsing("code.exe", "incognito.py - Visual Studio Code")
    assert not privacy.is_private_browsing(None, "Incognito")


def test_browsers_with_excluded_profiles() -> None:
    rules = _rules(excluded_profiles=frozenset({"chrome:Default", "brave:Profile 2", "bogus:1"}))
    assert privacy.browsers_with_excluded_profiles(rules) == {BrowserType.CHROME, BrowserType.BRAVE}


def test_bank_statement_is_excluded() -> None:
    rules = _rules(exclude_keywords=("Bank",))
    assert privacy.evaluate("MyBank - Statement", None, rules) is PrivacyVerdict.EXCLUDE


def test_no_rules_allows_everything() -> None:
    assert privacy.evaluate("Notes - Draft", None, _rules()) is PrivacyVerdict.ALLOW


def test_password_manager_title_is_masked() -> None:
    rules = _rules(mask_keywords=("password",))
    assert privacy.evaluate("1Password — Vault", None, rules) is PrivacyVerdict.MASK
