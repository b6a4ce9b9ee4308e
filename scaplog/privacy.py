"""Rule-based privacy decisions for window titles and applications."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Tuple

from .models import BrowserProfile, PrivacyVerdict, RuleSet

logger = logging.getLogger(__name__)

MASKED_SUMMARY = "[Private] - this capture was masked by privacy settings"


class BrowserType(Enum):
    CHROME = "chrome"
    BRAVE = "brave"
    EDGE = "edge"
    FIREFOX = "firefox"
    ARC = "arc"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def identifiers(self) -> frozenset[str]:
        """Application identifiers the browser is known by, lower-cased."""

        return _IDENTIFIERS[self]

    @classmethod
    def from_identifier(cls, identifier: Optional[str]) -> Optional["BrowserType"]:
        if not identifier:
            return None
        needle = identifier.strip().lower()
        for browser in cls:
            if needle in browser.identifiers:
                return browser
        return None


_DISPLAY_NAMES = {
    BrowserType.CHROME: "Google Chrome",
    BrowserType.BRAVE: "Brave",
    BrowserType.EDGE: "Microsoft Edge",
    BrowserType.FIREFOX: "Firefox",
    BrowserType.ARC: "Arc",
}

# macOS bundle ids, Windows executables and Linux process names.
_IDENTIFIERS = {
    BrowserType.CHROME: frozenset({"com.google.chrome", "chrome.exe", "chrome", "google-chrome"}),
    BrowserType.BRAVE: frozenset({"com.brave.browser", "brave.exe", "brave", "brave-browser"}),
    BrowserType.EDGE: frozenset({"com.microsoft.edgemac", "msedge.exe", "msedge", "microsoft-edge"}),
    BrowserType.FIREFOX: frozenset({"org.mozilla.firefox", "firefox.exe", "firefox"}),
    BrowserType.ARC: frozenset({"company.thebrowser.browser", "arc.exe", "arc"}),
}

_SAFARI_IDENTIFIERS = frozenset({"com.apple.safari", "safari"})


@dataclass(slots=True)
class PrivacyDecision:
    verdict: PrivacyVerdict
    matched: str = ""


def parse_profile_key(key: str) -> Optional[Tuple[BrowserType, str]]:
    """Split ``"<source>:<profileId>"``; the profile id may contain colons."""

    source, sep, profile_id = key.partition(":")
    if not sep or not profile_id:
        return None
    try:
        return BrowserType(source), profile_id
    except ValueError:
        return None


def _find_keyword(title: str, keywords: Iterable[str]) -> Optional[str]:
    folded = title.casefold()
    for keyword in keywords:
        if keyword and keyword.casefold() in folded:
            return keyword
    return None


def match_excluded_profile(
    title: str, application_identity: Optional[str], rules: RuleSet
) -> Optional[BrowserProfile]:
    """Return the excluded profile whose display name appears in ``title``."""

    if not rules.excluded_profiles:
        return None
    browser = BrowserType.from_identifier(application_identity)
    folded = title.casefold()
    for key in sorted(rules.excluded_profiles):
        parsed = parse_profile_key(key)
        if parsed is None:
            continue
        # Identical profile names across browsers must not cross-match.
        if browser is not None and parsed[0] is not browser:
            continue
        profile = rules.profile(key)
        if profile is None or not profile.name:
            continue
        if profile.name.casefold() in folded:
            return profile
    return None


def explain(
    window_title: Optional[str], application_identity: Optional[str], rules: RuleSet
) -> PrivacyDecision:
    """Evaluate the rules and report which keyword or profile decided."""

    if not window_title:
        return PrivacyDecision(PrivacyVerdict.ALLOW)
    keyword = _find_keyword(window_title, rules.exclude_keywords)
    if keyword is not None:
        return PrivacyDecision(PrivacyVerdict.EXCLUDE, f"keyword:{keyword}")
    profile = match_excluded_profile(window_title, application_identity, rules)
    if profile is not None:
        return PrivacyDecision(PrivacyVerdict.EXCLUDE, f"profile:{profile.key}")
    keyword = _find_keyword(window_title, rules.mask_keywords)
    if keyword is not None:
        return PrivacyDecision(PrivacyVerdict.MASK, f"keyword:{keyword}")
    return PrivacyDecision(PrivacyVerdict.ALLOW)


def evaluate(
    window_title: Optional[str], application_identity: Optional[str], rules: RuleSet
) -> PrivacyVerdict:
    return explain(window_title, application_identity, rules).verdict


def is_private_browsing(application_identifier: Optional[str], window_title: Optional[str]) -> bool:
    """Best-effort detection of private/incognito browser windows."""

    if not application_identifier or not window_title:
        return False
    identifier = application_identifier.strip().lower()
    lowered = window_title.lower()
    if identifier in _SAFARI_IDENTIFIERS:
        return "private" in lowered or "プライベート" in window_title
    browser = BrowserType.from_identifier(identifier)
    if browser in (BrowserType.CHROME, BrowserType.BRAVE, BrowserType.EDGE):
        return "incognito" in lowered or "inprivate" in lowered or "シークレット" in window_title
    if browser is BrowserType.FIREFOX:
        return "private browsing" in lowered or "プライベートブラウジング" in window_title
    if browser is BrowserType.ARC:
        return "private" in lowered or "プライベート" in window_title
    return False


def browsers_with_excluded_profiles(rules: RuleSet) -> set[BrowserType]:
    browsers: set[BrowserType] = set()
    for key in rules.excluded_profiles:
        parsed = parse_profile_key(key)
        if parsed is not None:
            browsers.add(parsed[0])
    return browsers
