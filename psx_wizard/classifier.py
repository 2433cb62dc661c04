"""Title/serial based content classification (mainline, cheat, educational, demo)."""

from __future__ import annotations

import re
from dataclasses import dataclass

from .models import ContentType

# Lightspan discs use their own ID family (LSP-xxxxx) instead of the
# four-letter retail prefixes; the serial alone is enough to classify.
LIGHTSPAN_SERIAL_RE = re.compile(r"^LSP[-_ ]?\d+", re.IGNORECASE)


@dataclass(frozen=True)
class ContentRule:
    """A vocabulary for one content type.

    ``keywords`` match as case-insensitive substrings, ``patterns`` as
    regular expressions searched anywhere in the title.
    """

    content_type: ContentType
    keywords: tuple[str, ...] = ()
    patterns: tuple[re.Pattern[str], ...] = ()

    def matches(self, title: str) -> bool:
        lowered = title.lower()
        if any(k in lowered for k in self.keywords):
            return True
        return any(p.search(title) for p in self.patterns)


CHEAT_RULE = ContentRule(
    ContentType.CHEAT,
    keywords=(
        "gameshark",
        "game shark",
        "xploder",
        "x-ploder",
        "action replay",
        "codebreaker",
        "code breaker",
        "cheat",
    ),
)

EDUCATIONAL_RULE = ContentRule(
    ContentType.EDUCATIONAL,
    keywords=("lightspan", "adventures in learning", "click start", "leapfrog"),
    patterns=(
        re.compile(r"\bscience is elementary\b", re.IGNORECASE),
        re.compile(r"\bsecret of googol\b", re.IGNORECASE),
        re.compile(r"\bmath studio\b", re.IGNORECASE),
        re.compile(r"\bp\.\s?k\.'s\b", re.IGNORECASE),
    ),
)

# Word boundaries keep titles like "Demolition Racer" out.
DEMO_RULE = ContentRule(
    ContentType.DEMO,
    patterns=(re.compile(r"\b(?:demo|preview|sampler|kiosk)\b", re.IGNORECASE),),
)

# Order matters: the first matching rule wins.
DEFAULT_RULES: tuple[ContentRule, ...] = (CHEAT_RULE, EDUCATIONAL_RULE, DEMO_RULE)


def is_lightspan_serial(serial: str | None) -> bool:
    return bool(serial and LIGHTSPAN_SERIAL_RE.match(serial))


def classify_content(
    title: str,
    serial: str | None = None,
    rules: tuple[ContentRule, ...] = DEFAULT_RULES,
) -> ContentType:
    """Classify a disc by its title and (optional) serial.

    A Lightspan serial always means educational content, regardless of the
    title. Otherwise the rules are tried in order and the first hit wins;
    anything unmatched is mainline.
    """
    if is_lightspan_serial(serial):
        return ContentType.EDUCATIONAL
    for rule in rules:
        if rule.matches(title):
            return rule.content_type
    return ContentType.MAINLINE
