"""
Regex clean-up for track / artist / album names.

- Rules are applied in order over the whole string; each match is replaced
  (with "" unless the rule carries its own replacement).
- A rule that does not compile is skipped with a warning, the rest still apply.
"""

from __future__ import annotations
import logging
import re
from dataclasses import replace
from typing import Iterable, List, Pattern, Sequence, Tuple, Union

from nowscrobble.models import Sample

log = logging.getLogger("cleanup")

Rule = Union[str, Sequence[str]]

DEFAULT_PATTERNS: List[str] = [
    r"\s*\[Explicit\]",
    r"\s*\[Clean\]",
    r"\s*\(Explicit\)",
    r"\s*\(Clean\)",
    r"\s*- Explicit",
    r"\s*- Clean",
]


def compile_rules(rules: Iterable[Rule]) -> List[Tuple[Pattern[str], str]]:
    compiled = []
    for rule in rules:
        if isinstance(rule, str):
            pattern, replacement = rule, ""
        else:
            try:
                pattern, replacement = rule
            except (TypeError, ValueError):
                log.warning("Skipping malformed cleanup rule %r", rule)
                continue
        try:
            compiled.append((re.compile(pattern), replacement))
        except (re.error, TypeError) as e:
            log.warning("Invalid regex pattern %r: %s", pattern, e)
    return compiled


class TextCleaner:
    def __init__(self, patterns: Iterable[Rule] = DEFAULT_PATTERNS, enabled: bool = True):
        self.enabled = enabled
        self.rules = compile_rules(patterns) if enabled else []

    def clean(self, text: str) -> str:
        if not self.enabled:
            return text
        for pattern, replacement in self.rules:
            try:
                text = pattern.sub(replacement, text)
            except re.error as e:
                # bad group reference in the replacement; only shows up on a match
                log.warning("Cleanup rule %r failed: %s", pattern.pattern, e)
        return text.strip()

    def clean_option(self, text: str | None) -> str | None:
        return None if text is None else self.clean(text)

    def normalize(self, sample: Sample) -> Sample:
        return replace(
            sample,
            title=self.clean_option(sample.title),
            artist=self.clean_option(sample.artist),
            album=self.clean_option(sample.album),
        )
