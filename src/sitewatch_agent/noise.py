"""Noise suppression applied to raw pages before fingerprinting.

Each rule is a regex substitution. Rules run in order, so markup removal
comes before the text-level rules that would otherwise see script bodies.
"""

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class NoiseRule:
    """Strip (or replace) every match of a pattern."""

    name: str
    pattern: re.Pattern
    replacement: str = ""

    def apply(self, text: str) -> str:
        return self.pattern.sub(self.replacement, text)


DEFAULT_NOISE_RULES: tuple[NoiseRule, ...] = (
    NoiseRule("script", re.compile(r"<script\b.*?</script\s*>", re.IGNORECASE | re.DOTALL)),
    NoiseRule("style", re.compile(r"<style\b.*?</style\s*>", re.IGNORECASE | re.DOTALL)),
    NoiseRule("comment", re.compile(r"<!--.*?-->", re.DOTALL)),
    NoiseRule("time-element", re.compile(r"<time\b[^>]*>.*?</time\s*>", re.IGNORECASE | re.DOTALL)),
    NoiseRule("clock", re.compile(r"\b\d{1,2}:\d{2}(?::\d{2})?\s*(?:am|pm)?\b", re.IGNORECASE)),
    NoiseRule("relative-day", re.compile(r"\b(?:today|yesterday|tomorrow)\b", re.IGNORECASE)),
    NoiseRule("whitespace", re.compile(r"\s+"), " "),
)


def strip_noise(text: str, rules: tuple[NoiseRule, ...] | list[NoiseRule] = DEFAULT_NOISE_RULES) -> str:
    """Run `text` through every rule in order and trim the result."""
    for rule in rules:
        text = rule.apply(text)
    return text.strip()
