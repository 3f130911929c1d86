"""Change fingerprints and human-readable deltas.

Two comparison strategies:

* hash fingerprint: SHA-256 of the noise-stripped page, used when a single
  page is checked for changes;
* snapshot string: a short title/description/content preview, used when
  refreshing the whole list. It only looks at the derived preview, so
  reformatting elsewhere on the page is not reported.
"""

import hashlib

from sitewatch_agent.models import SNAPSHOT_LIMIT, truncate
from sitewatch_agent.noise import DEFAULT_NOISE_RULES, NoiseRule, strip_noise

SNAPSHOT_CONTENT_PREVIEW = 200


def content_hash(body: str, rules: tuple[NoiseRule, ...] = DEFAULT_NOISE_RULES) -> str:
    """Hex SHA-256 of the body after noise suppression."""
    return hashlib.sha256(strip_noise(body, rules).encode("utf-8")).hexdigest()


def has_hash_changed(new_hash: str, previous_hash: str) -> bool:
    """A missing previous hash is a first observation, not a change."""
    return previous_hash != "" and new_hash != previous_hash


def build_snapshot(title: str, description: str, main_content: str) -> str:
    text = f"{title} {description} {(main_content or '')[:SNAPSHOT_CONTENT_PREVIEW]}"
    return truncate(text, SNAPSHOT_LIMIT)


def snapshot_changed(new_snapshot: str, old_snapshot: str) -> bool:
    return new_snapshot != old_snapshot


def snapshot_delta(old_snapshot: str, new_snapshot: str) -> str:
    """Tokens of the new snapshot that never appear in the old one."""
    old_tokens = set(old_snapshot.split())
    return " ".join(token for token in new_snapshot.split() if token not in old_tokens)


def change_summary(old_snapshot: str, new_snapshot: str, main_content: str) -> str:
    """Text to show as "what's new" for a changed resource."""
    return snapshot_delta(old_snapshot, new_snapshot) or main_content
