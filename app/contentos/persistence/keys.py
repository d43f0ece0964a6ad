"""
Store key namespace. Names are part of the persisted format: renaming one orphans
the data stored under the old name, and the version guard only clears keys listed here.
"""

from __future__ import annotations

KEY_PREFIX = "contentos."

VERSION_KEY = "contentos.version"

SESSION_KEY = "contentos.session"
LOCKS_KEY = "contentos.locks"
REFDATA_KEY = "contentos.refdata"
TOPICS_KEY = "contentos.topics"
SNAPSHOT_KEY = "contentos.snapshot"
SNAPSHOT_CHAT_KEY = "contentos.snapshot.chat"
ARTICLE_KEY = "contentos.article"
PODCAST_KEY = "contentos.podcast"
SOCIAL_KEY = "contentos.social.design"
WEBHOOK_CONFIG_KEY = "contentos.n8n"
ARCHIVE_KEY = "contentos.topics.archive"

BRAND_KEY = "contentos.brand"
CONTENT_PREFERENCES_KEY = "contentos.contentTypes"

# Cleared on a version change.
SESSION_SCOPED_KEYS: tuple[str, ...] = (
    SESSION_KEY,
    LOCKS_KEY,
    REFDATA_KEY,
    TOPICS_KEY,
    SNAPSHOT_KEY,
    SNAPSHOT_CHAT_KEY,
    ARTICLE_KEY,
    PODCAST_KEY,
    SOCIAL_KEY,
    WEBHOOK_CONFIG_KEY,
    ARCHIVE_KEY,
)

# Outlive sessions and upgrades; cleared only by a settings reset.
SETTINGS_SCOPED_KEYS: tuple[str, ...] = (
    BRAND_KEY,
    CONTENT_PREFERENCES_KEY,
)


def is_settings_key(key: str) -> bool:
    return key in SETTINGS_SCOPED_KEYS


def session_reset_keys(existing: list[str]) -> list[str]:
    """
    Keys a "new session" reset removes: every session-scoped key except the
    archive, plus any other prefixed key that is not settings, archive or version.
    """
    keep = {ARCHIVE_KEY, VERSION_KEY}
    targets = [k for k in SESSION_SCOPED_KEYS if k not in keep]
    for key in existing:
        if not key.startswith(KEY_PREFIX) or key in keep or is_settings_key(key):
            continue
        if key not in targets:
            targets.append(key)
    return targets
