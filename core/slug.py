# core/slug.py
"""URL-safe identifiers derived from newsletter titles."""

import re

_NON_ALNUM = re.compile(r'[^a-z0-9]+')


def slugify(title: str) -> str:
    """
    Lower-case the title, collapse every run of characters outside [a-z0-9]
    into a single hyphen and trim hyphens from both ends.

    A title without any ASCII letters or digits yields an empty string.
    """
    return _NON_ALNUM.sub('-', (title or '').lower()).strip('-')
