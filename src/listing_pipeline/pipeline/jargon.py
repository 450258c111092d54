"""
Jargon expansion.

Rewrites trade shorthand before extraction so the model sees the full term
next to the original token, e.g. ``NOS`` -> ``New Old Stock (NOS)``.
Only verified dictionary entries are applied.
"""

import re
from collections.abc import Iterable

from ..models.reference import JargonEntry


class JargonExpander:
    """
    Substitutes verified acronyms with ``<expansion> (<matched text>)``.

    Matching is case-insensitive and whole-word: an acronym never fires
    inside a longer token. All acronyms are substituted in a single pass,
    longest first, so text inserted by one expansion is never expanded again.
    Entries whose acronyms differ only by case collapse to the first one.
    """

    def expand(self, text: str | None, entries: Iterable[JargonEntry]) -> str | None:
        """
        Expand verified acronyms in text.

        Args:
            text: Raw message text
            entries: Jargon dictionary entries (unverified ones are skipped)

        Returns:
            The expanded text, or the input unchanged when it is blank or no
            verified entries apply
        """
        if text is None or not text.strip():
            return text

        expansions: dict[str, str] = {}
        for entry in entries:
            acronym = (entry.acronym or '').strip()
            if entry.verified and acronym:
                expansions.setdefault(acronym.lower(), entry.expansion)
        if not expansions:
            return text

        alternatives = sorted(expansions, key=len, reverse=True)
        pattern = re.compile(
            r'(?<!\w)(?:' + '|'.join(re.escape(a) for a in alternatives) + r')(?!\w)',
            re.IGNORECASE,
        )
        return pattern.sub(lambda m: f'{expansions[m.group(0).lower()]} ({m.group(0)})', text)
