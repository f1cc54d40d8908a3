import time
import unicodedata

from slugify import slugify as _slugify


def slugify(text: str) -> str:
    """
    Build a URL-safe slug from a display name.

    Diacritics are folded away first; python-slugify then drops punctuation,
    joins words with single hyphens and lowercases. Non-latin letters (Arabic
    for instance) are kept as they are.
    """
    decomposed = unicodedata.normalize("NFKD", str(text))
    folded = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _slugify(folded, allow_unicode=True)


def disambiguate(slug: str) -> str:
    """Append a short time-derived suffix to a slug that is already taken."""
    return f"{slug}-{str(int(time.time() * 1000))[-4:]}"
