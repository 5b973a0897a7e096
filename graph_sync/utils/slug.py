import hashlib
import re
import unicodedata

MAX_SLUG_BASE_LENGTH = 200
MAX_SLUG_LENGTH = 255
SHORT_HASH_LENGTH = 10


def generate_slug(name: str) -> str:
    """Generate a URL-friendly slug from a title or label."""
    # Fold accented characters to ASCII
    slug = unicodedata.normalize("NFKD", name or "").encode("ascii", "ignore").decode("ascii")
    # Convert to lowercase
    slug = slug.lower()
    # Replace spaces and underscores with hyphens
    slug = re.sub(r'[\s_]+', '-', slug)
    # Remove all non-alphanumeric characters except hyphens
    slug = re.sub(r'[^a-z0-9\-]', '', slug)
    # Replace multiple hyphens with single hyphen
    slug = re.sub(r'-+', '-', slug)
    # Remove leading/trailing hyphens
    slug = slug.strip('-')
    return slug


def stable_slug_base(title: str) -> str:
    """Slug of a title, capped at 200 chars, "untitled" when nothing survives."""
    base = generate_slug(title or "")[:MAX_SLUG_BASE_LENGTH].rstrip('-')
    return base or "untitled"


def short_hash(value: str, length: int = SHORT_HASH_LENGTH) -> str:
    """First `length` hex chars of the SHA-256 of value."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:length]


def build_source_aware_slug(title: str, source_key: str, external_id: str) -> str:
    """
    Build a deterministic slug for a record.

    The readable part comes from the title; the suffix is derived from
    (source_key, external_id) so the same title in different sources, or
    twice in one source, never collides.
    """
    suffix = short_hash(f"{source_key}:{external_id}")
    return f"{stable_slug_base(title)}-{suffix}"[:MAX_SLUG_LENGTH]
