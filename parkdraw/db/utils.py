from pathlib import Path
from datetime import datetime, timezone
from typing import Optional

SQLITE_RELATIVE_PREFIXES = ("sqlite:///./", "sqlite+pysqlite:///./")


def resolve_sqlite_url(url: str, project_root: Path) -> str:
    """Anchor a relative SQLite URL (``sqlite:///./dev.db``) at ``project_root``.

    Other URLs, including in-memory SQLite, are returned unchanged.
    """
    for prefix in SQLITE_RELATIVE_PREFIXES:
        if url.startswith(prefix):
            scheme = prefix[: -len("./")]
            rel = url[len(prefix) :]
            return f"{scheme}{(project_root / rel).resolve()}"
    return url


def dt_iso(dt: Optional[datetime]) -> Optional[str]:
    """Serialize ``dt`` as ISO 8601 in UTC; naive values are taken as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Inverse of :func:`dt_iso`; always returns an aware UTC datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
