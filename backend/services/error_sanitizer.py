import re
from typing import Optional


_SUSPICIOUS_ERROR_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"traceback", re.IGNORECASE),
    re.compile(r"\bfile\s+\".*?\.py\"", re.IGNORECASE),
    re.compile(r"/home/|/users/|/site-packages/|[a-z]:\\", re.IGNORECASE),
    re.compile(r"\bapi[_-]?key\b", re.IGNORECASE),
    re.compile(r"\bbearer\s+\S+", re.IGNORECASE),
)

# Google API keys look like "AIza" followed by 35 url-safe characters.
_API_KEY_PATTERN = re.compile(r"AIza[0-9A-Za-z_\-]{35}")


def sanitize_public_error_message(
    message: Optional[str],
    *,
    fallback: str = "Generation failed",
    max_chars: int = 240,
) -> Optional[str]:
    """
    Sanitize a task failure message before it is stored on a slot.

    Treat ``message`` as untrusted: it usually comes from ``str(exception)`` of
    the SDK or HTTP stack and may carry stack traces, file paths or key material.
    Short, plain messages such as "rate limited" pass through unchanged.
    """
    if not message:
        return None

    safe = message.encode("utf-8", errors="replace").decode("utf-8", errors="replace")
    safe = re.sub(r"\s+", " ", safe).strip()
    if not safe:
        return None

    safe = _API_KEY_PATTERN.sub("***", safe)
    if any(p.search(safe) for p in _SUSPICIOUS_ERROR_PATTERNS):
        return fallback

    if len(safe) > max_chars:
        return f"{safe[:max_chars]}…"
    return safe
