"""
Input and Output Sanitization

Helpers that sit on the trust boundary:
- sanitize_error_message: only curated messages reach the client
- sanitize_filename / validate_upload: attachment names and types
- build_storage_path / validate_storage_path: object keys scoped to
  foundry and user

SECURITY: Object storage lives outside this service. These checks are
the only thing stopping a client from writing to, or deleting from,
another user's prefix.
"""
import re
from typing import Optional

GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again."

# Substrings that mark a message as written for users. Anything else
# (driver errors, constraint names, stack fragments) is replaced.
SAFE_ERROR_FRAGMENTS = (
    "not found",
    "not authenticated",
    "not authorized",
    "already responded",
    "already exists",
    "already submitted",
    "already cancelled",
    "must be",
    "cannot",
    "can only",
    "only",
    "exceeds",
    "would exceed",
    "required",
    "please",
    "invalid",
    "rate limit",
    "race has not started",
    "tier delay",
    "provider profile",
    "blocked",
    "is not active",
    "inactive",
)

# Messages containing any of these are never passed through, even if they
# also contain a safe fragment.
UNSAFE_ERROR_MARKERS = (
    "sqlalchemy",
    "psycopg",
    "sqlite",
    "integrityerror",
    "operationalerror",
    "traceback",
    "violates",
    "constraint",
    "duplicate key",
)

_SAFE_PATTERN = re.compile(
    r"\b(" + "|".join(re.escape(fragment) for fragment in SAFE_ERROR_FRAGMENTS) + r")\b",
    re.IGNORECASE,
)
_SQL_PATTERN = re.compile(
    r"\b(select\s.+\sfrom|insert\s+into|update\s+\S+\s+set|delete\s+from)\b",
    re.IGNORECASE,
)

MAX_FILENAME_LENGTH = 200
MAX_UPLOAD_BYTES = 25 * 1024 * 1024

ALLOWED_EXTENSIONS = frozenset({
    "pdf", "jpg", "jpeg", "png", "gif", "webp",
    "doc", "docx", "xls", "xlsx", "txt", "csv", "zip",
    "stl", "step", "stp", "iges", "igs", "dxf", "dwg",
})

ALLOWED_MIME_TYPES = frozenset({
    "application/pdf",
    "image/jpeg", "image/png", "image/gif", "image/webp",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "text/plain", "text/csv",
    "application/zip", "application/x-zip-compressed",
    # CAD formats rarely have a registered MIME type
    "application/octet-stream",
    "model/stl", "application/sla",
})

_FORBIDDEN_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def sanitize_error_message(message: Optional[str]) -> str:
    """
    Return ``message`` if it is one of the curated user-facing messages,
    otherwise a generic message.
    """
    if not message:
        return GENERIC_ERROR_MESSAGE

    lowered = message.lower()
    if any(marker in lowered for marker in UNSAFE_ERROR_MARKERS):
        return GENERIC_ERROR_MESSAGE
    if _SQL_PATTERN.search(message):
        return GENERIC_ERROR_MESSAGE
    if _SAFE_PATTERN.search(message):
        return message
    return GENERIC_ERROR_MESSAGE


def sanitize_filename(filename: str) -> str:
    """
    Make a client-supplied filename safe to embed in a storage path.

    Separators and traversal sequences are removed first, then every
    character outside ``[A-Za-z0-9._-]`` becomes ``_``. The result is
    capped at 200 characters.
    """
    # Separators go before ".." so "./." cannot collapse into ".."
    cleaned = filename.replace("/", "").replace("\\", "")
    # Removing ".." can create a new ".." ("...." -> ".." after one pass)
    while ".." in cleaned:
        cleaned = cleaned.replace("..", "")
    cleaned = _FORBIDDEN_FILENAME_CHARS.sub("_", cleaned)
    return cleaned[:MAX_FILENAME_LENGTH]


def file_extension(filename: str) -> str:
    if "." not in filename:
        return ""
    return filename.rsplit(".", 1)[-1].lower()


def validate_upload(
    filename: str,
    content_type: Optional[str],
    size: int,
    max_bytes: int = MAX_UPLOAD_BYTES,
) -> Optional[str]:
    """
    Check an attachment against the size limit and both allowlists.

    Returns an error message, or None when the file is acceptable.
    """
    if size > max_bytes:
        return f"File size exceeds {max_bytes // (1024 * 1024)}MB limit"

    ext = file_extension(filename)
    if not ext or ext not in ALLOWED_EXTENSIONS:
        return f"File type not allowed. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"

    mime_type = (content_type or "application/octet-stream").split(";")[0].strip().lower()
    if mime_type not in ALLOWED_MIME_TYPES:
        return "Invalid file type"

    return None


def is_valid_uuid(value: Optional[str]) -> bool:
    if not value:
        return False
    return bool(_UUID_PATTERN.match(value))


def storage_prefix(foundry_id: str, user_id: str) -> str:
    return f"rfq/{foundry_id}/{user_id}/"


def build_storage_path(foundry_id: str, user_id: str, filename: str, timestamp_ms: int) -> str:
    """Object key for an RFQ attachment: rfq/{foundry}/{user}/{ts}_{name}."""
    return f"{storage_prefix(foundry_id, user_id)}{timestamp_ms}_{sanitize_filename(filename)}"


def validate_storage_path(path: str, foundry_id: str, user_id: str) -> bool:
    """
    A path may be deleted by a user only if it sits under their own
    prefix and contains no traversal or empty segments.
    """
    if not path or ".." in path or "//" in path or "\\" in path:
        return False
    return path.startswith(storage_prefix(foundry_id, user_id))
