"""
Foundry Middleware

Resolves the foundry (tenant) for every request and puts a snapshot of
it on request.state. Everything foundry-scoped downstream reads
request.state.foundry_id.

Resolution order:
1. X-Foundry-Slug header (API clients)
2. Subdomain of the Host header: acme.centaur.app -> "acme"
3. X-Foundry-ID header (legacy)

CACHING: lookups go through a per-process TTL cache keyed by the
identifier the client sent. It is best-effort only:
- entries expire after FOUNDRY_CACHE_TTL_SECONDS and are re-queried
- there is no cross-process coherence; deactivating a foundry takes
  effect in other workers when their entry expires
- unknown identifiers are never cached
"""
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from centaur.config import get_settings
from centaur.core.sanitize import is_valid_uuid
from centaur.database import SessionLocal
from centaur.models.foundry import Foundry
from centaur.utils.logging import get_logger

logger = get_logger(__name__)

NON_FOUNDRY_SUBDOMAINS = ("www", "api", "app")


@dataclass(frozen=True)
class FoundryContext:
    """
    Detached snapshot of a foundry row.

    Safe to share between requests and threads; holds no session.
    """
    id: str
    name: str
    slug: str
    subdomain: Optional[str]
    is_active: bool
    plan: Optional[str] = None
    rate_limit_per_minute: Optional[int] = None
    rate_limit_burst: Optional[int] = None

    @classmethod
    def from_model(cls, foundry: Foundry) -> "FoundryContext":
        return cls(
            id=foundry.id,
            name=foundry.name,
            slug=foundry.slug,
            subdomain=foundry.subdomain,
            is_active=foundry.is_active,
            plan=foundry.plan,
            rate_limit_per_minute=foundry.rate_limit_per_minute,
            rate_limit_burst=foundry.rate_limit_burst,
        )

    @property
    def foundry_id(self) -> str:
        return self.id


class FoundryCache:
    """
    Identifier -> FoundryContext with per-entry expiry.

    ``clock`` is injectable so expiry can be tested without sleeping.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[FoundryContext, float]] = {}
        self._lock = threading.Lock()

    def get(self, identifier: str) -> Optional[FoundryContext]:
        with self._lock:
            entry = self._entries.get(identifier)
            if entry is None:
                return None
            context, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[identifier]
                return None
            return context

    def set(self, identifier: str, context: FoundryContext) -> None:
        if self.ttl_seconds <= 0:
            return
        with self._lock:
            self._entries[identifier] = (context, self._clock() + self.ttl_seconds)

    def invalidate(self, foundry_id: str) -> int:
        """Drop every entry pointing at ``foundry_id``. Returns how many went."""
        with self._lock:
            stale = [key for key, (ctx, _) in self._entries.items() if ctx.id == foundry_id]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


foundry_cache = FoundryCache(get_settings().FOUNDRY_CACHE_TTL_SECONDS)


def extract_foundry_identifier(request: Request) -> Optional[str]:
    slug = request.headers.get("X-Foundry-Slug")
    if slug:
        return slug

    host = request.headers.get("Host", "").split(":")[0]
    parts = host.split(".")
    if len(parts) >= 3 and parts[0] not in NON_FOUNDRY_SUBDOMAINS:
        return parts[0]

    foundry_id = request.headers.get("X-Foundry-ID")
    if is_valid_uuid(foundry_id):
        logger.debug("Using X-Foundry-ID header (legacy)")
        return foundry_id

    return None


def load_foundry(db: Session, identifier: str) -> Optional[Foundry]:
    """Match slug, subdomain or id in one query; slug wins on ambiguity."""
    matches = db.query(Foundry).filter(
        or_(
            Foundry.slug == identifier,
            Foundry.subdomain == identifier,
            Foundry.id == identifier,
        )
    ).all()
    for attr in ("slug", "subdomain", "id"):
        for foundry in matches:
            if getattr(foundry, attr) == identifier:
                return foundry
    return None


def resolve_foundry(identifier: str, cache: Optional[FoundryCache] = None) -> Optional[FoundryContext]:
    cache = cache if cache is not None else foundry_cache
    context = cache.get(identifier)
    if context is not None:
        return context

    db = SessionLocal()
    try:
        foundry = load_foundry(db, identifier)
        if foundry is None:
            return None
        context = FoundryContext.from_model(foundry)
    finally:
        db.close()

    cache.set(identifier, context)
    return context


class FoundryMiddleware(BaseHTTPMiddleware):
    """
    SECURITY: first line of foundry isolation. Tokens are checked
    against request.state.foundry_id in get_current_user.
    """

    def __init__(self, app, cache: Optional[FoundryCache] = None):
        super().__init__(app)
        self.cache = cache
        self.excluded_paths = [
            "/docs",
            "/redoc",
            "/openapi.json",
            "/health",
        ]

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path == "/" or any(path.startswith(p) for p in self.excluded_paths):
            return await call_next(request)

        identifier = extract_foundry_identifier(request)
        if not identifier:
            logger.warning(f"No foundry identifier in request: {path}")
            return JSONResponse(
                status_code=400,
                content={
                    "detail": "Foundry identifier required (subdomain or X-Foundry-Slug header)",
                    "type": "invalid_input"
                }
            )

        foundry = resolve_foundry(identifier, self.cache)
        if foundry is None:
            logger.warning(f"Foundry not found: {identifier}")
            return JSONResponse(status_code=404, content={"detail": "Foundry not found", "type": "not_found"})

        if not foundry.is_active:
            logger.warning(f"Inactive foundry attempted access: {identifier}")
            return JSONResponse(status_code=403, content={"detail": "Foundry account is inactive", "type": "permission_denied"})

        request.state.foundry = foundry
        request.state.foundry_id = foundry.id
        logger.debug(f"Request for foundry: {foundry.slug} ({foundry.id})")

        return await call_next(request)
