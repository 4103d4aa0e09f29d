import logging
from django.conf import settings
from django.core.cache import cache

from apps.utils.exceptions import DuplicateRequest

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "HTTP_IDEMPOTENCY_KEY"


class IdempotencyGuard:
    """
    Optional per-caller idempotency lock for write endpoints.

    Requests without an `Idempotency-Key` header pass straight through.
    A key is held for IDEMPOTENCY_KEY_TTL seconds once acquired; replays
    inside that window get a 409. Call release() when the attempt failed
    so the client can retry with the same key.
    """

    def __init__(self, request, scope: str):
        key = request.META.get(IDEMPOTENCY_HEADER)
        user_id = getattr(request.user, "pk", None) or "anon"
        self.cache_key = f"idemp:{scope}:{user_id}:{key}" if key else None

    def acquire(self):
        if not self.cache_key:
            return
        ttl = getattr(settings, "IDEMPOTENCY_KEY_TTL", 300)
        # cache.add is atomic: only one request wins the key
        if not cache.add(self.cache_key, "processing", timeout=ttl):
            logger.warning(f"Idempotency: duplicate request for {self.cache_key}")
            raise DuplicateRequest("Duplicate request detected")

    def release(self):
        if self.cache_key:
            cache.delete(self.cache_key)
