"""
Shared client instances — Redis and the RQ automation queue.

Importing this module is always safe: redis.from_url() does not connect
until the first command, and the queue is built on first use.
"""
import logging
import redis

from app.config import REDIS_URL

logger = logging.getLogger('app.extensions')

# ── Redis ─────────────────────────────────────────────────────────────────────
redis_client = redis.from_url(REDIS_URL, decode_responses=True)

# ── RQ queue (lazy — avoids import-time Redis connection) ─────────────────────
AUTOMATION_QUEUE = 'automation'

_queue = None


def get_queue():
    """Return the RQ queue used for asynchronous event processing."""
    global _queue
    if _queue is None:
        from rq import Queue
        # RQ stores pickled payloads, so it needs a non-decoding connection
        _queue = Queue(AUTOMATION_QUEUE, connection=redis.from_url(REDIS_URL))
        logger.info("RQ queue '%s' initialized", AUTOMATION_QUEUE)
    return _queue
