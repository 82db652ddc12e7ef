"""
Redis-based rate limiting for write-heavy customer endpoints.

Counters are keyed by scope and caller (user id when authenticated, client IP
otherwise) and expire with the window. When Redis is unreachable requests are
let through.
"""
import logging

import redis
from django.conf import settings
from rest_framework import status
from rest_framework.response import Response

logger = logging.getLogger(__name__)

_redis_client = None
_redis_checked = False


def get_redis_client():
    """Connect lazily; returns None when Redis is unavailable."""
    global _redis_client, _redis_checked
    if _redis_checked:
        return _redis_client
    _redis_checked = True
    try:
        client = redis.Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2
        )
        client.ping()
        _redis_client = client
    except (redis.ConnectionError, redis.TimeoutError) as e:
        logger.warning(f"Redis connection failed: {e}. Rate limiting will be disabled.")
        _redis_client = None
    return _redis_client


def get_client_ip(request):
    """Extract client IP address from request."""
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        ip = x_forwarded_for.split(',')[0].strip()
    else:
        ip = request.META.get('REMOTE_ADDR', 'unknown')
    return ip


def get_caller_key(request):
    user = getattr(request, 'user', None)
    if user is not None and user.is_authenticated:
        return f"user:{user.pk}"
    return f"ip:{get_client_ip(request)}"


class RateLimitMixin:
    """
    Mixin for class-based views. Only unsafe methods are counted.

    Usage:
        class CheckoutView(RateLimitMixin, APIView):
            rate_limit_scope = 'checkout'

    Limits come from ``settings.RATE_LIMITS[scope]`` as ``(max_requests, window_seconds)``.
    """
    rate_limit_scope = None
    rate_limit_default = (20, 60)

    def get_rate_limit(self):
        return getattr(settings, 'RATE_LIMITS', {}).get(self.rate_limit_scope, self.rate_limit_default)

    def initial(self, request, *args, **kwargs):
        # Runs after DRF authentication so request.user is known
        super().initial(request, *args, **kwargs)
        self._rate_limit_state = None
        if request.method in ('GET', 'HEAD', 'OPTIONS'):
            return
        if not getattr(settings, 'RATE_LIMIT_ENABLED', True):
            return
        client = get_redis_client()
        if client is None:
            return

        max_requests, window_seconds = self.get_rate_limit()
        scope = self.rate_limit_scope or self.__class__.__name__
        key = f"rate_limit:{scope}:{get_caller_key(request)}"
        try:
            current_count = client.incr(key)
            if current_count == 1:
                client.expire(key, window_seconds)
            ttl = client.ttl(key)
        except redis.RedisError as e:
            logger.error(f"Redis error in rate limiting: {e}")
            return

        self._rate_limit_state = (max_requests, current_count, ttl)
        if current_count > max_requests:
            raise RateLimitExceeded(max_requests, window_seconds, ttl)

    def handle_exception(self, exc):
        if isinstance(exc, RateLimitExceeded):
            return Response(
                {
                    'message': f'Maximum {exc.max_requests} requests per {exc.window_seconds} seconds allowed.',
                    'code': 'rate_limited',
                    'retry_after': exc.ttl,
                },
                status=status.HTTP_429_TOO_MANY_REQUESTS,
                headers={
                    'X-RateLimit-Limit': str(exc.max_requests),
                    'X-RateLimit-Remaining': '0',
                    'X-RateLimit-Reset': str(exc.ttl),
                    'Retry-After': str(exc.ttl),
                },
            )
        return super().handle_exception(exc)

    def finalize_response(self, request, response, *args, **kwargs):
        response = super().finalize_response(request, response, *args, **kwargs)
        state = getattr(self, '_rate_limit_state', None)
        if state is not None and response.status_code != status.HTTP_429_TOO_MANY_REQUESTS:
            max_requests, current_count, ttl = state
            response['X-RateLimit-Limit'] = str(max_requests)
            response['X-RateLimit-Remaining'] = str(max(0, max_requests - current_count))
            response['X-RateLimit-Reset'] = str(ttl)
        return response


class RateLimitExceeded(Exception):
    def __init__(self, max_requests, window_seconds, ttl):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.ttl = ttl
        super().__init__('Rate limit exceeded')
