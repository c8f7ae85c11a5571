import redis
import json
import logging
from datetime import datetime, timezone
from app.config import settings

logger = logging.getLogger(__name__)


class RedisService:
    def __init__(self, redis_url: str = None):
        self.redis_client = None
        self.connect(redis_url or settings.redis_url)

    def connect(self, redis_url: str = None):
        try:
            if redis_url:
                self.redis_client = redis.from_url(
                    redis_url,
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    retry_on_timeout=True
                )
                # Test connection
                self.redis_client.ping()
                logger.info("Redis connected successfully")
            else:
                logger.warning("No Redis URL provided; token revocation disabled")
        except redis.RedisError as e:
            logger.warning("Redis connection failed: %s", e)
            self.redis_client = None

    @property
    def available(self) -> bool:
        return self.redis_client is not None

    def ping(self) -> bool:
        try:
            if self.redis_client:
                self.redis_client.ping()
                return True
            return False
        except redis.RedisError:
            return False

    def blacklist_token(self, token: str, expires_in_seconds: int) -> bool:
        """Revoke a bearer token until it would have expired anyway"""
        if not self.available or expires_in_seconds <= 0:
            return False
        try:
            blacklist_data = {
                "blacklisted_at": datetime.now(timezone.utc).isoformat(),
                "reason": "user_logout"
            }
            return bool(self.redis_client.setex(
                f"blacklist:{token}",
                expires_in_seconds,
                json.dumps(blacklist_data)
            ))
        except redis.RedisError as e:
            logger.error("Redis blacklist error: %s", e)
            return False

    def is_token_blacklisted(self, token: str) -> bool:
        """Check if token is blacklisted"""
        if not self.available:
            return False
        try:
            result = self.redis_client.get(f"blacklist:{token}")
            return result is not None
        except redis.RedisError as e:
            logger.error("Redis blacklist check error: %s", e)
            return False


# Global Redis instance
redis_service = RedisService()
