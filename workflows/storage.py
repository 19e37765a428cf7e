"""Redis-based trip storage for the trip planner."""

from __future__ import annotations

import json
import logging
from typing import Dict, List, Optional

import redis
from redis.exceptions import RedisError

from config import REDIS_URL, TRIP_TTL_SECONDS
from workflows.state import TripPlan

logger = logging.getLogger(__name__)

TRIP_KEY_PREFIX = "trip:"
OWNER_KEY_PREFIX = "owner-trips:"


class TripStorage:
    """Redis-based trip storage with fallback to in-memory storage."""

    def __init__(self, redis_url: Optional[str] = REDIS_URL, ttl_seconds: int = TRIP_TTL_SECONDS) -> None:
        self.ttl_seconds = ttl_seconds
        self._redis_client: Optional[redis.Redis] = None
        self._fallback_storage: Dict[str, TripPlan] = {}
        self._use_redis = False

        if redis_url:
            try:
                self._redis_client = redis.from_url(
                    redis_url,
                    decode_responses=False,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    health_check_interval=30,
                )
                self._redis_client.ping()
                self._use_redis = True
                logger.info("Connected to Redis for trip storage")
            except (RedisError, OSError) as exc:
                logger.warning("Failed to connect to Redis: %s. Using in-memory storage.", exc)
                self._redis_client = None
                self._use_redis = False
        else:
            logger.info("REDIS_URL not set. Using in-memory trip storage.")

    @property
    def uses_redis(self) -> bool:
        return self._use_redis

    def save(self, plan: TripPlan) -> TripPlan:
        """Store a plan under its id, replacing any previous version."""
        if self._use_redis and self._redis_client:
            try:
                pipe = self._redis_client.pipeline()
                pipe.setex(f"{TRIP_KEY_PREFIX}{plan.id}", self.ttl_seconds, plan.model_dump_json())
                if plan.owner_id:
                    owner_key = f"{OWNER_KEY_PREFIX}{plan.owner_id}"
                    pipe.sadd(owner_key, plan.id)
                    pipe.expire(owner_key, self.ttl_seconds)
                pipe.execute()
                return plan
            except RedisError as exc:
                logger.error("Error storing trip %s in Redis: %s", plan.id, exc)
        self._fallback_storage[plan.id] = plan
        return plan

    def get(self, trip_id: str, owner_id: Optional[str] = None) -> Optional[TripPlan]:
        """Fetch a plan; an owner mismatch reads as not found."""
        plan = self._load(trip_id)
        if plan is None:
            return None
        if owner_id is not None and plan.owner_id is not None and plan.owner_id != owner_id:
            logger.info("Trip %s requested by a different owner", trip_id)
            return None
        return plan

    def list_for_owner(self, owner_id: str) -> List[TripPlan]:
        if self._use_redis and self._redis_client:
            try:
                ids = self._redis_client.smembers(f"{OWNER_KEY_PREFIX}{owner_id}")
            except RedisError as exc:
                logger.error("Error listing trips of %s from Redis: %s", owner_id, exc)
                ids = set()
            plans = [self._load(raw.decode() if isinstance(raw, bytes) else raw) for raw in ids]
            found = [plan for plan in plans if plan is not None]
        else:
            found = [plan for plan in self._fallback_storage.values() if plan.owner_id == owner_id]
        return sorted(found, key=lambda plan: plan.created_at, reverse=True)

    def delete(self, trip_id: str) -> None:
        if self._use_redis and self._redis_client:
            try:
                self._redis_client.delete(f"{TRIP_KEY_PREFIX}{trip_id}")
            except RedisError as exc:
                logger.error("Error deleting trip %s from Redis: %s", trip_id, exc)
        self._fallback_storage.pop(trip_id, None)

    def _load(self, trip_id: str) -> Optional[TripPlan]:
        if self._use_redis and self._redis_client:
            try:
                data = self._redis_client.get(f"{TRIP_KEY_PREFIX}{trip_id}")
                if data:
                    return TripPlan.model_validate(json.loads(data))
            except (RedisError, json.JSONDecodeError, ValueError) as exc:
                logger.error("Error retrieving trip %s from Redis: %s", trip_id, exc)
        return self._fallback_storage.get(trip_id)


# Global trip storage instance
_trip_storage: Optional[TripStorage] = None


def get_trip_storage() -> TripStorage:
    """Get or create the global trip storage instance."""
    global _trip_storage
    if _trip_storage is None:
        _trip_storage = TripStorage()
    return _trip_storage


__all__ = ["TripStorage", "get_trip_storage"]
