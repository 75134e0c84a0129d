"""
Simulation store: one Redis hash holding {simulation_id: JSON bundle}.
Any object with the RecordStore methods can stand in (e.g. in tests).
"""

import logging
import os
from typing import List, Optional, Protocol

import redis
from pydantic import ValidationError

from quiz_engine.schemas import Simulation

log = logging.getLogger("quiz_engine.store")

# ─── Config ────────────────────────────────────────────────────────────────────

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
SIMULATIONS_KEY = "quiz_engine:simulations"


class RecordStore(Protocol):
    def save(self, simulation: Simulation) -> None: ...

    def list(self) -> List[Simulation]: ...

    def get(self, simulation_id: str) -> Optional[Simulation]: ...

    def delete(self, simulation_id: str) -> bool: ...


class RedisRecordStore:

    def __init__(self, client: Optional[redis.Redis] = None, key: str = SIMULATIONS_KEY, url: str = REDIS_URL):
        self._client = client
        self.key = key
        self.url = url

    @property
    def client(self) -> redis.Redis:
        """Get or create the Redis connection."""
        if self._client is None:
            self._client = redis.from_url(self.url, decode_responses=True)
        return self._client

    def save(self, simulation: Simulation) -> None:
        """Insert or replace a simulation by id."""
        self.client.hset(self.key, simulation.id, simulation.model_dump_json())
        log.info(f"[STORE] Saved simulation {simulation.id} ({len(simulation.questions)} questions)")

    def get(self, simulation_id: str) -> Optional[Simulation]:
        raw = self.client.hget(self.key, simulation_id)
        if raw is None:
            return None
        return Simulation.model_validate_json(raw)

    def list(self) -> List[Simulation]:
        """All stored simulations, newest first. Unreadable entries are skipped."""
        simulations = []
        for simulation_id, raw in self.client.hgetall(self.key).items():
            try:
                simulations.append(Simulation.model_validate_json(raw))
            except ValidationError as e:
                log.warning(f"[STORE] Skipping unreadable simulation {simulation_id}: {e.error_count()} error(s)")
        simulations.sort(key=lambda s: s.created_at, reverse=True)
        return simulations

    def delete(self, simulation_id: str) -> bool:
        removed = self.client.hdel(self.key, simulation_id)
        if removed:
            log.info(f"[STORE] Deleted simulation {simulation_id}")
        return bool(removed)
