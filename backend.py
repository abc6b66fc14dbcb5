from contextlib import contextmanager
from datetime import datetime
from typing import Optional

import bcrypt
import redis

from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, REDIS_DB, BCRYPT_ROUNDS
from redis_keys import REDIS_ROOM_KEY
from logging_config import get_logger
from relay.errors import PersistenceError

logger = get_logger(__name__)


def hash_password(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    # bcrypt only reads the first 72 bytes
    hashed = bcrypt.hashpw(password.encode("utf-8")[:72], bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def check_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8")[:72], hashed.encode("utf-8"))


@contextmanager
def _store_errors(operation: str, name: str):
    try:
        yield
    except redis.RedisError as e:
        logger.error(f"Redis error during {operation} for room {name}: {e}", exc_info=True)
        raise PersistenceError(f"{operation} failed for room {name}: {e}") from e


class RedisBackend:
    """Durable room records: name -> optional bcrypt password hash."""

    def __init__(self, redis_client: Optional[redis.Redis] = None, bcrypt_rounds: int = BCRYPT_ROUNDS):
        # redis.Redis connects lazily; ping() at startup surfaces a bad configuration
        self.redis_client = redis_client or redis.Redis(
            host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, db=REDIS_DB, decode_responses=True
        )
        self.bcrypt_rounds = bcrypt_rounds
        logger.info(f"Initializing RedisBackend for {REDIS_HOST}:{REDIS_PORT}")

    def ping(self) -> bool:
        with _store_errors("ping", "-"):
            return self.redis_client.ping()

    def create_room(self, name: str, password: Optional[str] = None, ttl: Optional[int] = None) -> bool:
        """Create the record for `name`. Returns False when it already exists.

        A None password leaves the room open. `ttl` makes the record expire unless
        `persist_room` is called first.
        """
        key = REDIS_ROOM_KEY.format(name=name)
        with _store_errors("create", name):
            created = self.redis_client.hsetnx(key, "created_at", datetime.now().isoformat())
            if not created:
                logger.debug(f"Room {name} already exists, not creating")
                return False

            if password is not None:
                self.redis_client.hset(key, "password_hash", hash_password(password, self.bcrypt_rounds))
            if ttl:
                self.redis_client.expire(key, ttl)
        logger.info(f"Room {name} created (protected={password is not None}, ttl={ttl})")
        return True

    def room_exists(self, name: str) -> bool:
        with _store_errors("lookup", name):
            return bool(self.redis_client.exists(REDIS_ROOM_KEY.format(name=name)))

    def has_password(self, name: str) -> bool:
        with _store_errors("lookup", name):
            return bool(self.redis_client.hexists(REDIS_ROOM_KEY.format(name=name), "password_hash"))

    def verify_password(self, name: str, password: Optional[str]) -> bool:
        """True when `password` opens `name`. Open rooms accept any password; unknown rooms none."""
        key = REDIS_ROOM_KEY.format(name=name)
        with _store_errors("verify", name):
            record = self.redis_client.hgetall(key)
        if not record:
            return False

        stored_hash = record.get("password_hash")
        if not stored_hash:
            return True
        if password is None:
            return False
        return check_password(password, stored_hash)

    def set_password_if_unset(self, name: str, password: str) -> bool:
        """Protect an open room. Returns False when the room is missing or already protected."""
        key = REDIS_ROOM_KEY.format(name=name)
        with _store_errors("set password", name):
            if not self.redis_client.exists(key):
                return False
            claimed = bool(self.redis_client.hsetnx(key, "password_hash", hash_password(password, self.bcrypt_rounds)))
        if claimed:
            logger.info(f"Room {name} is now password protected")
        return claimed

    def persist_room(self, name: str) -> bool:
        """Drop any pending expiry on the record."""
        with _store_errors("persist", name):
            return bool(self.redis_client.persist(REDIS_ROOM_KEY.format(name=name)))

    def delete_room(self, name: str) -> bool:
        with _store_errors("delete", name):
            deleted = self.redis_client.delete(REDIS_ROOM_KEY.format(name=name))
        logger.debug(f"Room {name} delete: removed={deleted}")
        return bool(deleted)


redis_backend = RedisBackend()
