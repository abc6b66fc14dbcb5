REDIS_ROOM_KEY = "room:{name}" # room name - hash of room record

# **Fields of `room:{name}`**
# - `created_at` = ISO timestamp, always present (HSETNX guard on creation)
# - `password_hash` = bcrypt hash, only for protected rooms (HSETNX when an open room is claimed)
#
# **TTL**
# - Rooms created over HTTP get `EMPTY_ROOM_TTL`, cleared (PERSIST) on first join.
# - Rooms created implicitly by a join never carry a TTL.
