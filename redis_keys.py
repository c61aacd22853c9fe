REDIS_META_KEY = "room:meta:{slug}" # room id - hash of room metadata
REDIS_SIGNALS_KEY = "room:signals:{slug}" # room id - sorted set of signals scored by timestamp
REDIS_CLOCK_KEY = "room:clock:{slug}" # room id - last assigned signal timestamp

# **Example `room:meta:{id}` hash fields**
# - `room_id` = `{roomId}`
# - `host_id` = host peer id
# - `guest_id` = guest peer id, written once inside a WATCH/MULTI on this key
# - `created_at` = epoch milliseconds
# - `last_active` = epoch milliseconds
#
# All three keys carry the room idle TTL, refreshed on every write.
