REDIS_ROOM_ID_KEY = "room:next_id" # counter for room ids
REDIS_ROOMS_KEY = "rooms" # sorted set of room ids, score = id
REDIS_META_KEY = "room:meta:{room_id}" # room id - room hash
REDIS_ROOM_MESSAGES_KEY = "room:messages:{room_id}" # room id - sorted set of message ids, score = id
REDIS_MESSAGE_ID_KEY = "message:next_id" # counter for message ids
REDIS_MESSAGE_KEY = "message:{message_id}" # message id - message hash

# **Example `room:meta:{id}` hash fields**
# - `id` = integer room id
# - `name`, `description`
# - `password_hash` = bcrypt hash (absent for open rooms)
# - `created_by` = display name of the creator
# - `created_at` = ISO timestamp (UTC)

# **Example `message:{id}` hash fields**
# - `id`, `room_id`, `username`, `text`
# - `time` = ISO timestamp (UTC)
# - `is_edited` = "0" or "1"
