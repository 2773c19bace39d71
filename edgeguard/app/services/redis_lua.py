"""Redis Lua scripts for the edge filter.

These scripts run server-side so that checking and consuming capacity is a
single atomic operation, even when many filter instances share one Redis.
"""

# Sliding log rate limit on a sorted set of request timestamps (milliseconds).
# The clock is Redis TIME, so instances with skewed clocks agree on the window.
# Entries older than the window are trimmed, the rest are counted, and the new
# request is only recorded when the count is under capacity. Denied requests
# leave no trace, so a client hammering the limit does not extend its own ban.
#
# KEYS[1]: rate limit key
# ARGV: window_ms, limit, member
#
# Returns {allowed (0|1), count_after, reset_at_ms, now_ms} where reset_at_ms
# is when the oldest request in the window expires.
SLIDING_WINDOW_SCRIPT = """
    local key = KEYS[1]
    local window = tonumber(ARGV[1])
    local limit = tonumber(ARGV[2])
    local member = ARGV[3]

    local clock = redis.call('TIME')
    local now = tonumber(clock[1]) * 1000 + math.floor(tonumber(clock[2]) / 1000)

    redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
    local count = redis.call('ZCARD', key)

    local allowed = 0
    if count < limit then
        redis.call('ZADD', key, now, member)
        redis.call('PEXPIRE', key, window)
        count = count + 1
        allowed = 1
    end

    local reset_at = now + window
    local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
    if oldest[2] then
        reset_at = tonumber(oldest[2]) + window
    end

    return {allowed, count, reset_at, now}
"""
