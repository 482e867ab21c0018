import logging
import time

import redis

# ---------------------------------------------------------
# LOGGING
# ---------------------------------------------------------
logger = logging.getLogger("api.redis")


# ---------------------------------------------------------
# REDIS INIT
# ---------------------------------------------------------
def build_redis_client(redis_url: str, *, client_name: str = "subtitle-api", socket_timeout: float = 5.0):
    if not redis_url:
        raise RuntimeError("REDIS_URL not set")

    logger.info("[REDIS] Initializing Redis client client_name=%s", client_name)

    client = redis.from_url(
        redis_url,
        decode_responses=True,
        socket_keepalive=True,
        socket_connect_timeout=2,
        socket_timeout=socket_timeout,
        retry_on_timeout=True,
        client_name=client_name,
    )
    ping_diagnostics(client)
    return client


# ---------------------------------------------------------
# CONNECTION DIAGNOSTICS
# ---------------------------------------------------------
def ping_diagnostics(client) -> bool:
    try:
        t0 = time.time()
        pong = client.ping()
        ms = int((time.time() - t0) * 1000)
        logger.info("[REDIS] Connected OK ping=%s latency=%sms", pong, ms)
        return True
    except redis.RedisError as e:
        # workers and the API keep starting; every call path maps Redis errors itself
        logger.error("[REDIS] Initial ping failed: %s", e)
        return False
