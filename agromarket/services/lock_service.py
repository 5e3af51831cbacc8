import redis
from agromarket.utils.retry import redis_retry
from agromarket.utils.settings import REDIS_URL
from agromarket.utils.logging import get_logger

logger = get_logger(__name__)

#LUA porownaj i usun, atomicity
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""

#redis wykonuje skrypt lua atomowo, nie mozna wcisnac sie miedzy GET a DEL
#dzieki temu zwalniamy tylko wlasny lock, nawet jesli nasz TTL minal i lock przejal ktos inny


class LockService:
    """
    -blokada checkoutu kupujacego (jeden checkout naraz na koszyk)
    -zwalnianie locka tylko przez wlasciciela tokenu
    -atomowosc przy pomocy lua
    """

    def __init__(self, url: str | None = None):
        self.redis = redis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
        )

    @staticmethod
    def _checkout_key(buyer_id: int) -> str:
        return f"checkout:{buyer_id}:lock"

    @redis_retry()
    def acquire_checkout_lock(self, buyer_id: int, token: str, ttl: int) -> bool:
        key = self._checkout_key(buyer_id)
        logger.info(f"Acquire lock {key} token {token}")
        #SET checkout:7:lock "<token>" NX EX 30
        return bool(
            self.redis.set(
                name=key,
                value=token,
                nx=True, #nie nadpisuj istniejacego locka
                ex=ttl, #lock wygasa sam jesli proces padnie w trakcie checkoutu
            )
        )

    @redis_retry()
    def release_checkout_lock(self, buyer_id: int, token: str) -> bool:
        key = self._checkout_key(buyer_id)
        logger.info(f"Release lock {key} token {token}")
        res = self.redis.eval(_RELEASE_LUA, 1, key, token)
        return bool(res)
