# agromarket/utils/retry.py
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type
import redis
import stripe

from agromarket.domain.errors import TransactionConflict


def redis_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(redis.RedisError),
    )


#tylko bledy polaczenia, odpowiedz stripe (np. karta odrzucona) nie jest ponawiana
#ponowienie jest bezpieczne bo kazde wywolanie ma idempotency_key
def gateway_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.3, min=0.3, max=1),
        retry=retry_if_exception_type(stripe.APIConnectionError),
    )


#konflikt transakcji (lock / serialization failure) - jeden ponowny raz
def transaction_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.05, min=0.05, max=0.2),
        retry=retry_if_exception_type(TransactionConflict),
    )
