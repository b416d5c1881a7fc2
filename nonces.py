"""
Anti-forgery tokens for the inbound actions.

A nonce is bound to an action scope and the visitor identity and stays
valid for 12-24 hours (current and previous 12 hour tick).
"""

import hashlib
import hmac
import time
from typing import Callable

NONCE_LIFETIME = 24 * 60 * 60
_TICK = NONCE_LIFETIME // 2
_LENGTH = 10

FLIGHT_SCOPE = "amadeus_flight_search_nonce"
HOTEL_SCOPE = "amadeus_hotel_search_nonce"


class NonceManager:
    def __init__(self, secret: str, clock: Callable[[], float] = time.time):
        if not secret:
            raise ValueError("nonce secret must not be empty")
        self._secret = secret.encode()
        self.clock = clock

    def _tick(self) -> int:
        return int(self.clock() // _TICK)

    def _digest(self, tick: int, scope: str, identity: str) -> str:
        msg = f"{tick}|{scope}|{identity}".encode()
        return hmac.new(self._secret, msg, hashlib.sha256).hexdigest()[:_LENGTH]

    def create(self, scope: str, identity: str) -> str:
        return self._digest(self._tick(), scope, identity)

    def verify(self, nonce: str, scope: str, identity: str) -> bool:
        if not nonce:
            return False
        tick = self._tick()
        given = nonce.encode()
        return any(
            hmac.compare_digest(given, self._digest(t, scope, identity).encode())
            for t in (tick, tick - 1)
        )
