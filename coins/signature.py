"""
Partner callback signatures.

sign = md5("app_secret=<secret>&coins=<coins>&time=<timestamp>&userId=<userId>" + secret)

Keys are sorted lexicographically before joining. The digest stays MD5 so
partners already signing this way keep working.
"""
import hashlib
import hmac
import logging
import time
from typing import Callable, Mapping, Optional, Union

from .errors import (
    ExpiredTimestampError,
    MissingSignatureParamsError,
    SignatureMismatchError,
    UnknownAppKeyError,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_SKEW_SECONDS = 300


def now_millis() -> int:
    return int(time.time() * 1000)


def build_sign_string(app_secret: str, coins: Union[int, str], timestamp: Union[int, str], user_id: Union[int, str]) -> str:
    params = {"app_secret": app_secret, "coins": coins, "time": timestamp, "userId": user_id}
    return "&".join(f"{key}={params[key]}" for key in sorted(params))


def generate_signature(app_secret: str, coins: Union[int, str], timestamp: Union[int, str], user_id: Union[int, str]) -> str:
    sign_string = build_sign_string(app_secret, coins, timestamp, user_id)
    return hashlib.md5((sign_string + app_secret).encode("utf-8")).hexdigest()


class SignatureVerifier:
    def __init__(
        self,
        app_secrets: Mapping[str, str],
        max_skew_seconds: int = DEFAULT_MAX_SKEW_SECONDS,
        clock_ms: Callable[[], int] = now_millis,
    ):
        self.app_secrets = dict(app_secrets)
        self.max_skew_ms = max_skew_seconds * 1000
        self.clock_ms = clock_ms

    def get_app_secret(self, app_key: Optional[str]) -> Optional[str]:
        if not app_key:
            return None
        return self.app_secrets.get(app_key)

    def verify(
        self,
        app_key: Optional[str],
        timestamp: Optional[int],
        coins: Optional[int],
        user_id: Union[int, str, None],
        sign: Optional[str],
    ) -> None:
        if not app_key or not timestamp or coins is None or user_id in (None, "") or not sign:
            raise MissingSignatureParamsError(
                "Signature check failed: appKey, timestamp, coins, userId and sign are required"
            )

        secret = self.get_app_secret(app_key)
        if secret is None:
            logger.warning("Rejected callback with unknown appKey=%s", app_key)
            raise UnknownAppKeyError("Signature check failed: invalid appKey")

        now = self.clock_ms()
        skew = abs(now - int(timestamp))
        if skew > self.max_skew_ms:
            logger.warning(
                "Rejected callback with stale timestamp appKey=%s now=%s timestamp=%s skew_ms=%s",
                app_key, now, timestamp, skew,
            )
            raise ExpiredTimestampError("Signature check failed: request timestamp expired")

        expected = generate_signature(secret, coins, timestamp, user_id)
        if not hmac.compare_digest(expected.encode("utf-8"), sign.encode("utf-8")):
            logger.warning(
                "Rejected callback with bad signature appKey=%s userId=%s coins=%s time=%s",
                app_key, user_id, coins, timestamp,
            )
            raise SignatureMismatchError("Signature check failed: signature mismatch")

        logger.debug("Verified callback appKey=%s userId=%s coins=%s time=%s", app_key, user_id, coins, timestamp)
