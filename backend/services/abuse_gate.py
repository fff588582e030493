"""
Abuse Gate - bot-score provider + honeypot check

Contract:
    score = await gate.evaluate(token, remote_ip)
    - float in [0, 1]: bot score (0 = bot, 1 = human)
    - None: provider unavailable (timeout, network error, non-2xx status,
      body that is not a JSON object)

The gate only reports. What to do with a low score or an outage is decided
by the submission service (reject below threshold; stricter admission tier
while unavailable).

Usage:
    gate = RecaptchaAbuseGate(secret_key=settings.recaptcha_secret_key)
    score = await gate.evaluate(token, remote_ip="203.0.113.7")
"""
import asyncio
import logging
from typing import Optional

import aiohttp

logger = logging.getLogger(__name__)

RECAPTCHA_VERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"


def honeypot_triggered(value) -> bool:
    """A hidden form field real users never see: any non-blank value means a bot"""
    if value is None:
        return False
    return bool(str(value).strip())


class AbuseGate:
    """Interface for bot-score providers"""

    # False when the gate does no real verification (dev/test)
    enforcing = True

    async def evaluate(self, token: Optional[str], remote_ip: Optional[str] = None) -> Optional[float]:
        raise NotImplementedError(f"{self.__class__.__name__} must implement evaluate()")

    async def close(self):
        pass


class PassthroughAbuseGate(AbuseGate):
    """
    Gate used when no provider secret is configured.

    Scores everything as human. Logged once so a misconfigured production
    deployment is visible.
    """

    enforcing = False

    def __init__(self, score: float = 1.0):
        self.score = score
        self._warned = False

    async def evaluate(self, token, remote_ip=None):
        if not self._warned:
            logger.warning("[abuse-gate] Not configured - bot scoring disabled")
            self._warned = True
        return self.score


class RecaptchaAbuseGate(AbuseGate):
    """
    Google reCAPTCHA v3 verification over aiohttp.

    - success=false        -> 0.0 (token invalid / reused)
    - success, no score    -> 1.0 (v2-style response)
    - success, score       -> score
    - timeout, network error, non-2xx or malformed body -> None (unavailable)
    """

    def __init__(
        self,
        secret_key: str,
        timeout_seconds: float = 5.0,
        verify_url: str = RECAPTCHA_VERIFY_URL,
    ):
        if not secret_key:
            raise ValueError("RecaptchaAbuseGate requires a secret key")
        self.secret_key = secret_key
        self.verify_url = verify_url
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.session: Optional[aiohttp.ClientSession] = None

    async def _ensure_session(self):
        """Ensure aiohttp session exists."""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self):
        """Close the session."""
        if self.session and not self.session.closed:
            await self.session.close()

    async def evaluate(self, token, remote_ip=None):
        if not token:
            return 0.0

        await self._ensure_session()
        form = {'secret': self.secret_key, 'response': token}
        if remote_ip:
            form['remoteip'] = remote_ip

        try:
            async with self.session.post(self.verify_url, data=form) as resp:
                if not 200 <= resp.status < 300:
                    logger.error(f"[abuse-gate] Provider returned {resp.status}")
                    return None
                data = await resp.json(content_type=None)
        except asyncio.TimeoutError:
            logger.error("[abuse-gate] Provider timeout - verification unavailable")
            return None
        except aiohttp.ClientError as e:
            logger.error(f"[abuse-gate] Provider error - verification unavailable: {e}")
            return None
        except ValueError as e:
            logger.error(f"[abuse-gate] Provider sent a non-JSON body - verification unavailable: {e}")
            return None

        if not isinstance(data, dict):
            logger.error(f"[abuse-gate] Unexpected provider payload type: {type(data).__name__}")
            return None

        if not data.get('success'):
            logger.warning(
                f"[abuse-gate] Verification failed: errors={data.get('error-codes')} "
                f"action={data.get('action')}"
            )
            return 0.0

        score = data.get('score')
        if score is None:
            return 1.0
        try:
            return max(0.0, min(1.0, float(score)))
        except (TypeError, ValueError):
            logger.error(f"[abuse-gate] Unparseable score {score!r}")
            return None
