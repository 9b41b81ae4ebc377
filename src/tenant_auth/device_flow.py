"""OAuth device-authorization flow for the interactive CLI.

State machine
-------------
``REQUESTING -> AWAITING_USER -> POLLING -> {SUCCEEDED | DENIED | EXPIRED | TRANSPORT_ERROR}``

1. Requesting: POST client id, audience and scope to the device-code
   endpoint; the answer becomes a DeviceSession.
2. Awaiting user: show the verification URI and user code, and try to
   open the pre-filled URI in a browser (failure is ignored).
3. Polling: POST the device code to the token endpoint every
   ``session.interval`` seconds until a response carries an access token,
   the user denies, the device code expires, or the network fails.

A poll answered without an access token (``authorization_pending``,
``slow_down`` or no error at all) is the expected steady state, not an
error. The interval is the one the provider gave and is not adapted.
A transport failure while polling ends the flow; there is no retry.
"""

from __future__ import annotations

import logging
import time
import webbrowser
from collections.abc import Callable
from typing import Any, Final

import requests

from .errors import AccessDenied, DeviceCodeExpired, TransportError
from .models import DeviceFlowState, DeviceSession, TokenPair
from .oauth import (
    DEVICE_CODE_GRANT,
    DEVICE_CODE_PATH,
    TOKEN_PATH,
    endpoint,
    post_form,
    token_pair,
)

logger = logging.getLogger(__name__)

DEFAULT_SCOPE: Final[str] = "openid profile email offline_access"

_DENIED_ERRORS: Final[frozenset[str]] = frozenset({"access_denied"})
_EXPIRED_ERRORS: Final[frozenset[str]] = frozenset({"expired_token"})


def _print(message: str) -> None:
    print(message, flush=True)


class DeviceAuthorizationClient:
    """Drives one device-code login attempt at a time.

    Blocking and single-threaded: ``login`` returns only when the flow has
    reached a terminal state.

    Attributes:
        state: Current DeviceFlowState of the last (or running) attempt.
    """

    def __init__(
        self,
        domain: str,
        client_id: str,
        audience: str,
        *,
        scope: str = DEFAULT_SCOPE,
        session: requests.Session | None = None,
        timeout: float = 10.0,
        open_browser: bool = True,
        notify: Callable[[str], None] = _print,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._device_code_url = endpoint(domain, DEVICE_CODE_PATH)
        self._token_url = endpoint(domain, TOKEN_PATH)
        self._client_id = client_id
        self._audience = audience
        self._scope = scope
        self._session = session or requests.Session()
        self._timeout = timeout
        self._open_browser = open_browser
        self._notify = notify
        self._sleep = sleep
        self._clock = clock
        self.state = DeviceFlowState.REQUESTING

    def _fail(self, state: DeviceFlowState, error: Exception) -> Exception:
        self.state = state
        logger.debug("Device flow ended in %s: %s", state.value, error)
        return error

    def request_device_code(self) -> DeviceSession:
        """Ask the provider for a device/user code pair.

        Raises:
            TransportError: The request failed or the answer is incomplete.
        """
        self.state = DeviceFlowState.REQUESTING
        try:
            body = post_form(
                self._session,
                self._device_code_url,
                {
                    "client_id": self._client_id,
                    "audience": self._audience,
                    "scope": self._scope,
                },
                timeout=self._timeout,
            )
            session = _device_session(body)
        except TransportError as e:
            self._fail(DeviceFlowState.TRANSPORT_ERROR, e)
            raise

        self.state = DeviceFlowState.AWAITING_USER
        return session

    def prompt_user(self, session: DeviceSession) -> None:
        self._notify(
            f"Go to {session.verification_uri} and enter the code: {session.user_code}"
        )
        if not self._open_browser:
            return
        try:
            webbrowser.open(session.verification_uri_complete)
        except webbrowser.Error as e:
            logger.info("Could not open a browser: %s", e)

    def poll(self, session: DeviceSession) -> TokenPair:
        """Poll the token endpoint until the flow reaches a terminal state.

        Raises:
            DeviceCodeExpired: ``session.expires_in`` elapsed, or the
                provider reported the code expired. No further polls.
            AccessDenied: The user declined.
            TransportError: A poll failed on the network or HTTP level, or
                the token response was malformed.
        """
        self.state = DeviceFlowState.POLLING
        started = self._clock()
        data = {
            "grant_type": DEVICE_CODE_GRANT,
            "device_code": session.device_code,
            "client_id": self._client_id,
        }

        while True:
            if self._clock() - started >= session.expires_in:
                raise self._fail(
                    DeviceFlowState.EXPIRED,
                    DeviceCodeExpired(f"Device code expired after {session.expires_in}s"),
                )

            logger.debug("Polling for token")
            try:
                body = post_form(
                    self._session,
                    self._token_url,
                    data,
                    timeout=self._timeout,
                    accept_client_errors=True,
                )
                pair = token_pair(body)
            except TransportError as e:
                self._fail(DeviceFlowState.TRANSPORT_ERROR, e)
                raise

            if pair is not None:
                self.state = DeviceFlowState.SUCCEEDED
                return pair

            error = body.get("error")
            if error in _DENIED_ERRORS:
                raise self._fail(
                    DeviceFlowState.DENIED,
                    AccessDenied(body.get("error_description") or "Authorization denied"),
                )
            if error in _EXPIRED_ERRORS:
                raise self._fail(
                    DeviceFlowState.EXPIRED,
                    DeviceCodeExpired(body.get("error_description") or "Device code expired"),
                )

            self._sleep(session.interval)

    def login(self) -> TokenPair:
        """Run the whole flow: request, prompt, poll."""
        session = self.request_device_code()
        self.prompt_user(session)
        return self.poll(session)


def _device_session(body: dict[str, Any]) -> DeviceSession:
    try:
        return DeviceSession(
            device_code=str(body["device_code"]),
            user_code=str(body["user_code"]),
            verification_uri=str(body["verification_uri"]),
            verification_uri_complete=str(
                body.get("verification_uri_complete") or body["verification_uri"]
            ),
            expires_in=int(body["expires_in"]),
            interval=int(body.get("interval", 5)),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise TransportError(f"Incomplete device code response: {e}") from e
