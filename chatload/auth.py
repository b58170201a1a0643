"""
Session acquisition against the chat backend's auth endpoints.

Every actor needs a bearer token before it can open a WebSocket.  This
module wraps the login → (register → login) fallback, the CSRF cookie
extraction, and the deterministic credential pool that lets capacity
runs reuse pre-registered accounts instead of paying password-hashing
cost on every iteration.

Key Concepts Demonstrated:
- Classifying HTTP failures so only "invalid credentials" triggers the
  register fallback; everything else is fatal for the call
- Tolerating ``USERNAME_EXISTS`` / ``EMAIL_EXISTS`` as non-fatal
- Collision-free identity generation using timestamp + random suffix
- A read-only, index-addressed credential pool loaded once per run
"""

from __future__ import annotations

import json
import logging
import random
import re
import string
import time
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable
from urllib.parse import urlsplit

import requests

from chatload.errors import AuthFailure, InvalidCredentials
from chatload.models import Credentials, Session

logger = logging.getLogger(__name__)

DEFAULT_PASSWORD = "Password123!"
USER_EXISTS_CODES = frozenset({"USERNAME_EXISTS", "EMAIL_EXISTS"})

_CSRF_COOKIE_RE = re.compile(r"csrf_token=([^;,\s]+)")


class RegistrationOutcome(str, Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


class CredentialPool:
    """
    Fixed, ordered set of test accounts addressed by actor index.

    The pool is populated once before the run and never modified, so
    concurrent reads from many actors need no locking.  An empty pool
    is valid; callers then fall back to freshly generated credentials.
    """

    def __init__(self, entries: Iterable[Credentials] = ()):
        self._entries: tuple[Credentials, ...] = tuple(entries)

    @classmethod
    def from_file(cls, path: Path | str) -> "CredentialPool":
        """
        Load a JSON array of ``{username, email, password, nickname}``.

        A missing or malformed file yields an empty pool rather than an
        error, matching the "generate users on the fly" fallback.
        """
        path = Path(path)
        try:
            with path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except FileNotFoundError:
            logger.info("No users file at %s; credentials will be generated", path)
            return cls()
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable users file %s: %s", path, exc)
            return cls()

        if not isinstance(data, list):
            logger.warning("Users file %s is not a JSON array; ignoring it", path)
            return cls()

        entries = []
        for item in data:
            try:
                entries.append(Credentials.from_dict(item))
            except (KeyError, TypeError):
                logger.warning("Skipping malformed user entry in %s", path)
        return cls(entries)

    def for_actor(self, actor_index: int) -> Credentials | None:
        """Return the entry for *actor_index* (wrapping around), or ``None`` if empty."""
        if not self._entries:
            return None
        return self._entries[actor_index % len(self._entries)]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)


def generate_credentials(prefix: str = "user") -> Credentials:
    """
    Generate unique credentials to avoid collisions across runs.

    Combines a millisecond timestamp with a short random suffix so
    parallel workers never produce duplicate usernames.
    """
    ts = int(time.time() * 1000)
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    username = f"{prefix}_{ts}_{suffix}"
    return Credentials(
        username=username,
        email=f"{username}@example.com",
        password=DEFAULT_PASSWORD,
        nickname=f"User {suffix}",
    )


def _safe_json(response: Any) -> dict[str, Any] | None:
    """Return the JSON body as a dict, or ``None`` when it is not a JSON object."""
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict):
        return data
    return None


def _is_success(response: Any, body: dict[str, Any] | None) -> bool:
    return response.status_code == 200 and body is not None and body.get("status") == "success"


def _is_rejected_login(response: Any, body: dict[str, Any] | None) -> bool:
    return response.status_code in (400, 401) and body is not None and body.get("status") == "error"


def _is_existing_user(response: Any, body: dict[str, Any] | None) -> bool:
    return (
        response.status_code == 400
        and body is not None
        and body.get("status") == "error"
        and body.get("code") in USER_EXISTS_CODES
    )


def _access_token(body: dict[str, Any] | None) -> str | None:
    data = body.get("data") if body else None
    token = data.get("access_token") if isinstance(data, dict) else None
    return token if isinstance(token, str) and token else None


def _has_access_token(response: Any, body: dict[str, Any] | None) -> bool:
    return _is_success(response, body) and _access_token(body) is not None


ResponseCheck = Callable[[Any, "dict[str, Any] | None"], bool]


def _post(
    http: requests.Session,
    url: str,
    payload: dict[str, Any],
    timeout: float,
    *,
    catch_response: bool = False,
    expected: Iterable[ResponseCheck] = (),
) -> Any:
    """
    POST *payload* as JSON.

    With ``catch_response=True`` the request goes through Locust's
    ``catch_response`` protocol: a response matching one of *expected*
    is marked as a success, anything else as a failure, so the
    register fallback does not show up as errors in Locust's stats.
    """
    try:
        if catch_response:
            with http.post(
                url,
                json=payload,
                timeout=timeout,
                name=urlsplit(url).path,
                catch_response=True,
            ) as response:
                body = _safe_json(response)
                if any(check(response, body) for check in expected):
                    response.success()
                else:
                    response.failure(f"Unexpected status {response.status_code} from {url}")
        else:
            response = http.post(url, json=payload, timeout=timeout)
    except requests.RequestException as exc:
        raise AuthFailure(f"Network error calling {url}: {exc}") from exc

    # Locust's HttpSession reports connection errors as status 0 instead of raising.
    if not response.status_code:
        raise AuthFailure(f"No response from {url}")
    return response


def extract_csrf_token(response: Any) -> str | None:
    """
    Read the ``csrf_token`` cookie set by a successful login.

    The response cookie jar is checked first; the raw ``Set-Cookie``
    header is parsed as a fallback for clients that do not populate
    a jar.
    """
    cookies = getattr(response, "cookies", None)
    if cookies is not None:
        token = cookies.get("csrf_token")
        if token:
            return token

    header = response.headers.get("Set-Cookie") if response.headers else None
    if header:
        match = _CSRF_COOKIE_RE.search(header)
        if match:
            return match.group(1)
    return None


def register_user(
    http: requests.Session,
    base_url: str,
    credentials: Credentials,
    *,
    timeout: float = 10.0,
    catch_response: bool = False,
) -> RegistrationOutcome:
    """
    Register *credentials* through ``POST /register``.

    With *catch_response* the exists codes are reported to Locust as
    successes.

    Returns:
        ``CREATED`` on ``200 {"status": "success"}``, or
        ``ALREADY_EXISTS`` when the backend answers 400 with
        ``USERNAME_EXISTS`` / ``EMAIL_EXISTS``.

    Raises:
        AuthFailure: For any other response or a network error.
    """
    response = _post(
        http,
        f"{base_url}/register",
        credentials.register_payload(),
        timeout,
        catch_response=catch_response,
        expected=(_is_success, _is_existing_user),
    )
    body = _safe_json(response)

    if _is_success(response, body):
        logger.info("Registered user email=%s username=%s", credentials.email, credentials.username)
        return RegistrationOutcome.CREATED

    if _is_existing_user(response, body):
        logger.info("User already exists email=%s code=%s", credentials.email, body.get("code"))
        return RegistrationOutcome.ALREADY_EXISTS

    raise AuthFailure(
        f"Registration failed for {credentials.email}: status={response.status_code}",
        status_code=response.status_code,
    )


def login(
    http: requests.Session,
    base_url: str,
    credentials: Credentials,
    *,
    timeout: float = 10.0,
    catch_response: bool = False,
    expect_rejection: bool = False,
) -> tuple[str, str | None]:
    """
    Log in through ``POST /login``.

    Args:
        catch_response: Report the outcome through Locust's
            ``catch_response`` protocol.
        expect_rejection: Count an invalid-credentials answer as a
            Locust success; set for the first login of the register
            fallback.

    Returns:
        ``(access_token, csrf_token)``; the CSRF token may be ``None``
        if the backend did not set the cookie.

    Raises:
        InvalidCredentials: 400/401 with ``{"status": "error"}``.
        AuthFailure: Any other status, a malformed body, or a missing
            access token.
    """
    expected: tuple[ResponseCheck, ...] = (_has_access_token,)
    if expect_rejection:
        expected += (_is_rejected_login,)
    response = _post(
        http,
        f"{base_url}/login",
        credentials.login_payload(),
        timeout,
        catch_response=catch_response,
        expected=expected,
    )
    body = _safe_json(response)

    if body is None:
        raise AuthFailure(
            f"Login response is not a JSON object (status={response.status_code})",
            status_code=response.status_code,
        )

    if _is_rejected_login(response, body):
        raise InvalidCredentials(
            f"Invalid credentials for {credentials.email}",
            status_code=response.status_code,
        )

    if not _is_success(response, body):
        raise AuthFailure(
            f"Unexpected login response status={response.status_code}",
            status_code=response.status_code,
        )

    token = _access_token(body)
    if token is None:
        raise AuthFailure("Login response missing access_token", status_code=response.status_code)

    csrf_token = extract_csrf_token(response)
    if csrf_token is None:
        logger.warning("Login for %s did not set a csrf_token cookie", credentials.email)
    return token, csrf_token


def acquire_session(
    base_url: str,
    credentials: Credentials | None = None,
    *,
    pool: CredentialPool | None = None,
    actor_index: int = 0,
    http: requests.Session | None = None,
    timeout: float = 10.0,
    catch_response: bool = False,
) -> Session:
    """
    Return an authenticated :class:`~chatload.models.Session`.

    Credentials come from the explicit argument, else from *pool* at
    *actor_index*, else are freshly generated.  Login is attempted
    first; only an :class:`InvalidCredentials` rejection leads to one
    registration and exactly one more login.  No other retries happen
    here, since retry policy belongs to the scenario.

    Args:
        base_url: Auth provider base URL (API prefix included).
        credentials: Explicit identity to use.
        pool: Deterministic pool consulted when *credentials* is None.
        actor_index: Index into *pool*.
        http: HTTP session to send requests with; Locust users pass
            ``self.client``.  A private ``requests.Session`` is used
            when omitted.
        timeout: Per-request timeout in seconds.
        catch_response: Set when *http* is a Locust ``HttpSession``;
            the rejected first login and an already-registered answer
            are then recorded as successes, not request failures.

    Raises:
        AuthFailure: If a usable session could not be obtained.
    """
    base_url = base_url.rstrip("/")
    if credentials is None and pool is not None:
        credentials = pool.for_actor(actor_index)
    if credentials is None:
        credentials = generate_credentials()

    owns_http = http is None
    if http is None:
        http = requests.Session()

    try:
        try:
            token, csrf_token = login(
                http,
                base_url,
                credentials,
                timeout=timeout,
                catch_response=catch_response,
                expect_rejection=True,
            )
        except InvalidCredentials:
            logger.info("Login rejected for %s; registering and retrying once", credentials.email)
            register_user(http, base_url, credentials, timeout=timeout, catch_response=catch_response)
            try:
                token, csrf_token = login(
                    http, base_url, credentials, timeout=timeout, catch_response=catch_response
                )
            except InvalidCredentials as exc:
                raise AuthFailure(
                    f"Credentials for {credentials.email} rejected after registration",
                    status_code=exc.status_code,
                ) from exc
    finally:
        if owns_http:
            http.close()

    return Session(
        token=token,
        credentials=credentials,
        base_url=base_url,
        csrf_token=csrf_token,
    )
