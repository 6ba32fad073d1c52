"""
Identity providers.

:class:`FirebaseAuthProvider` signs users in against Firebase Authentication
(the Identity Toolkit REST API, or its emulator).  :class:`InMemoryIdentityProvider`
keeps accounts in process for local runs and tests.  Both report auth-state
changes the way ``onAuthStateChanged`` does: a new observer is called at once
with the current identity, then on every sign-in, sign-out and profile change.
"""

import hashlib
import logging
import uuid
from typing import Callable, Dict, Optional

import httpx

from .errors import PermissionDenied, StoreUnavailable, ValidationError
from .models import Identity
from .subscriptions import Subscription

logger = logging.getLogger(__name__)

AuthCallback = Callable[[Optional[Identity]], None]

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"


def check_campus_email(email: str, domain_suffix: str) -> str:
    """Return the normalised address, or raise if it is outside the campus domain."""
    email = (email or "").strip()
    if not email.lower().endswith(domain_suffix.lower()):
        raise ValidationError(
            f"sign-up requires an address ending in {domain_suffix}",
            notice="九大アドレスが必要です",
        )
    return email


def check_display_name(display_name: Optional[str]) -> Optional[str]:
    if display_name is None:
        return None
    if not display_name.strip():
        raise ValidationError("display name must not be empty")
    return display_name


class IdentityProvider:
    """Auth-state bookkeeping shared by the concrete providers."""

    def __init__(self, campus_email_domain: str = "@s.kyushu-u.ac.jp"):
        self.campus_email_domain = campus_email_domain
        self._current: Optional[Identity] = None
        self._callbacks: Dict[Subscription, AuthCallback] = {}

    @property
    def current(self) -> Optional[Identity]:
        return self._current

    def observe_auth_state(self, callback: AuthCallback) -> Subscription:
        subscription = Subscription(name="auth")
        self._callbacks[subscription] = subscription.guard(callback)
        subscription.bind(lambda: self._callbacks.pop(subscription, None))
        callback(self._current)
        return subscription

    def _set_current(self, identity: Optional[Identity]) -> None:
        self._current = identity
        for callback in list(self._callbacks.values()):
            callback(identity)

    def _require_current(self) -> Identity:
        if self._current is None:
            raise PermissionDenied("sign-in required")
        return self._current

    async def sign_up(self, email: str, password: str, display_name: Optional[str] = None) -> Identity:
        email = check_campus_email(email, self.campus_email_domain)
        identity = await self._create_account(email, password)
        self._set_current(identity)
        if display_name and display_name.strip():
            identity = await self.update_profile(display_name=display_name)
        logger.info(f"Signed up {identity.uid}")
        return identity

    async def sign_in(self, email: str, password: str) -> Identity:
        identity = await self._authenticate(email.strip(), password)
        self._set_current(identity)
        logger.info(f"Signed in {identity.uid}")
        return identity

    async def sign_out(self) -> None:
        if self._current is not None:
            logger.info(f"Signed out {self._current.uid}")
        self._set_current(None)

    async def update_profile(self, display_name: Optional[str] = None, photo_url: Optional[str] = None) -> Identity:
        current = self._require_current()
        display_name = check_display_name(display_name)
        identity = await self._apply_profile(current, display_name, photo_url)
        self._set_current(identity)
        return identity

    async def _create_account(self, email: str, password: str) -> Identity:
        raise NotImplementedError

    async def _authenticate(self, email: str, password: str) -> Identity:
        raise NotImplementedError

    async def _apply_profile(self, current: Identity, display_name, photo_url) -> Identity:
        raise NotImplementedError


class FirebaseAuthProvider(IdentityProvider):
    """Email/password accounts in Firebase Authentication."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        campus_email_domain: str = "@s.kyushu-u.ac.jp",
        emulator_host: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(campus_email_domain)
        if emulator_host:
            self.base_url = f"http://{emulator_host}/identitytoolkit.googleapis.com/v1"
            # The emulator accepts any key
            self.api_key = api_key or "fake-api-key"
        else:
            if not api_key:
                raise ValueError("api_key is required outside the auth emulator")
            self.base_url = IDENTITY_TOOLKIT_URL
            self.api_key = api_key
        self._http = http_client or httpx.AsyncClient(timeout=10.0)
        self._id_token: Optional[str] = None

    @classmethod
    def from_config(cls, config, http_client: Optional[httpx.AsyncClient] = None) -> "FirebaseAuthProvider":
        return cls(
            api_key=config.api_key,
            campus_email_domain=config.campus_email_domain,
            emulator_host=config.auth_emulator_host,
            http_client=http_client,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _call(self, method: str, payload: dict) -> dict:
        url = f"{self.base_url}/accounts:{method}"
        try:
            response = await self._http.post(url, params={"key": self.api_key}, json=payload)
        except httpx.HTTPError as exc:
            logger.warning(f"Identity call {method} failed: {exc}")
            raise StoreUnavailable(f"accounts:{method}: {exc}") from exc

        if response.status_code >= 400:
            try:
                reason = response.json().get("error", {}).get("message", "")
            except ValueError:
                reason = response.text
            logger.warning(f"Identity call {method} rejected: {response.status_code} {reason}")
            raise StoreUnavailable(f"accounts:{method}: {reason or response.status_code}", notice=f"エラー: {reason}")
        return response.json()

    @staticmethod
    def _identity_from(data: dict, fallback: Optional[Identity] = None) -> Identity:
        def pick(key, attr):
            if key in data:
                return data[key] or None
            return getattr(fallback, attr) if fallback else None

        return Identity(
            uid=data.get("localId") or fallback.uid,
            display_name=pick("displayName", "display_name"),
            photo_url=pick("photoUrl", "photo_url"),
            email=pick("email", "email"),
        )

    async def _create_account(self, email: str, password: str) -> Identity:
        data = await self._call(
            "signUp", {"email": email, "password": password, "returnSecureToken": True}
        )
        self._id_token = data.get("idToken")
        return self._identity_from(data)

    async def _authenticate(self, email: str, password: str) -> Identity:
        data = await self._call(
            "signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        self._id_token = data.get("idToken")
        # signInWithPassword does not return the photo URL
        lookup = await self._call("lookup", {"idToken": self._id_token})
        users = lookup.get("users") or [{}]
        return self._identity_from({**data, **users[0]})

    async def _apply_profile(self, current: Identity, display_name, photo_url) -> Identity:
        payload = {"idToken": self._id_token, "returnSecureToken": True}
        if display_name is not None:
            payload["displayName"] = display_name
        if photo_url is not None:
            payload["photoUrl"] = photo_url
        data = await self._call("update", payload)
        self._id_token = data.get("idToken") or self._id_token
        return self._identity_from(data, fallback=current)

    async def sign_out(self) -> None:
        self._id_token = None
        await super().sign_out()


class InMemoryIdentityProvider(IdentityProvider):
    def __init__(self, campus_email_domain: str = "@s.kyushu-u.ac.jp"):
        super().__init__(campus_email_domain)
        self._accounts: Dict[str, dict] = {}

    @staticmethod
    def _hash(password: str) -> str:
        return hashlib.sha256(password.encode("utf-8")).hexdigest()

    async def _create_account(self, email: str, password: str) -> Identity:
        key = email.lower()
        if key in self._accounts:
            raise StoreUnavailable(f"{email} already registered", notice="エラー: EMAIL_EXISTS")
        identity = Identity(uid=uuid.uuid4().hex[:28], email=email)
        self._accounts[key] = {"password": self._hash(password), "identity": identity}
        return identity

    async def _authenticate(self, email: str, password: str) -> Identity:
        account = self._accounts.get(email.lower())
        if account is None or account["password"] != self._hash(password):
            raise StoreUnavailable("invalid credentials", notice="エラー: INVALID_LOGIN_CREDENTIALS")
        return account["identity"]

    async def _apply_profile(self, current: Identity, display_name, photo_url) -> Identity:
        updates = {}
        if display_name is not None:
            updates["display_name"] = display_name
        if photo_url is not None:
            updates["photo_url"] = photo_url
        identity = Identity(**{**_identity_values(current), **updates})
        self._accounts[(current.email or "").lower()]["identity"] = identity
        return identity


def _identity_values(identity: Identity) -> dict:
    return {
        "uid": identity.uid,
        "display_name": identity.display_name,
        "photo_url": identity.photo_url,
        "email": identity.email,
    }
