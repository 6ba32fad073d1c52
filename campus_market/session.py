import logging
from typing import Callable, Dict, Optional

from .errors import PermissionDenied
from .identity import IdentityProvider
from .models import Identity
from .subscriptions import Subscription

logger = logging.getLogger(__name__)


class Session:
    """
    The signed-in identity of this client, passed explicitly to every view.

    The session holds the only auth-state subscription against the
    provider and fans changes out to its own observers.
    """

    def __init__(self, provider: IdentityProvider):
        self.provider = provider
        self._identity: Optional[Identity] = None
        self._observers: Dict[Subscription, Callable[[Optional[Identity]], None]] = {}
        self._auth_subscription = provider.observe_auth_state(self._on_auth_state)

    def _on_auth_state(self, identity: Optional[Identity]) -> None:
        changed = identity != self._identity
        self._identity = identity
        if changed:
            logger.debug(f"Session identity -> {identity.uid if identity else None}")
            for callback in list(self._observers.values()):
                callback(identity)

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def signed_in(self) -> bool:
        return self._identity is not None

    def require_identity(self) -> Identity:
        if self._identity is None:
            raise PermissionDenied("sign-in required", notice="ログインしてください")
        return self._identity

    def observe(self, callback: Callable[[Optional[Identity]], None]) -> Subscription:
        subscription = Subscription(name="session")
        self._observers[subscription] = subscription.guard(callback)
        subscription.bind(lambda: self._observers.pop(subscription, None))
        return subscription

    async def sign_in(self, email: str, password: str) -> Identity:
        return await self.provider.sign_in(email, password)

    async def sign_up(self, email: str, password: str, display_name: Optional[str] = None) -> Identity:
        return await self.provider.sign_up(email, password, display_name=display_name)

    async def sign_out(self) -> None:
        await self.provider.sign_out()

    async def update_profile(self, display_name: Optional[str] = None, photo_url: Optional[str] = None) -> Identity:
        return await self.provider.update_profile(display_name=display_name, photo_url=photo_url)

    def close(self) -> None:
        self._auth_subscription.release()
        self._observers.clear()
