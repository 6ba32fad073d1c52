"""
Error taxonomy shared by the stores, the lifecycle controller and the chat gate.

Every store adapter converts backend failures into one of these classes, so
views only ever have to catch :class:`MarketError`.
"""

import logging
from functools import wraps

from google.api_core import exceptions as gcp_exceptions

logger = logging.getLogger(__name__)


class MarketError(Exception):
    """Base class for every user-facing marketplace failure."""

    notice = "処理に失敗しました"

    def __init__(self, message: str = "", notice: str = None):
        super().__init__(message or self.notice)
        if notice is not None:
            self.notice = notice


class ValidationError(MarketError):
    """Missing listing fields, empty message text, non-campus sign-up email."""

    notice = "入力漏れがあります"


class PermissionDenied(MarketError):
    """The caller is not allowed to perform the action on the listing's current state."""

    notice = "この操作は許可されていません"


class StoreUnavailable(MarketError):
    """Any failure reported by the identity, listing or message backend."""


class NotFound(MarketError):
    """The listing vanished, typically deleted concurrently."""

    notice = "商品が見つかりません"


def translate_store_errors(operation: str, conditional: bool = False):
    """
    Decorator for async store methods: map Google API errors onto the
    marketplace taxonomy.

    With ``conditional=True`` the method is a conditional write, and
    ``FailedPrecondition``/``Aborted`` mean the precondition no longer holds;
    they are reported as :class:`PermissionDenied`.  Elsewhere they are
    backend failures (a missing index, for one) like any other.
    """

    def decorator(f):
        @wraps(f)
        async def wrapper(*args, **kwargs):
            try:
                return await f(*args, **kwargs)
            except gcp_exceptions.NotFound as exc:
                raise NotFound(f"{operation}: {exc.message}") from exc
            except (gcp_exceptions.FailedPrecondition, gcp_exceptions.Aborted) as exc:
                if not conditional:
                    logger.warning(f"Store call failed: {operation}: {exc}")
                    raise StoreUnavailable(f"{operation}: {exc.message}") from exc
                raise PermissionDenied(
                    f"{operation}: document changed concurrently"
                ) from exc
            except gcp_exceptions.GoogleAPICallError as exc:
                logger.warning(f"Store call failed: {operation}: {exc}")
                raise StoreUnavailable(f"{operation}: {exc.message}") from exc
            except gcp_exceptions.GoogleAPIError as exc:
                # RetryError and friends carry no status code
                logger.warning(f"Store call failed: {operation}: {exc}")
                raise StoreUnavailable(f"{operation}: {exc}") from exc

        return wrapper

    return decorator
