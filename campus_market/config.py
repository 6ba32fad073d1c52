import os
import logging
from typing import Mapping, Optional

from .pydantic_compat import BaseModel, Field

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


class MarketConfig(BaseModel):
    """
    Runtime configuration for a marketplace client.

    Every value can come from the environment through :meth:`from_env`; the
    defaults describe a local run against the emulators.
    """

    project_id: str = "student-market"
    database: Optional[str] = None
    emulator_host: Optional[str] = None
    api_key: Optional[str] = None
    auth_emulator_host: Optional[str] = None
    campus_email_domain: str = "@s.kyushu-u.ac.jp"
    # JSON file holding the device-local unread watermarks; None keeps them in memory
    watermark_path: Optional[str] = None
    # Category membership, price sign and self-purchase checks (off = observed baseline)
    strict_listing_checks: bool = False
    log_level: str = Field(default="INFO")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "MarketConfig":
        env = os.environ if environ is None else environ

        def _get(name: str) -> Optional[str]:
            # CI expands unset secrets to "", treat that as missing
            value = env.get(name, "").strip()
            return value or None

        values = {
            "project_id": _get("GOOGLE_CLOUD_PROJECT"),
            "database": _get("DATABASE"),
            "emulator_host": _get("FIRESTORE_EMULATOR_HOST"),
            "api_key": _get("FIREBASE_API_KEY"),
            "auth_emulator_host": _get("FIREBASE_AUTH_EMULATOR_HOST"),
            "campus_email_domain": _get("CAMPUS_MARKET_EMAIL_DOMAIN"),
            "watermark_path": _get("CAMPUS_MARKET_WATERMARKS"),
            "log_level": _get("CAMPUS_MARKET_LOG_LEVEL"),
        }
        strict = _get("CAMPUS_MARKET_STRICT_CHECKS")
        if strict is not None:
            values["strict_listing_checks"] = strict.lower() in _TRUTHY

        config = cls(**{k: v for k, v in values.items() if v is not None})
        logger.debug(
            f"Config loaded: project={config.project_id} "
            f"emulator={config.emulator_host} strict={config.strict_listing_checks}"
        )
        return config
