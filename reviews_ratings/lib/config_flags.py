"""
Review moderation flags and the settings provider the review service reads.

The store admin controls two toggles:
- require_approval: only approved reviews count towards the average rating
- auto_approve: approval state given to new reviews; when unset a new
  review is approved exactly when approval is not required
"""
from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel, Field

from reviews_ratings.lib.logging import get_logger
from reviews_ratings.lib.settings import settings


logger = get_logger(__name__)


class AppSettings(BaseModel):
    """Moderation settings for the review service."""

    require_approval: bool = Field(
        default=False,
        description="Restrict the average rating to approved reviews"
    )
    auto_approve: Optional[bool] = Field(
        default=None,
        description="Approval state for new reviews (None: derived from require_approval)"
    )

    @property
    def default_approved(self) -> bool:
        """Approval state a new review gets when its creator did not set one."""
        if self.auto_approve is not None:
            return self.auto_approve
        return not self.require_approval

    class Config:
        json_schema_extra = {
            "example": {
                "require_approval": True,
                "auto_approve": False,
            }
        }


class SettingsProvider(ABC):
    """Source of the moderation settings."""

    @abstractmethod
    async def get_settings(self) -> AppSettings:
        """Return the current moderation settings."""
        pass


class ConfigSettingsProvider(SettingsProvider):
    """Settings provider backed by process configuration.

    Reads the environment-derived defaults unless they were overridden with
    ``set_review_flags``.
    """

    async def get_settings(self) -> AppSettings:
        return get_review_flags()


# Global configuration instance (can be overridden)
_review_flags: Optional[AppSettings] = None


def get_review_flags() -> AppSettings:
    """Get moderation flags, initialized from environment settings."""
    global _review_flags
    if _review_flags is None:
        _review_flags = AppSettings(
            require_approval=settings.require_approval,
            auto_approve=settings.auto_approve,
        )
        logger.info("Initialized review flags from settings", extra={
            "require_approval": _review_flags.require_approval,
            "auto_approve": _review_flags.auto_approve,
        })
    return _review_flags


def set_review_flags(flags: AppSettings) -> None:
    """Override moderation flags at runtime."""
    global _review_flags
    _review_flags = flags
    logger.info("Updated review flags", extra={
        "require_approval": flags.require_approval,
        "auto_approve": flags.auto_approve,
    })


def reset_review_flags() -> None:
    """Drop overrides so the next read comes from settings (useful for testing)."""
    global _review_flags
    _review_flags = None
