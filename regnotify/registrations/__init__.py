"""Registration stage writer and unsubscribe service."""

from .service import RegistrationStageService

__all__ = ["RegistrationStageService"]
