"""Runtime settings resolution (payment environment, maturation window)."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from commission_engine.config import ENVIRONMENTS, Settings
from commission_engine.models import AppSetting

logger = logging.getLogger(__name__)

PAYMENT_ENVIRONMENT_KEY = "payment_environment"
MATURATION_DAYS_KEY = "commission_days_to_available"


class EnvironmentResolver:
    """Resolves per-request runtime settings.

    ``app_setting`` rows maintained by the admin surface take precedence
    over process configuration.
    """

    def __init__(self, session: Session, settings: Settings):
        self.session = session
        self.settings = settings

    def _setting(self, key: str) -> str | None:
        return self.session.scalar(select(AppSetting.value).where(AppSetting.key == key))

    def active_environment(self) -> str:
        """The active payment environment (``test`` or ``production``)."""
        value = self._setting(PAYMENT_ENVIRONMENT_KEY)
        if value is not None:
            value = value.strip().lower()
            if value in ENVIRONMENTS:
                return value
            logger.warning("Ignoring invalid %s setting %r", PAYMENT_ENVIRONMENT_KEY, value)
        return self.settings.payment_environment

    def maturation_days(self) -> int:
        """Days between payment and commission availability."""
        value = self._setting(MATURATION_DAYS_KEY)
        if value is not None:
            try:
                days = int(value)
            except ValueError:
                days = -1
            if days >= 0:
                return days
            logger.warning("Ignoring invalid %s setting %r", MATURATION_DAYS_KEY, value)
        return self.settings.commission_maturation_days

    def webhook_secret(self, environment: str) -> str | None:
        """Signing secret for an environment."""
        return self.settings.webhook_secret_for(environment)
