"""Validated configuration for the eWeLink cloud client."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .const import (
    API_URLS,
    CONF_APP_ID,
    CONF_APP_SECRET,
    CONF_EMAIL,
    CONF_PASSWORD,
    CONF_REDIRECT_URL,
    CONF_REGION,
    DISPATCH_URLS,
)
from .errors import ConfigurationError, UnknownRegion
from .models import Credentials

_LOGGER = logging.getLogger(__name__)


def validate_region(region: str | None) -> str:
    """Return the region if supported.

    Raises:
        UnknownRegion: If the region has no API endpoint.

    """
    if region not in API_URLS:
        raise UnknownRegion(region)
    return region


def api_url(region: str | None) -> str:
    """Return the REST base URL for a region."""
    return API_URLS[validate_region(region)]


def dispatch_url(region: str | None) -> str:
    """Return the real-time dispatch URL for a region."""
    return DISPATCH_URLS[validate_region(region)]


@dataclass(frozen=True)
class EwelinkConfig:
    """Static configuration; validated before any network attempt.

    Attributes:
        app_id: Application identifier from the developer platform.
        app_secret: Application secret used for request signing.
        redirect_url: OAuth redirect URL registered for the application.
        region: Account region (``cn``, ``us``, ``eu`` or ``as``).
        email: Account email or phone number.
        password: Account password.

    """

    app_id: str
    app_secret: str
    redirect_url: str
    region: str
    email: str | None = None
    password: str | None = None

    def __post_init__(self) -> None:
        if not self.app_id or not self.app_secret:
            error_msg = "Application id and secret are required"
            raise ConfigurationError(error_msg)
        validate_region(self.region)

    @classmethod
    def from_mapping(
        cls,
        data: Mapping[str, Any],
        overrides: Mapping[str, Any] | None = None,
    ) -> EwelinkConfig:
        """Build configuration from stored data, applying runtime overrides."""
        merged = {**data, **(overrides or {})}
        _LOGGER.debug(
            "Loading configuration for region %s", merged.get(CONF_REGION)
        )
        return cls(
            app_id=merged.get(CONF_APP_ID, ""),
            app_secret=merged.get(CONF_APP_SECRET, ""),
            redirect_url=merged.get(CONF_REDIRECT_URL, ""),
            region=merged.get(CONF_REGION, ""),
            email=merged.get(CONF_EMAIL),
            password=merged.get(CONF_PASSWORD),
        )

    def with_region(self, region: str) -> EwelinkConfig:
        """Return a copy bound to another region (e.g. from an OAuth redirect)."""
        return EwelinkConfig(
            app_id=self.app_id,
            app_secret=self.app_secret,
            redirect_url=self.redirect_url,
            region=region,
            email=self.email,
            password=self.password,
        )

    @property
    def credentials(self) -> Credentials:
        return Credentials(
            app_id=self.app_id,
            app_secret=self.app_secret,
            account=self.email,
            password=self.password,
            region=self.region,
        )

    @property
    def api_url(self) -> str:
        return api_url(self.region)

    @property
    def dispatch_url(self) -> str:
        return dispatch_url(self.region)
