"""Environment configuration for the events backend."""
import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAP_STYLE = 'mapbox://styles/mapbox/dark-v11'

# Campus center (longitude, latitude) used when no user position is known
DEFAULT_MAP_CENTER = (-76.9426, 38.9869)


def _flag(value: Optional[str]) -> bool:
    return (value or '').strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass(frozen=True)
class AppConfig:
    """Settings read from environment variables."""
    table_name: str = 'events'
    bucket_name: str = 'event-images'
    image_base_url: Optional[str] = None
    mapbox_access_token: Optional[str] = None
    map_style: str = DEFAULT_MAP_STYLE
    log_level: str = 'INFO'
    timeout_seconds: int = 10
    resolve_short_links: bool = False
    timezone: str = 'America/New_York'

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'AppConfig':
        """
        Build the configuration from the environment.

        Args:
            environ: Mapping to read, defaults to os.environ

        Returns:
            AppConfig instance
        """
        env = os.environ if environ is None else environ

        return cls(
            table_name=env.get('TABLE_NAME', 'events'),
            bucket_name=env.get('BUCKET_NAME', 'event-images'),
            image_base_url=env.get('IMAGE_BASE_URL') or None,
            mapbox_access_token=env.get('MAPBOX_ACCESS_TOKEN') or None,
            map_style=env.get('MAP_STYLE', DEFAULT_MAP_STYLE),
            log_level=env.get('LOG_LEVEL', 'INFO'),
            timeout_seconds=int(env.get('TIMEOUT_SECONDS', '10')),
            resolve_short_links=_flag(env.get('RESOLVE_SHORT_LINKS')),
            timezone=env.get('TIMEZONE', 'America/New_York')
        )

    @property
    def map_enabled(self) -> bool:
        return bool(self.mapbox_access_token)

    def map_settings(self) -> dict:
        """
        Map widget settings handed to the web client.

        A missing access token disables the map instead of failing.
        """
        if not self.map_enabled:
            logger.warning("MAPBOX_ACCESS_TOKEN is not set, map is disabled")
            return {'enabled': False}

        return {
            'enabled': True,
            'access_token': self.mapbox_access_token,
            'style': self.map_style,
            'center': list(DEFAULT_MAP_CENTER),
            'zoom': 16.25,
            'pitch': 65,
            'bearing': 45,
        }
