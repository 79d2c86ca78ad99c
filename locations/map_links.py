"""Coordinate extraction from Google Maps share links."""
import logging
import re
import time
from typing import Optional
from urllib.parse import parse_qs, urlparse

import requests

from processor.models import Coordinates

logger = logging.getLogger(__name__)

COORDINATE_PATTERN = re.compile(r'(-?\d+\.\d+),(-?\d+\.\d+)')
AT_COORDINATE_PATTERN = re.compile(r'@(-?\d+\.\d+),(-?\d+\.\d+)')

SHORT_LINK_HOST = 'maps.app.goo.gl'
FULL_LINK_MARKER = 'google.com/maps'


class CoordinateParseError(ValueError):
    """A map link did not contain usable coordinates."""


def _to_coordinates(latitude: str, longitude: str) -> Coordinates:
    try:
        lat = float(latitude)
        lon = float(longitude)
    except ValueError as e:
        raise CoordinateParseError(f"Not a coordinate pair: {latitude},{longitude}") from e
    if not (-90 <= lat <= 90 and -180 <= lon <= 180):
        raise CoordinateParseError(f"Coordinates out of range: {lat},{lon}")
    return Coordinates(latitude=lat, longitude=lon)


def _parse_short_link(url: str) -> Coordinates:
    parts = url.split('@', 1)
    if len(parts) < 2:
        raise CoordinateParseError("Short link has no @lat,lon fragment")
    values = parts[1].split(',')
    if len(values) < 2:
        raise CoordinateParseError("Short link fragment is not lat,lon")
    return _to_coordinates(values[0].strip(), values[1].strip())


def _parse_full_link(url: str) -> Coordinates:
    match = AT_COORDINATE_PATTERN.search(url)
    if match:
        return _to_coordinates(match.group(1), match.group(2))

    query = parse_qs(urlparse(url).query).get('q')
    if query:
        match = COORDINATE_PATTERN.search(query[0])
        if match:
            return _to_coordinates(match.group(1), match.group(2))

    raise CoordinateParseError("No coordinates in path or q= parameter")


def extract_coordinates(url: Optional[str]) -> Optional[Coordinates]:
    """
    Recover latitude/longitude from a map-share URL.

    Shortened links carry the pair after "@". Full google.com/maps links
    carry it after "@" in the path or as "lat,lon" inside the q= query
    parameter. Any other URL yields None.

    Args:
        url: Location URL from the event form

    Returns:
        Coordinates, or None when no pattern matches
    """
    if not url:
        return None

    if SHORT_LINK_HOST in url:
        try:
            return _parse_short_link(url)
        except CoordinateParseError as e:
            logger.debug(f"Short link parse failed for '{url}': {e}")

    if FULL_LINK_MARKER not in url:
        logger.warning(f"Not a Google Maps link, no coordinates: '{url}'")
        return None

    try:
        return _parse_full_link(url)
    except (CoordinateParseError, ValueError) as e:
        logger.warning(f"Could not extract coordinates from '{url}': {e}")
        return None


class MapLinkResolver:
    """Follows shortened map links to the full URL that carries coordinates."""

    def __init__(self, timeout: int = 10, max_retries: int = 3):
        """
        Initialize the resolver.

        Args:
            timeout: HTTP request timeout in seconds (default: 10)
            max_retries: Attempts before giving up (default: 3)
        """
        self.timeout = timeout
        self.max_retries = max_retries

    def resolve(self, url: str) -> Optional[Coordinates]:
        """
        Resolve a link by following redirects, then extract coordinates.

        Args:
            url: Location URL, usually a maps.app.goo.gl short link

        Returns:
            Coordinates, or None when resolution or extraction fails
        """
        try:
            final_url = self._follow_redirects(url)
        except requests.RequestException as e:
            logger.warning(f"Could not resolve map link '{url}': {e}")
            return None

        logger.info(f"Resolved map link {url} -> {final_url}")
        return extract_coordinates(final_url)

    def _follow_redirects(self, url: str) -> str:
        """
        Request the link with retry and exponential backoff.

        Raises:
            requests.RequestException: If all retry attempts fail
        """
        base_delay = 1  # seconds

        for attempt in range(self.max_retries):
            try:
                logger.info(f"Resolving map link (attempt {attempt + 1}/{self.max_retries})")
                response = requests.get(
                    url,
                    allow_redirects=True,
                    timeout=self.timeout
                )
                response.raise_for_status()
                return response.url

            except requests.RequestException as e:
                if attempt < self.max_retries - 1:
                    delay = base_delay * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.max_retries} retry attempts failed. Last error: {e}"
                    )
                    raise
