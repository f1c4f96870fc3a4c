"""
Location Resolver
=================

Turns the coordinates a client attaches to a message into a place name
such as "Indiranagar, Bengaluru, Karnataka, India".

Only the resolved name ever reaches the model or the search tool. Raw
coordinates stay inside this module and the search adapter (and the
adapter only appends them when explicitly configured to).

Uses OpenStreetMap's Nominatim reverse endpoint over httpx. Any failure
(network, HTTP status, empty address) resolves to "your location".
"""

import httpx

from medcompanion.utils.logger import Logger

logger = Logger("Location")

DEFAULT_LOCATION_NAME = "your location"

# Words that mark a search as geographically scoped
GEO_TERMS = ("near", "hospital", "clinic", "pharmacy", "doctor", "medical")

# Most specific first; the first present key of each level is used
ADDRESS_LEVELS = (
    ("suburb", "neighbourhood"),
    ("city", "town", "village"),
    ("state",),
    ("country",),
)


def format_address(address: dict) -> str:
    """
    Compose a place name from a Nominatim address block.

    Absent levels are skipped; an empty result means nothing was usable.
    """
    parts = []
    for keys in ADDRESS_LEVELS:
        for key in keys:
            value = address.get(key)
            if isinstance(value, str) and value.strip():
                parts.append(value.strip())
                break
    return ", ".join(parts)


def is_geo_scoped(query: str) -> bool:
    """Heuristic: does this search query ask about nearby places?"""
    lowered = query.lower()
    return any(term in lowered for term in GEO_TERMS)


class LocationResolver:
    """
    Reverse geocoder.

    Example:
        resolver = LocationResolver(url, user_agent="MedicalCompanionApp/1.0")
        name = await resolver.resolve(12.97, 77.64)
    """

    def __init__(
        self,
        url: str,
        user_agent: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0
    ):
        self.url = url
        self.user_agent = user_agent
        self._http = http_client
        self._timeout = timeout

    async def _fetch(self, params: dict) -> httpx.Response:
        headers = {"User-Agent": self.user_agent}
        if self._http is not None:
            return await self._http.get(self.url, params=params, headers=headers)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.get(self.url, params=params, headers=headers)

    async def resolve(self, lat: float, long: float) -> str:
        """
        Resolve coordinates to a human-readable place name.

        Returns:
            The place name, or "your location" on any failure
        """
        params = {
            "format": "json",
            "lat": lat,
            "lon": long,
            "zoom": 14,
            "addressdetails": 1,
        }

        try:
            response = await self._fetch(params)
            if response.status_code >= 400:
                logger.warning(f"Reverse geocoding failed: HTTP {response.status_code}")
                return DEFAULT_LOCATION_NAME

            data = response.json()
            address = data.get("address") if isinstance(data, dict) else None
            name = format_address(address) if isinstance(address, dict) else ""

        except Exception as e:
            logger.error("Reverse geocoding error", e)
            return DEFAULT_LOCATION_NAME

        if not name:
            logger.debug("Reverse geocoding returned no usable address")
            return DEFAULT_LOCATION_NAME

        logger.debug(f"Resolved location: {name}")
        return name
