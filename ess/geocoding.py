import httpx
import structlog

from .config import settings
from .errors import DependencyError

logger = structlog.get_logger("ess.geocoding")


def reverse_geocode(latitude: float, longitude: float) -> str | None:
    """Resolve a coordinate to a display address; ``None`` when no geocoder is configured."""
    if not settings.GEOCODER_URL:
        return None
    try:
        with httpx.Client(timeout=settings.GEOCODER_TIMEOUT_SECONDS) as client:
            response = client.get(
                settings.GEOCODER_URL,
                params={"lat": latitude, "lon": longitude, "format": "json"},
                headers={"User-Agent": "ess-portal"},
            )
            response.raise_for_status()
            payload = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("reverse_geocode_failed", error=str(exc))
        raise DependencyError("Location lookup is unavailable, please retry") from exc
    address = payload.get("display_name") if isinstance(payload, dict) else None
    return (address or "").strip()[:300] or None
