"""Event check-in verification exports."""

from .geo import EARTH_RADIUS_METERS, GeoPoint, haversine_meters  # noqa: F401
from .verifier import CheckinPayload, CheckinRejection, CheckinResult, CheckinVerifier  # noqa: F401
