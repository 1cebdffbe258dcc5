"""
Location provider contract consumed by the role sessions.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ...models.location import Coordinates, validate_coordinates


class PermissionDenied(Exception):
    """Location access was refused"""
    pass


class LocationUnavailable(Exception):
    """No position fix could be obtained"""
    pass


class LocationProvider(ABC):
    """Device permission and position source"""

    @abstractmethod
    async def request_permission(self) -> bool:
        """Ask for location access; True when granted"""

    @abstractmethod
    async def current_position(self) -> Coordinates:
        """
        Current device position.

        Raises:
            LocationUnavailable: If no fix can be obtained
        """

    async def require_position(self) -> Coordinates:
        """Request permission and read the position in one step"""
        if not await self.request_permission():
            raise PermissionDenied("Location permission denied")
        return await self.current_position()


class StaticLocationProvider(LocationProvider):
    """Provider returning fixed coordinates"""

    def __init__(self, latitude: Optional[float] = None, longitude: Optional[float] = None,
                 granted: bool = True):
        self.position: Optional[Coordinates] = None
        if latitude is not None and longitude is not None:
            self.move_to(latitude, longitude)
        self.granted = granted

    def move_to(self, latitude: float, longitude: float) -> None:
        validate_coordinates(latitude, longitude)
        self.position = Coordinates(latitude, longitude)

    async def request_permission(self) -> bool:
        return self.granted

    async def current_position(self) -> Coordinates:
        if not self.granted:
            raise PermissionDenied("Location permission denied")
        if self.position is None:
            raise LocationUnavailable("No position fix available")
        return self.position
