"""
Emergency data models for Beacon

Defines the emergency record, its category and status enumerations,
and the responder endpoint used as a push destination.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union

from .location import Coordinates


class EmergencyCategory(Enum):
    """Emergency kinds a victim can choose from"""
    MEDICAL = "Medical"
    ACCIDENT = "Accident"
    VIOLENCE = "Violence / Assault"
    FIRE = "Fire"
    NATURAL_DISASTER = "Natural disaster"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: Union['EmergencyCategory', str]) -> 'EmergencyCategory':
        """Accept an enum member, its value or its name"""
        if isinstance(value, cls):
            return value
        for category in cls:
            if value == category.value or str(value).upper() == category.name:
                return category
        raise ValueError(f"Unknown emergency category: {value!r}")


class EmergencyStatus(Enum):
    """Emergency lifecycle states"""
    OPEN = "open"
    ACKNOWLEDGED = "acknowledged"


class AcknowledgeOutcome(Enum):
    """Result of acknowledging an emergency"""
    ACKNOWLEDGED = "acknowledged"                  # this call performed the transition
    ALREADY_ACKNOWLEDGED = "already_acknowledged"  # someone got there first
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class Emergency:
    """One help request as stored in the emergencies collection"""
    id: str
    category: EmergencyCategory
    latitude: float
    longitude: float
    status: EmergencyStatus
    created_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status == EmergencyStatus.OPEN

    @property
    def is_acknowledged(self) -> bool:
        return self.status == EmergencyStatus.ACKNOWLEDGED

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(self.latitude, self.longitude)

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> 'Emergency':
        """Build an emergency from a stored document"""
        return cls(
            id=doc_id,
            category=EmergencyCategory.parse(data['category']),
            latitude=float(data['lat']),
            longitude=float(data['lng']),
            status=EmergencyStatus(data['status']),
            created_at=data.get('createdAt'),
        )


@dataclass(frozen=True)
class ResponderEndpoint:
    """Push destination registered by a responder"""
    key: str
    token: str
    updated_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, key: str, data: Dict[str, Any]) -> 'ResponderEndpoint':
        return cls(key=key, token=data.get('token', ''), updated_at=data.get('updatedAt'))
