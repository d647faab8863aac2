"""
Audit trail document models.

Pydantic models for the role access audit collection and for the query and
reporting shapes built on top of it. Records are write-once: the model is
frozen and nothing in the access layer updates or deletes a stored record.

Organization and user ids are stored as plain values with no foreign key, so
deleting an organization leaves its audit history in place with a dangling id.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Column limits of the relational audit table; http_method widened to fit ADMIN_ACTION
MAX_RESOURCE_LENGTH = 500
MAX_HTTP_METHOD_LENGTH = 16
MAX_IP_ADDRESS_LENGTH = 45
MAX_USER_AGENT_LENGTH = 1000
MAX_DETAILS_LENGTH = 2000
MAX_SESSION_ID_LENGTH = 100

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500

_TRUNCATED_FIELDS = {
    'resource': MAX_RESOURCE_LENGTH,
    'http_method': MAX_HTTP_METHOD_LENGTH,
    'ip_address': MAX_IP_ADDRESS_LENGTH,
    'user_agent': MAX_USER_AGENT_LENGTH,
    'details': MAX_DETAILS_LENGTH,
    'session_id': MAX_SESSION_ID_LENGTH,
}


def _ensure_utc(value: Any) -> Any:
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AuditRecord(BaseModel):
    """
    One access decision plus its request provenance.

    `role` holds the role exactly as claimed when the decision was made,
    including empty or unknown values, never a later lookup.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), alias="_id")
    user_id: Optional[str] = None
    role: str = ""
    resource: str = ""
    http_method: str = ""
    organization_id: Optional[str] = None
    access_granted: bool
    reason_code: str
    policy_name: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    details: Optional[str] = None
    session_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode='before')
    @classmethod
    def truncate_long_fields(cls, values):
        """Clip free-text fields to their column limits instead of rejecting the record."""
        if isinstance(values, dict):
            values = dict(values)
            for name, limit in _TRUNCATED_FIELDS.items():
                value = values.get(name)
                if isinstance(value, str) and len(value) > limit:
                    values[name] = value[:limit]
        return values

    @field_validator('timestamp', mode='before')
    @classmethod
    def validate_timestamp(cls, v):
        return _ensure_utc(v)

    def to_mongo_dict(self) -> Dict[str, Any]:
        """Document shape stored in MongoDB, with the id under `_id`."""
        return self.model_dump(by_alias=True)

    @classmethod
    def from_mongo_dict(cls, data: Optional[Dict[str, Any]]) -> Optional['AuditRecord']:
        if data is None:
            return None
        data = dict(data)
        if '_id' in data:
            data['_id'] = str(data['_id'])
        return cls.model_validate(data)


class AuditQuery(BaseModel):
    """Filters and paging for audit trail searches."""

    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    access_granted: Optional[bool] = None
    role: Optional[str] = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE)

    @field_validator('start', 'end', mode='before')
    @classmethod
    def validate_bounds(cls, v):
        return _ensure_utc(v)

    @model_validator(mode='after')
    def check_range(self) -> 'AuditQuery':
        if self.start and self.end and self.start > self.end:
            raise ValueError("start must not be after end")
        return self

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.page_size

    def matches(self, record: AuditRecord) -> bool:
        """In-process equivalent of the store-side filter."""
        if self.user_id is not None and record.user_id != self.user_id:
            return False
        if self.organization_id is not None and record.organization_id != self.organization_id:
            return False
        if self.start is not None and record.timestamp < self.start:
            return False
        if self.end is not None and record.timestamp > self.end:
            return False
        if self.access_granted is not None and record.access_granted != self.access_granted:
            return False
        if self.role is not None and record.role != self.role:
            return False
        return True


class AuditPage(BaseModel):
    """One page of audit records, newest first."""

    items: List[AuditRecord]
    total_count: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        if self.total_count == 0:
            return 0
        return (self.total_count + self.page_size - 1) // self.page_size

    def to_response(self) -> Dict[str, Any]:
        return {
            'items': [item.model_dump(mode='json') for item in self.items],
            'total_count': self.total_count,
            'page': self.page,
            'page_size': self.page_size,
            'total_pages': self.total_pages,
        }


class AuditStatistics(BaseModel):
    """Aggregate view of access attempts for compliance reporting."""

    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    unique_users: int = 0
    attempts_by_role: Dict[str, int] = Field(default_factory=dict)
    attempts_by_hour: Dict[int, int] = Field(default_factory=dict)
    top_resources: Dict[str, int] = Field(default_factory=dict)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


__all__ = [
    'AuditRecord',
    'AuditQuery',
    'AuditPage',
    'AuditStatistics',
    'DEFAULT_PAGE_SIZE',
    'MAX_PAGE_SIZE',
]
