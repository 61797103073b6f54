"""
Cross-tab message shapes.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

BULK_CACHE_UPDATE = "bulk-cache-update"


class BroadcastMessage(BaseModel):
    """Envelope posted between tabs; camelCase on the wire."""

    model_config = ConfigDict(
        strict=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    type: Literal["bulk-cache-update"]
    sender_id: str
    owner_key: Optional[str] = None
    payload: Dict[str, Any]
    timestamp: float

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class SubjectsContext(BaseModel):
    """Context tuple the broadcast subjects belong to."""

    branch: str
    year: int
    semester: int


class BulkCachePayload(BaseModel):
    """Fresh bulk data shared with sibling tabs so they can skip a fetch."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    profile: Optional[Dict[str, Any]] = None
    static: Optional[Dict[str, Any]] = None
    dynamic: Optional[Dict[str, Any]] = None
    subjects: Optional[List[Dict[str, Any]]] = None
    subjects_context: Optional[SubjectsContext] = Field(default=None)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)
