from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class LinkRecord(BaseModel):
    # extra fields from older clients are carried through untouched
    model_config = ConfigDict(extra="allow")

    url: str
    id: Optional[str] = None
    timestamp: str = Field(default_factory=utc_now_iso)
    source: Literal["server", "local"] | None = Field(default=None, exclude=True)

    @property
    def identity(self) -> str:
        return self.id or self.url

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class LinkBlob(BaseModel):
    """The single JSON document kept under the storage key."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    links: List[LinkRecord] = Field(default_factory=list)
    version: int = 0
    updated_at: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        return {
            "links": [l.to_wire() for l in self.links],
            "version": self.version,
            "updatedAt": self.updated_at,
        }


class ApiResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = True
    message: str = ""
    warning: Optional[str] = None
    error: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SaveResult(ApiResult):
    added_count: int = 0
    total_count: int = 0
    rejected_count: int = 0
    version: Optional[int] = None


class DeleteResult(ApiResult):
    deleted: bool = False
    total_count: int = 0


class ClearResult(ApiResult):
    total_count: int = 0


class LinksPayload(BaseModel):
    # items are validated one by one by the service so a bad record
    # doesn't reject the whole batch
    links: List[Any] = Field(default_factory=list)
