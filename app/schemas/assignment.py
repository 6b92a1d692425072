"""
Pydantic schemas for the assignment API and the bulk assignment job payload.

Wire format is camelCase (snippetId, catType, ...); parsing accepts snake_case too.
"""
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

AssignmentStatusValue = Literal["PENDING", "ACTIVE", "FAILED", "ARCHIVED"]
JobState = Literal["PENDING", "PROCESSING", "COMPLETED", "FAILED"]

LOCALE_PATTERN = r"^[a-z]{2}-[A-Z]{2}$"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ========== Request Schemas ==========
class AssignmentItem(CamelModel):
    """One category type with the slugs of the pages to assign"""
    cat_type: str = Field(..., min_length=1, description="Category type code, e.g. league")
    slugs: List[str] = Field(..., min_length=1)


class CreateAssignmentRequest(CamelModel):
    snippet_id: str = Field(..., min_length=1)
    assignments: List[AssignmentItem] = Field(..., min_length=1)


class PreviewAssignmentRequest(CamelModel):
    snippet_id: str = Field(..., min_length=1)
    assignments: List[AssignmentItem] = Field(..., min_length=1)
    category_types: List[str] = Field(..., min_length=1, description="city, performer, league, ...")
    locale: str = Field(..., pattern=LOCALE_PATTERN, description="UI format with dash, e.g. en-GB")


class BulkAssignmentRequest(PreviewAssignmentRequest):
    snippet_variation_types: Optional[List[str]] = Field(None, min_length=1, description="SLIM, EVERGREEN, DYNAMIC")
    snippet_variations: Optional[List[Dict[str, Any]]] = None
    use_native_logic: Optional[bool] = None
    total_categories_count: Optional[int] = Field(None, ge=0, description="Category count from preview, used for progress")


class UpdateAssignmentRequest(CamelModel):
    slug: Optional[str] = Field(None, min_length=1)
    status: Optional[AssignmentStatusValue] = None
    sync_metadata: Optional[Any] = None


class AssignmentFilter(CamelModel):
    snippet_id: Optional[str] = None
    cat_type: Optional[str] = None
    status: Optional[AssignmentStatusValue] = None
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=500)


# ========== Queue Payload ==========
class JobAssignmentItem(CamelModel):
    """
    Loose item shape inside a queued job. Malformed items are skipped during
    reconciliation instead of rejecting the whole job; `slug` is the legacy
    single-slug format.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    cat_type: Optional[Any] = None
    slugs: Optional[Any] = None
    slug: Optional[Any] = None


class BulkAssignmentJob(CamelModel):
    assignment_id: str
    snippet_id: str
    assignments: List[JobAssignmentItem] = Field(default_factory=list)
    category_types: List[str] = Field(default_factory=list)
    snippet_variation_types: Optional[List[str]] = None
    locale: str = ""
    snippet_variations: Optional[List[Dict[str, Any]]] = None
    use_native_logic: Optional[bool] = None
    user_id: str
    total_categories_count: Optional[int] = None

    def to_message(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_message(cls, raw: str) -> "BulkAssignmentJob":
        return cls.model_validate_json(raw)


# ========== Status Store ==========
class JobProgress(CamelModel):
    processed: int
    total: int
    failed: int = 0
    percent: Optional[int] = None


class AssignmentJobStatus(CamelModel):
    status: JobState
    timestamp: int = Field(..., description="Milliseconds since epoch")
    progress: Optional[JobProgress] = None
    results: Optional[Any] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ("COMPLETED", "FAILED")

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
