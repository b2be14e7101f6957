"""Pydantic request/response schemas.

Schemas keep API input/output shapes stable and provide validation for
controller handlers, services and tests. Activity payloads form a tagged
union keyed by `type`.
"""

from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

ACTIVITY_TYPES = ("add_term", "study", "review")


class CategoryIn(BaseModel):
    """Payload for creating a category."""
    category_name: str
    category_icon: str = "📝"
    category_color: str = "#6c757d"
    parent_id: Optional[str] = None
    is_favorite: bool = False
    display_order: int = 0


class CategoryUpdate(BaseModel):
    """Partial category edit; omitted fields are left untouched.

    `parent_id` is applied only when it is present in the request body,
    so an explicit `null` moves the category to the root.
    """
    category_name: Optional[str] = None
    category_icon: Optional[str] = None
    category_color: Optional[str] = None
    parent_id: Optional[str] = None
    display_order: Optional[int] = None


class FavoriteIn(BaseModel):
    """Target favorite state; `None` flips the current value."""
    is_favorite: Optional[bool] = None


class TermIn(BaseModel):
    term: str
    meaning: str
    example: str = ""
    category: str
    image_url: Optional[str] = None


class TermUpdate(BaseModel):
    term: Optional[str] = None
    meaning: Optional[str] = None
    example: Optional[str] = None
    category: Optional[str] = None
    image_url: Optional[str] = None


class AddTermPayload(BaseModel):
    type: Literal["add_term"] = "add_term"


class StudyPayload(BaseModel):
    type: Literal["study"] = "study"
    duration: int = Field(gt=0, description="study time in minutes")


class ReviewPayload(BaseModel):
    type: Literal["review"] = "review"
    termId: str
    term: str = ""
    isCorrect: bool


ActivityPayload = Annotated[
    Union[AddTermPayload, StudyPayload, ReviewPayload],
    Field(discriminator="type"),
]
activity_payload_adapter = TypeAdapter(ActivityPayload)


class ActivityIn(BaseModel):
    """Request body for recording an activity."""
    type: str
    category: str
    data: Dict = Field(default_factory=dict)


class CategorySummary(BaseModel):
    studyTime: int = 0
    termsAdded: int = 0
    termsReviewed: int = 0
    correctCount: int = 0
    incorrectCount: int = 0


class DailySummary(BaseModel):
    """Per-date rollup; totals always equal the sum of `byCategory`."""
    date: str
    totalStudyTime: int = 0
    termsAdded: int = 0
    termsReviewed: int = 0
    correctRate: int = 0
    byCategory: Dict[str, CategorySummary] = Field(default_factory=dict)
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None


class ActivityLog(BaseModel):
    id: str
    type: str
    date: str
    timestamp: str
    category: str
    data: Dict = Field(default_factory=dict)
    createdAt: Optional[str] = None


class ActivityOut(BaseModel):
    id: str
    summary_updated: bool = True
    warning: Optional[str] = None


class FavoriteOut(BaseModel):
    is_favorite: bool
    updated_count: int
    updated_ids: List[str]
    message: str


class StudyStartIn(BaseModel):
    """Which terms to put in a new flashcard session."""
    category: str = "all"
    favorites_only: bool = False
    limit: Optional[int] = Field(default=None, gt=0)


class StudyAnswerIn(BaseModel):
    is_correct: bool
