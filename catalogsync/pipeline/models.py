"""Data models for catalog documents and external dataset rows.

Catalog documents are stored as JSON, so every model here round-trips through
``model_dump(mode="json")`` / ``model_validate``. External rows are parsed
leniently: the source datasets use several spellings for the same field.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

NO_COMMENT = "No comment"


class Review(BaseModel):
    """A review attached to a catalog item."""

    reviewer_id: str = Field(..., description="Internal reviewer identity id")
    name: str = Field(default="", description="Reviewer display name")
    rating: float = Field(default=0.0, description="Star rating")
    comment: str = Field(default=NO_COMMENT, description="Review text")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the review was written",
    )

    @property
    def dedup_key(self) -> tuple:
        return (self.reviewer_id, self.comment)


class Variant(BaseModel):
    """One size/color stock-keeping unit of an item."""

    size: str
    color: str
    price: float
    stock: int = 0


class ColorOption(BaseModel):
    """A color an item is offered in."""

    name: str
    hex_code: str


class CatalogItem(BaseModel):
    """A sellable product record in the catalog.

    ``rating`` and ``num_reviews`` are always derived from ``reviews``. The
    external dataset's own figures are kept in ``external_rating`` and
    ``review_target``; the latter is the review count top-up aims for.

    Attributes:
        seq: Store-assigned, strictly increasing cursor key. Read-only; it is
            never written back into the document.
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    category: str = ""
    brand: str = ""
    description: str = ""
    images: List[str] = Field(default_factory=list)
    price: float = 0.0
    rating: float = 0.0
    num_reviews: int = 0
    external_rating: float = 0.0
    review_target: int = 0
    reviews: List[Review] = Field(default_factory=list)
    variants: List[Variant] = Field(default_factory=list)
    colors: List[ColorOption] = Field(default_factory=list)
    size_stock: Dict[str, int] = Field(default_factory=dict)
    count_in_stock: int = 0
    external_key: Optional[str] = None
    feature_vector: List[float] = Field(default_factory=list)
    compatible_items: List[str] = Field(default_factory=list)
    seq: Optional[int] = Field(default=None, exclude=True)

    def to_document(self) -> Dict[str, Any]:
        """Serialize to the JSON document stored in the catalog."""
        return self.model_dump(mode="json")


class ReviewerIdentity(BaseModel):
    """An internal identity standing in for an external reviewer."""

    id: str
    external_key: Optional[str] = None
    name: str = ""
    email: str

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


def _first_present(raw: Dict[str, Any], *names: str) -> Any:
    for name in names:
        value = raw.get(name)
        if value is not None and value != "":
            return value
    return None


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().replace("$", "").replace(",", "")
    try:
        return float(text)
    except ValueError:
        return None


def _to_int(value: Any) -> Optional[int]:
    number = _to_float(value)
    return int(number) if number is not None else None


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse epoch milliseconds/seconds or an ISO-8601 string."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        # Source datasets use epoch milliseconds
        seconds = value / 1000.0 if value > 1e11 else float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ReviewRecord(BaseModel):
    """A row from the external review stream."""

    model_config = ConfigDict(frozen=True)

    parent_key: str
    reviewer_key: str
    title: str = ""
    text: str = ""
    rating: float = 0.0
    timestamp: Optional[datetime] = None

    @property
    def comment(self) -> str:
        """Text stored on the catalog review: text, then title, then a placeholder."""
        return self.text or self.title or NO_COMMENT

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> Optional["ReviewRecord"]:
        """Build a record from a parsed JSON row.

        Returns:
            The record, or None when the row lacks a parent or reviewer key.
        """
        parent_key = _first_present(raw, "parentKey", "parent_key", "parent_asin", "parentAsin")
        reviewer_key = _first_present(raw, "reviewerKey", "reviewer_key", "user_id", "userId")
        if not parent_key or not reviewer_key:
            return None

        return cls(
            parent_key=str(parent_key),
            reviewer_key=str(reviewer_key),
            title=str(raw.get("title") or "").strip(),
            text=str(raw.get("text") or "").strip(),
            rating=_to_float(raw.get("rating")) or 0.0,
            timestamp=_parse_timestamp(raw.get("timestamp")),
        )


def _image_urls(images: Any) -> List[str]:
    """Pick one URL per image entry, preferring large over hi-res over thumb."""
    if not isinstance(images, list):
        return []
    urls = []
    for image in images:
        if isinstance(image, str):
            url = image
        elif isinstance(image, dict):
            url = image.get("large") or image.get("hi_res") or image.get("thumb")
        else:
            url = None
        if url:
            urls.append(str(url))
    return urls


def _description_text(description: Any) -> str:
    if isinstance(description, list):
        return "\n".join(str(part) for part in description if part)
    if isinstance(description, str):
        return description.strip()
    return ""


def _category_text(category: Any) -> str:
    # Some dumps carry a category path list; the leaf is the most specific
    if isinstance(category, list):
        category = category[-1] if category else ""
    return str(category or "").strip()


class MetadataRecord(BaseModel):
    """A row from the external product metadata stream."""

    model_config = ConfigDict(frozen=True)

    parent_key: str
    title: str = ""
    description: str = ""
    price: Optional[float] = None
    images: List[str] = Field(default_factory=list)
    store: str = ""
    category: str = ""
    average_rating: Optional[float] = None
    rating_number: Optional[int] = None

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> Optional["MetadataRecord"]:
        """Build a record from a parsed JSON row.

        Returns:
            The record, or None when the row lacks a parent key.
        """
        parent_key = _first_present(raw, "parentKey", "parent_key", "parent_asin", "parentAsin")
        if not parent_key:
            return None

        return cls(
            parent_key=str(parent_key),
            title=str(raw.get("title") or "").strip(),
            description=_description_text(raw.get("description")),
            price=_to_float(raw.get("price")),
            images=_image_urls(raw.get("images")),
            store=str(raw.get("store") or "").strip(),
            category=_category_text(_first_present(raw, "main_category", "category")),
            average_rating=_to_float(raw.get("average_rating")),
            rating_number=_to_int(raw.get("rating_number")),
        )
