from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

DealStatus = Literal["open", "won", "lost", "deleted"]
QuoteStatus = Literal["DRAFT", "SENT", "ACCEPTED", "DECLINED", "DELETED", "INVOICED"]


class Deal(BaseModel):
    """Pipedrive deal snapshot. Custom field values are keyed by their 40-char field key."""
    id: int
    title: str = ""
    status: DealStatus = "open"
    value: float = 0.0
    currency: Optional[str] = None
    pipeline_id: Optional[int] = None
    stage_id: Optional[int] = None
    org_name: Optional[str] = None
    custom_fields: Dict[str, Any] = Field(default_factory=dict)


class Product(BaseModel):
    name: str = ""
    quantity: float = 0.0
    item_price: float = 0.0
    sum: Optional[float] = None
    discount: float = 0.0

    @property
    def line_total(self) -> float:
        return self.sum if self.sum is not None else self.quantity * self.item_price


class TrackingAssignment(BaseModel):
    category_id: Optional[str] = None
    option_id: Optional[str] = None
    name: Optional[str] = None
    option: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.category_id) and bool(self.option_id)


class LineItem(BaseModel):
    line_item_id: Optional[str] = None
    description: Optional[str] = None
    quantity: float = 0.0
    unit_amount: float = 0.0
    line_amount: float = 0.0
    tracking: List[TrackingAssignment] = Field(default_factory=list)

    @property
    def has_tracking(self) -> bool:
        return any(t.is_complete for t in self.tracking)


class Quote(BaseModel):
    quote_id: str
    quote_number: Optional[str] = None
    status: QuoteStatus = "DRAFT"
    total: float = 0.0
    currency_code: Optional[str] = None
    reference: Optional[str] = None
    contact_name: Optional[str] = None
    line_items: List[LineItem] = Field(default_factory=list)
    raw: Dict[str, Any] = Field(default_factory=dict, repr=False)


class Project(BaseModel):
    project_id: str
    name: str = ""
    status: str = "INPROGRESS"
    total_amount: Optional[float] = None
    currency: Optional[str] = None
