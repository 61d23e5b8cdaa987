"""
Pydantic Schemas for the Order Builder

Two groups of models live here:
    - The configurator data model (product configs, steps, variants,
      catalog snapshot, price breakdowns, the rendering projection)
    - Request/response schemas for the HTTP API

Product configs and catalog snapshots are authored externally in camelCase
JSON, so the data-model classes accept both camelCase keys and snake_case
attribute names.
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List, Any
from datetime import datetime
from enum import Enum


# =============================================================================
# ENUMS
# =============================================================================

class StepType(str, Enum):
    SINGLE_CHOICE = "single-choice"
    VARIANT_SELECTOR = "variant-selector"
    MULTI_CHOICE = "multi-choice"
    INCLUDED_DIPS = "included-dips"
    OPTIONAL_ADDONS = "optional-addons"
    REVIEW = "review"


class PriceSource(str, Enum):
    FIXED = "fixed"
    CATALOG = "catalog"


class ProductType(str, Enum):
    CONFIGURABLE_ENTREE = "configurable-entree"
    SIMPLE_PRODUCT = "simple-product"


NO_DIP = "no-dip"


class CamelModel(BaseModel):
    """Base model accepting camelCase input for snake_case fields."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# PRODUCT CONFIGURATION
# =============================================================================

class SkipIf(CamelModel):
    """
    Single equality condition that bypasses a step during navigation.

    Accepts either ``{"key": "includedDips", "value": "no-dip"}`` or the
    shorthand mapping ``{"includedDips": "no-dip"}``.
    """
    key: str
    value: Any

    @model_validator(mode="before")
    @classmethod
    def accept_shorthand(cls, data: Any) -> Any:
        if isinstance(data, dict) and set(data) != {"key", "value"}:
            if len(data) != 1:
                raise ValueError("skipIf supports exactly one condition")
            [(key, value)] = data.items()
            return {"key": key, "value": value}
        return data


class StepOption(CamelModel):
    id: str
    label: str
    description: Optional[str] = None


class StepConfig(CamelModel):
    """One step of a customization flow."""
    id: str
    type: str
    label: str
    description: Optional[str] = None
    required: bool = False
    min_selections: Optional[int] = Field(None, ge=0)
    max_selections: Optional[int] = Field(None, ge=1)
    depends_on: Optional[str] = None
    skip_if: Optional[SkipIf] = None
    data_source: Optional[str] = None
    price_per_item: Optional[float] = Field(None, ge=0)
    price_source: Optional[PriceSource] = None
    options: List[StepOption] = Field(default_factory=list)


class ProductConfig(CamelModel):
    """Static, externally authored customization flow for one product."""
    product_type: str
    display_name: str = ""
    category: Optional[str] = None
    customization_flow: List[StepConfig] = Field(..., min_length=1)


# =============================================================================
# CATALOG SNAPSHOT & PRODUCT DATA
# =============================================================================

class Variant(CamelModel):
    """A concrete, priced size/kind option. Extra keys (e.g. preparation) are kept."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    name: str
    price: float = Field(..., ge=0)
    count: Optional[int] = None


class ProductData(CamelModel):
    id: str
    name: str = ""
    base_price: float = 0.0
    variants: List[Variant] = Field(default_factory=list)


class CatalogItem(CamelModel):
    id: str
    name: str
    category: Optional[str] = None
    base_price: Optional[float] = None
    active: bool = True


class Catalog(CamelModel):
    """Read-only catalog snapshot supplied by the menu fetch collaborator."""
    sauces: List[CatalogItem] = Field(default_factory=list)
    dipping_sauces: List[CatalogItem] = Field(default_factory=list)

    def items_for(self, data_source: Optional[str]) -> List[CatalogItem]:
        """Resolve a step's dataSource to the list of items it offers."""
        if data_source == "sauces":
            return [
                s for s in self.sauces
                if s.category not in ("dipping-sauce", "dry-rub") and s.active
            ]
        if data_source == "dippingSauces":
            if self.dipping_sauces:
                return [d for d in self.dipping_sauces if d.active]
            return [s for s in self.sauces if s.category == "dipping-sauce" and s.active]
        return []

    def find(self, data_source: Optional[str], item_id: str) -> Optional[CatalogItem]:
        for item in self.items_for(data_source):
            if item.id == item_id:
                return item
        return None


# =============================================================================
# DERIVED RESULTS
# =============================================================================

class PriceLine(BaseModel):
    name: str
    price: float


class PriceBreakdown(BaseModel):
    base: float = 0.0
    addons: List[PriceLine] = Field(default_factory=list)
    total: float = 0.0


class StepValidation(BaseModel):
    valid: bool
    error: Optional[str] = None


class NavigationResult(BaseModel):
    advanced: bool
    error: Optional[str] = None


class DraftResult(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)


class CartItem(BaseModel):
    """A fully configured product ready for the cart."""
    product_id: str
    product_name: str
    category: Optional[str] = None
    selections: dict[str, Any]
    pricing: PriceBreakdown
    created_at: datetime


class ConfiguratorView(BaseModel):
    """Read-only projection the presentation layer renders from."""
    product_id: str
    current_step: StepConfig
    current_step_index: int
    total_steps: int
    options: List[dict[str, Any]] = Field(default_factory=list)
    selections: dict[str, Any]
    price_breakdown: PriceBreakdown
    is_first_step: bool
    is_last_step: bool
    validation_error: Optional[str] = None


class CartResult(BaseModel):
    added: bool
    item: Optional[CartItem] = None
    error: Optional[str] = None


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class OpenSessionRequest(BaseModel):
    """Request schema for opening a configurator session."""
    product_id: str = Field(..., min_length=1, examples=["boneInWings"])
    product_data: ProductData
    catalog: Optional[Catalog] = None


class SelectOptionRequest(BaseModel):
    step_id: str = Field(..., min_length=1)
    option_id: str = Field(..., min_length=1)


class SelectVariantRequest(BaseModel):
    variant: Variant


class AddonQuantityRequest(BaseModel):
    step_id: str = Field(..., min_length=1)
    item_id: str = Field(..., min_length=1)
    delta: int = Field(..., ge=-99, le=99, examples=[1, -1])


class StepRequest(BaseModel):
    step_id: str = Field(..., min_length=1)


class StateUpdateRequest(BaseModel):
    """Partial update deep-merged into a flow's state or draft."""
    updates: dict[str, Any]


class SignInRequest(BaseModel):
    uid: str = Field(..., min_length=1)
    display_name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class SessionResponse(BaseModel):
    session_id: str
    view: Optional[ConfiguratorView] = None


class MutationResponse(BaseModel):
    accepted: bool
    view: ConfiguratorView


class NavigationResponse(BaseModel):
    result: NavigationResult
    view: ConfiguratorView


class StateResponse(BaseModel):
    flow_type: str
    state: dict[str, Any]
    has_draft: bool = False


class IdentityResponse(BaseModel):
    success: bool
    uid: Optional[str] = None
    message: str


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    remote_store: str
    redis: str
    timestamp: datetime
