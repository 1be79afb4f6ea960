"""
Page signal schemas

One PageSignals record per fetched page, produced by the extractor and
never modified afterwards.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

PageType = Literal["home", "product", "collection", "cart", "about", "contact", "other"]


class StructuredProduct(BaseModel):
    """A schema.org Product found in a JSON-LD block"""
    name: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    rating: Optional[float] = None
    description: Optional[str] = None
    image_count: int = 0
    url: Optional[str] = None

    class Config:
        frozen = True


class PageSignals(BaseModel):
    url: str
    page_type: PageType = "other"

    title: str = ""
    h1: str = ""
    meta_description: str = ""
    h2_texts: List[str] = Field(default_factory=list)

    has_cta: bool = False
    has_price: bool = False
    has_shipping_returns: bool = False
    has_contact: bool = False
    has_reviews: bool = False
    has_trust_badges: bool = False
    has_viewport_mobile: bool = False
    has_canonical: bool = False
    has_open_graph: bool = False
    has_product_links: bool = False
    has_cart_links: bool = False

    script_count: int = 0
    image_count: int = 0
    h2_count: int = 0
    word_count: int = 0
    image_alt_ratio: float = Field(default=1.0, ge=0.0, le=1.0)

    structured_data: List[StructuredProduct] = Field(default_factory=list)

    # Computed against the first ABOVE_THE_FOLD_CHARS of head+body markup
    cta_above_fold: bool = False
    price_above_fold: bool = False

    visible_text: str = ""

    class Config:
        frozen = True
