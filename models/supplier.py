from pydantic import BaseModel
from typing import Optional


class Supplier(BaseModel):
    """
    A supplier that purchase orders are raised against.
    category feeds the supplierCategory condition on approval thresholds.
    """
    id: str
    name: str
    category: Optional[str] = None
    contact_person: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    payment_terms: Optional[str] = None     # Default terms copied onto new orders
    is_active: bool = True
