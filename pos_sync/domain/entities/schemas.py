# pos_sync/domain/entities/schemas.py
import enum
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Mapping, Optional, Type
from uuid import uuid4

from pydantic import BaseModel, BeforeValidator, Field, ValidationError

from pos_sync.core.errors import EntityValidationError

TEMP_ID_PREFIX = "tmp-"

# Never taken from an update patch; the server owns them once confirmed.
IMMUTABLE_FIELDS = frozenset({"id", "company_id", "created_at"})


class EntityKind(str, enum.Enum):
    PRODUCT = "product"
    CUSTOMER = "customer"
    EMPLOYEE = "employee"
    TRANSACTION = "transaction"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    AUTHORIZED = "AUTHORIZED"
    CAPTURED = "CAPTURED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


def _to_str(v):
    if v is None:
        return v
    return str(v).strip()


# servers may hand out integer ids; the cache keys everything by string
EntityId = Annotated[str, BeforeValidator(_to_str)]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_temporary_id() -> str:
    return f"{TEMP_ID_PREFIX}{uuid4().hex}"


def is_temporary_id(entity_id: str) -> bool:
    return entity_id.startswith(TEMP_ID_PREFIX)


class EntityBase(BaseModel):
    id: EntityId
    company_id: EntityId
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Config:
        extra = "ignore"


class Product(EntityBase):
    name: str
    sku: Optional[str] = None
    barcode: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None

    price: Decimal
    cost_price: Optional[Decimal] = None
    tax_rate: Optional[Decimal] = None
    stock: int = 0
    uom: str = "EA"

    active: bool = True


class Customer(EntityBase):
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None

    total_spent: Decimal = Decimal("0")
    visit_count: int = 0


class Employee(EntityBase):
    name: str
    role: str = "cashier"
    email: Optional[str] = None
    phone: Optional[str] = None
    active: bool = True


class LineItem(BaseModel):
    """Product line captured at the time of sale.

    Pricing is copied from the product so a receipt does not change when
    the catalog does.
    """

    product_id: Optional[EntityId] = None
    sku: Optional[str] = None
    name: str

    unit_price: Decimal
    quantity: Decimal = Decimal("1")
    discount_amount: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    line_total: Decimal


class Payment(BaseModel):
    method: str
    amount: Decimal
    status: PaymentStatus = PaymentStatus.CAPTURED
    provider_ref: Optional[str] = None


class Transaction(EntityBase):
    receipt_number: str
    status: str = "PAID"

    customer_id: Optional[EntityId] = None
    cashier_id: Optional[EntityId] = None

    items: List[LineItem] = Field(default_factory=list)
    payments: List[Payment] = Field(default_factory=list)

    subtotal: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    discount_amount: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    currency: str = "INR"

    note: Optional[str] = None


ENTITY_MODELS: Dict[EntityKind, Type[EntityBase]] = {
    EntityKind.PRODUCT: Product,
    EntityKind.CUSTOMER: Customer,
    EntityKind.EMPLOYEE: Employee,
    EntityKind.TRANSACTION: Transaction,
}


def build_entity(kind: EntityKind, data: Mapping[str, Any]) -> EntityBase:
    try:
        return ENTITY_MODELS[EntityKind(kind)].model_validate(dict(data))
    except ValidationError as exc:
        raise EntityValidationError(f"invalid {EntityKind(kind).value}: {exc}") from exc


def merge_entity(entity: EntityBase, patch: Mapping[str, Any]) -> EntityBase:
    """Apply a partial update on top of `entity` and re-validate the result."""
    data = entity.model_dump()
    data.update({k: v for k, v in patch.items() if k not in IMMUTABLE_FIELDS})
    data["updated_at"] = utcnow()
    return build_entity(kind_of(entity), data)


def kind_of(entity: EntityBase) -> EntityKind:
    for kind, model in ENTITY_MODELS.items():
        if type(entity) is model:
            return kind
    raise TypeError(f"unknown entity type {type(entity).__name__}")


def dump_entity(entity: EntityBase) -> Dict[str, Any]:
    return entity.model_dump(mode="json")
