from pydantic import BaseModel, Field
from typing import Optional, List, Literal
from pdv.models.core import DeliveryType, PaymentMethod, OrderStatus

CounterDeliveryLiteral = Literal["counter", "pickup", "delivery"]
ReprintVariantLiteral = Literal["kitchen", "customer"]

class CartLineIn(BaseModel):
    menu_item_id: str
    variation_ids: List[str] = []
    quantity: int = Field(1, ge=1)

class QuoteIn(BaseModel):
    items: List[CartLineIn]
    include_service_fee: bool = False
    delivery_type: DeliveryType = DeliveryType.COUNTER
    distance_km: Optional[float] = Field(None, ge=0)
    discount: float = 0.0
    redeem_points: int = Field(0, ge=0)
    customer_phone: Optional[str] = None

class CounterCheckoutIn(BaseModel):
    items: List[CartLineIn]
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_cpf: Optional[str] = None
    payment_method: PaymentMethod
    delivery_type: DeliveryType = DeliveryType.COUNTER
    distance_km: Optional[float] = Field(None, ge=0)
    include_service_fee: bool = False
    discount: float = 0.0
    redeem_points: int = Field(0, ge=0)
    notes: Optional[str] = None
    print_receipt: bool = True
    motoboy_id: Optional[str] = None

class KioskCheckoutIn(BaseModel):
    items: List[CartLineIn]
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_cpf: Optional[str] = None
    notes: Optional[str] = None

class ConfirmPaymentIn(BaseModel):
    print_receipt: bool = True

class CompleteIn(BaseModel):
    payment_method: Optional[PaymentMethod] = None
    print_receipt: bool = True
    motoboy_id: Optional[str] = None

class CancelIn(BaseModel):
    reason: Optional[str] = None

class StatusIn(BaseModel):
    status: OrderStatus

class OpenTabIn(BaseModel):
    table_id: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_cpf: Optional[str] = None
    include_service_fee: bool = True
    notes: Optional[str] = None

class TabItemsIn(BaseModel):
    items: List[CartLineIn]

class TabItemPatch(BaseModel):
    quantity: Optional[int] = None
    notes: Optional[str] = None

class TabCustomerIn(BaseModel):
    customer_phone: str
    customer_name: Optional[str] = None
    customer_cpf: Optional[str] = None

class OrderItemOut(BaseModel):
    id: str
    menu_item_id: Optional[str] = None
    name: str
    quantity: int
    unit_price: float
    total_price: float
    notes: Optional[str] = None

class OrderOut(BaseModel):
    id: str
    order_number: str
    sequential_number: int
    channel: str
    delivery_type: str
    status: str
    payment_method: str
    subtotal: float
    service_fee: float
    delivery_fee: float
    discount: float
    total: float
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    table_id: Optional[str] = None
    motoboy_id: Optional[str] = None
    notes: Optional[str] = None
    pending_effects: List[str] = []
    items: List[OrderItemOut] = []

class CheckoutOut(BaseModel):
    order: OrderOut
    warnings: List[str] = []
    loyalty_points_earned: Optional[int] = None
    loyalty_points_redeemed: Optional[int] = None
    customer_created: bool = False
