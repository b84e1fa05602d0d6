from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from rollship.models import Customer, OrderItem, OrderStatus, SalesOrder
from rollship.services.errors import NotFoundError, ValidationError


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True)
class LineItemInput:
    required_quantity: int
    material_type: str | None = None
    basis_weight: Decimal | None = None
    width: Decimal | None = None
    length: Decimal | None = None


@dataclass
class OrderContext:
    order: SalesOrder
    customer: Customer
    line_items: list[OrderItem]

    @property
    def customer_name(self) -> str:
        return self.customer.name


def get_order(db: Session, order_id: int) -> SalesOrder:
    if not order_id:
        raise ValidationError('Order ID is required')
    order = db.execute(
        select(SalesOrder).where(SalesOrder.id == order_id).execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not order:
        raise NotFoundError('Order not found', order_id=order_id)
    return order


def list_line_items(db: Session, order_id: int) -> list[OrderItem]:
    # populate_existing: counters are moved by bulk UPDATEs that bypass the identity map.
    return list(
        db.execute(
            select(OrderItem)
            .where(OrderItem.order_id == order_id)
            .order_by(OrderItem.position.asc(), OrderItem.id.asc())
            .execution_options(populate_existing=True)
        ).scalars().all()
    )


def get_order_context(db: Session, order_id: int) -> OrderContext:
    order = get_order(db, order_id)
    customer = db.execute(select(Customer).where(Customer.id == order.customer_id)).scalar_one()
    return OrderContext(order=order, customer=customer, line_items=list_line_items(db, order_id))


def set_order_status(db: Session, order_id: int, status: OrderStatus) -> SalesOrder:
    order = get_order(db, order_id)
    order.status = status
    order.updated_at = _now()
    return order


def create_order(db: Session, *, order_no: str, customer_id: int, items: list[LineItemInput]) -> SalesOrder:
    clean_no = order_no.strip()
    if not clean_no:
        raise ValidationError('Order number is required')
    if not items:
        raise ValidationError('An order needs at least one line item')
    for item in items:
        if item.required_quantity < 1:
            raise ValidationError('Line item quantity must be at least 1')

    order = SalesOrder(order_no=clean_no, customer_id=customer_id, status=OrderStatus.OPEN)
    db.add(order)
    db.flush()
    db.add_all(
        [
            OrderItem(
                order_id=order.id,
                position=idx,
                material_type=item.material_type,
                basis_weight=item.basis_weight,
                width=item.width,
                length=item.length,
                required_quantity=item.required_quantity,
                scanned_count=0,
            )
            for idx, item in enumerate(items)
        ]
    )
    db.flush()
    return order
