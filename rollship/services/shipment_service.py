from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Union

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from rollship.config import settings
from rollship.models import (
    Customer,
    DividedRoll,
    JumboRoll,
    OrderItem,
    OrderStatus,
    Principal as PrincipalModel,
    SalesOrder,
    ScanKind,
    Shipment,
    ShipmentItem,
    ShipmentStatus,
)
from rollship.services.audit_service import log_audit
from rollship.services.errors import AlreadyShipped, ConflictError, NotFoundError, ValidationError
from rollship.services.order_catalog_service import get_order_context, list_line_items, set_order_status
from rollship.services.scan_ledger_service import ensure_in_progress_shipment, record_scan, record_unidentified_count

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True)
class ScanClaim:
    order_item_id: int
    barcode: str


@dataclass(frozen=True)
class ExplicitScans:
    scans: tuple[ScanClaim, ...]


@dataclass(frozen=True)
class FlagClaim:
    order_item_id: int
    scanned_count: int


@dataclass(frozen=True)
class InferredFromFlags:
    items: tuple[FlagClaim, ...]


FinalizeInput = Union[ExplicitScans, InferredFromFlags]


def resolve_finalize_input(
    *,
    scanned_items: list[dict] | None = None,
    order_items: list[dict] | None = None,
) -> FinalizeInput | None:
    """Normalize the two request shapes clients send into one tagged variant.

    An explicit per-unit scan list wins. Otherwise per-item flags (`scanned_count`
    or a bare `scanned` boolean) are used. No barcode is ever derived from an id.
    """
    if scanned_items:
        claims = []
        for raw in scanned_items:
            order_item_id = raw.get('order_item_id')
            barcode = str(raw.get('barcode') or '').strip()
            if not order_item_id or not barcode:
                raise ValidationError('Each scanned item needs order_item_id and barcode')
            claims.append(ScanClaim(order_item_id=int(order_item_id), barcode=barcode))
        return ExplicitScans(scans=tuple(claims))

    if order_items:
        flags = []
        for raw in order_items:
            order_item_id = raw.get('id') or raw.get('order_item_id')
            if not order_item_id:
                raise ValidationError('Each order item flag needs an id')
            count = raw.get('scanned_count')
            if count is None:
                count = 1 if raw.get('scanned') else 0
            count = int(count)
            if count < 0:
                raise ValidationError('Scanned count cannot be negative')
            if count > 0:
                flags.append(FlagClaim(order_item_id=int(order_item_id), scanned_count=count))
        if not flags:
            raise ValidationError('No items have been scanned for shipment')
        return InferredFromFlags(items=tuple(flags))

    return None


def _shipment_for_order(db: Session, order_id: int) -> Shipment | None:
    return db.execute(
        select(Shipment).where(Shipment.order_id == order_id).execution_options(populate_existing=True)
    ).scalar_one_or_none()


def _apply_explicit_scans(db: Session, *, order_id: int, claims: ExplicitScans, principal_id: int | None) -> None:
    for claim in claims.scans:
        record_scan(
            db,
            order_id=order_id,
            barcode=claim.barcode,
            principal_id=principal_id,
            order_item_id=claim.order_item_id,
        )


def _apply_flag_claims(db: Session, *, order_id: int, claims: InferredFromFlags, principal_id: int | None) -> None:
    if not settings.allow_inferred_finalize:
        raise ValidationError('Finalizing from item flags is disabled; send the scanned barcodes')

    shipment = ensure_in_progress_shipment(db, order_id=order_id)
    items_by_id = {item.id: item for item in list_line_items(db, order_id)}
    for claim in claims.items:
        item = items_by_id.get(claim.order_item_id)
        if item is None:
            raise NotFoundError('Order item does not belong to this order', line_item_id=claim.order_item_id)
        if claim.scanned_count > item.required_quantity:
            raise ValidationError(
                f'Order item {item.id} requires {item.required_quantity} units but {claim.scanned_count} were claimed',
                line_item_id=item.id,
            )
        gap = claim.scanned_count - item.scanned_count
        for _ in range(max(gap, 0)):
            record_unidentified_count(db, shipment=shipment, line_item=item, principal_id=principal_id)
        if gap > 0:
            logger.warning(
                'Counted units without identity',
                extra={'order_id': order_id, 'line_item_id': item.id, 'unidentified': gap},
            )


def _assert_fully_scanned(db: Session, *, order_id: int) -> None:
    for item in list_line_items(db, order_id):
        if item.scanned_count != item.required_quantity:
            raise ConflictError(
                f'Order item {item.id} requires {item.required_quantity} scans but has {item.scanned_count}',
                line_item_id=item.id,
                required=item.required_quantity,
                scanned=item.scanned_count,
            )


def finalize_shipment(
    db: Session,
    *,
    order_id: int,
    principal_id: int | None,
    notes: str | None = None,
    claims: FinalizeInput | None = None,
) -> Shipment:
    """Promote the order's in-progress shipment to COMPLETED.

    NO_SHIPMENT -> IN_PROGRESS -> COMPLETED, with no way back. Everything here
    runs inside the caller's single transaction; a second call for the same order
    raises AlreadyShipped and never produces another shipment.
    """
    if not order_id:
        raise ValidationError('Order ID is required')

    ctx = get_order_context(db, order_id)
    shipment = _shipment_for_order(db, order_id)
    if (shipment and shipment.status == ShipmentStatus.COMPLETED) or ctx.order.status == OrderStatus.SHIPPED:
        raise AlreadyShipped('This order has already been shipped', order_id=order_id)
    if ctx.order.status == OrderStatus.CANCELLED:
        raise ConflictError('This order has been cancelled', order_id=order_id)

    if isinstance(claims, ExplicitScans):
        _apply_explicit_scans(db, order_id=order_id, claims=claims, principal_id=principal_id)
    elif isinstance(claims, InferredFromFlags):
        _apply_flag_claims(db, order_id=order_id, claims=claims, principal_id=principal_id)

    shipment = _shipment_for_order(db, order_id)
    if not shipment:
        raise ConflictError('No items have been scanned for shipment', order_id=order_id)

    _assert_fully_scanned(db, order_id=order_id)

    now = _now()
    promoted = db.execute(
        update(Shipment)
        .where(Shipment.id == shipment.id, Shipment.status == ShipmentStatus.IN_PROGRESS)
        .values(
            status=ShipmentStatus.COMPLETED,
            shipped_by_principal_id=principal_id,
            shipment_date=now,
            notes=(notes or '').strip(),
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if promoted.rowcount == 0:
        raise AlreadyShipped('This order has already been shipped', order_id=order_id)

    set_order_status(db, order_id, OrderStatus.SHIPPED)
    log_audit(
        db,
        actor_principal_id=principal_id,
        action='SHIPMENT_COMPLETED',
        order_id=order_id,
        metadata={'shipment_id': shipment.id, 'order_no': ctx.order.order_no},
    )
    db.flush()
    logger.info(
        'Shipment completed',
        extra={'order_id': order_id, 'shipment_id': shipment.id, 'order_no': ctx.order.order_no},
    )
    return _shipment_for_order(db, order_id)


def _page_bounds(page: int, page_size: int) -> tuple[int, int]:
    page = max(page, 1)
    page_size = min(max(page_size, 1), 200)
    return page, page_size


def list_outstanding_orders(
    db: Session,
    *,
    search: str | None = None,
    page: int = 1,
    page_size: int = 10,
) -> dict:
    page, page_size = _page_bounds(page, page_size)
    totals = (
        select(
            OrderItem.order_id.label('order_id'),
            func.sum(OrderItem.required_quantity).label('total_required'),
            func.sum(OrderItem.scanned_count).label('total_scanned'),
        )
        .group_by(OrderItem.order_id)
        .subquery()
    )

    stmt = (
        select(
            SalesOrder.id,
            SalesOrder.order_no,
            SalesOrder.status,
            SalesOrder.created_at,
            Customer.name,
            totals.c.total_required,
            totals.c.total_scanned,
            Shipment.status.label('shipment_status'),
        )
        .join(Customer, Customer.id == SalesOrder.customer_id)
        .outerjoin(totals, totals.c.order_id == SalesOrder.id)
        .outerjoin(Shipment, Shipment.order_id == SalesOrder.id)
        # shipments.order_id is unique, so the outer join keeps one row per order.
        .where(
            or_(Shipment.id.is_(None), Shipment.status != ShipmentStatus.COMPLETED),
            SalesOrder.status != OrderStatus.CANCELLED,
        )
    )
    term = (search or '').strip()
    if term:
        like = f'%{term}%'
        stmt = stmt.where(or_(SalesOrder.order_no.ilike(like), Customer.name.ilike(like)))

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = db.execute(
        stmt.order_by(SalesOrder.created_at.desc(), SalesOrder.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).all()
    return {
        'orders': [
            {
                'id': order_id,
                'order_no': order_no,
                'status': status.value,
                'created_at': created_at,
                'customer_name': customer_name,
                'total_required': int(total_required or 0),
                'total_scanned': int(total_scanned or 0),
                'shipment_status': shipment_status.value if shipment_status else None,
            }
            for order_id, order_no, status, created_at, customer_name, total_required, total_scanned, shipment_status in rows
        ],
        'total_items': total,
        'total_pages': (total + page_size - 1) // page_size,
        'current_page': page,
    }


def list_shipments(
    db: Session,
    *,
    search: str | None = None,
    order_id: int | None = None,
    page: int = 1,
    page_size: int = 10,
) -> dict:
    page, page_size = _page_bounds(page, page_size)
    item_counts = (
        select(ShipmentItem.shipment_id.label('shipment_id'), func.count(ShipmentItem.id).label('item_count'))
        .group_by(ShipmentItem.shipment_id)
        .subquery()
    )
    stmt = (
        select(
            Shipment.id,
            Shipment.order_id,
            Shipment.shipment_date,
            Shipment.notes,
            SalesOrder.order_no,
            Customer.name,
            PrincipalModel.username,
            item_counts.c.item_count,
        )
        .join(SalesOrder, SalesOrder.id == Shipment.order_id)
        .join(Customer, Customer.id == SalesOrder.customer_id)
        .outerjoin(PrincipalModel, PrincipalModel.id == Shipment.shipped_by_principal_id)
        .outerjoin(item_counts, item_counts.c.shipment_id == Shipment.id)
        .where(Shipment.status == ShipmentStatus.COMPLETED)
    )
    if order_id is not None:
        stmt = stmt.where(Shipment.order_id == order_id)
    term = (search or '').strip()
    if term:
        like = f'%{term}%'
        stmt = stmt.where(or_(SalesOrder.order_no.ilike(like), Customer.name.ilike(like)))

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = db.execute(
        stmt.order_by(Shipment.shipment_date.desc(), Shipment.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).all()
    return {
        'shipments': [
            {
                'id': shipment_id,
                'order_id': shipment_order_id,
                'order_no': order_no,
                'customer_name': customer_name,
                'shipped_by': shipped_by,
                'shipment_date': shipment_date,
                'notes': notes,
                'item_count': int(item_count or 0),
            }
            for shipment_id, shipment_order_id, shipment_date, notes, order_no, customer_name, shipped_by, item_count in rows
        ],
        'total_items': total,
        'total_pages': (total + page_size - 1) // page_size,
        'current_page': page,
    }


def get_shipment_detail(db: Session, *, shipment_id: int) -> dict:
    shipment = db.execute(
        select(Shipment).where(Shipment.id == shipment_id).execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not shipment:
        raise NotFoundError('Shipment not found', shipment_id=shipment_id)

    ctx = get_order_context(db, shipment.order_id)
    scans = db.execute(
        select(ShipmentItem, JumboRoll.roll_no, DividedRoll.roll_no)
        .outerjoin(JumboRoll, JumboRoll.id == ShipmentItem.jumbo_roll_id)
        .outerjoin(DividedRoll, DividedRoll.id == ShipmentItem.divided_roll_id)
        .where(ShipmentItem.shipment_id == shipment.id)
        .order_by(ShipmentItem.id.asc())
    ).all()

    scans_by_item: dict[int, list[dict]] = {}
    for scan, jumbo_roll_no, divided_roll_no in scans:
        scans_by_item.setdefault(scan.order_item_id, []).append(
            {
                'scan_id': scan.id,
                'kind': scan.kind.value,
                'barcode': scan.barcode,
                'roll_no': jumbo_roll_no or divided_roll_no,
                'consumed_length': scan.consumed_length,
                'recorded_at': scan.recorded_at,
            }
        )

    return {
        'id': shipment.id,
        'status': shipment.status.value,
        'order_id': ctx.order.id,
        'order_no': ctx.order.order_no,
        'customer_name': ctx.customer.name,
        'customer_address': ctx.customer.address,
        'customer_phone': ctx.customer.phone,
        'shipped_by_principal_id': shipment.shipped_by_principal_id,
        'shipment_date': shipment.shipment_date,
        'notes': shipment.notes,
        'items': [
            {
                'line_item_id': item.id,
                'material_type': item.material_type,
                'basis_weight': item.basis_weight,
                'width': item.width,
                'length': item.length,
                'required_quantity': item.required_quantity,
                'scanned_count': item.scanned_count,
                'unidentified_count': sum(
                    1 for row in scans_by_item.get(item.id, []) if row['kind'] == ScanKind.UNIDENTIFIED.value
                ),
                'scans': scans_by_item.get(item.id, []),
            }
            for item in ctx.line_items
        ],
    }
