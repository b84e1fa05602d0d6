from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from rollship.db import insert_for
from rollship.models import (
    OrderItem,
    OrderStatus,
    ScanKind,
    Shipment,
    ShipmentItem,
    ShipmentStatus,
    UnitKind,
)
from rollship.services.audit_service import log_audit
from rollship.services.errors import (
    ConflictError,
    InsufficientInventoryError,
    LineItemFull,
    NotFoundError,
    OrderAlreadyShipped,
    UnitAlreadySold,
    ValidationError,
)
from rollship.services.inventory_service import ScannedUnit, consume_unit, find_unit_by_barcode, release_unit
from rollship.services.order_catalog_service import OrderContext, get_order_context
from rollship.services.progress_service import Progress, query_progress
from rollship.services.spec_matcher import MatchStatus, match_line_item, spec_matches

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass
class ScanResult:
    already_recorded: bool
    scan: ShipmentItem
    unit: ScannedUnit
    progress: Progress
    ambiguous: bool = False

    def to_dict(self) -> dict:
        return {
            'already_recorded': self.already_recorded,
            'ambiguous_match': self.ambiguous,
            'scan': {
                'id': self.scan.id,
                'shipment_id': self.scan.shipment_id,
                'line_item_id': self.scan.order_item_id,
                'barcode': self.scan.barcode,
                'unit_kind': self.unit.kind.value,
                'unit_id': self.unit.id,
                'consumed_length': self.scan.consumed_length,
                'recorded_at': self.scan.recorded_at,
            },
            'unit_remaining_length': self.unit.remaining_length,
            'progress': self.progress.to_dict(),
        }


def _shipment_for_order(db: Session, order_id: int) -> Shipment | None:
    return db.execute(
        select(Shipment).where(Shipment.order_id == order_id).execution_options(populate_existing=True)
    ).scalar_one_or_none()


def _scannable_guard(ctx: OrderContext, shipment: Shipment | None) -> None:
    if (shipment and shipment.status == ShipmentStatus.COMPLETED) or ctx.order.status == OrderStatus.SHIPPED:
        raise OrderAlreadyShipped('This order has already been shipped', order_id=ctx.order.id)
    if ctx.order.status == OrderStatus.CANCELLED:
        raise ConflictError('This order has been cancelled', order_id=ctx.order.id)


def ensure_in_progress_shipment(db: Session, *, order_id: int) -> Shipment:
    # Atomic get-or-create: the unique key on shipments.order_id arbitrates concurrent first scans.
    db.execute(
        insert_for(db, Shipment.__table__)
        .values(order_id=order_id, status=ShipmentStatus.IN_PROGRESS.value, notes='')
        .on_conflict_do_nothing(index_elements=['order_id'])
    )
    shipment = _shipment_for_order(db, order_id)
    if shipment.status != ShipmentStatus.IN_PROGRESS:
        raise OrderAlreadyShipped('This order has already been shipped', order_id=order_id)
    return shipment


def _existing_scan(db: Session, *, order_id: int, barcode: str, order_item_id: int | None) -> ShipmentItem | None:
    # Without an explicit line item any earlier scan of the barcode on the order counts;
    # with one, only that line item does, which allows a follow-up cut from the same roll.
    stmt = (
        select(ShipmentItem)
        .join(OrderItem, OrderItem.id == ShipmentItem.order_item_id)
        .where(OrderItem.order_id == order_id, ShipmentItem.barcode == barcode)
    )
    if order_item_id is not None:
        stmt = stmt.where(ShipmentItem.order_item_id == order_item_id)
    return db.execute(stmt.order_by(ShipmentItem.id.asc())).scalars().first()


def _resolve_line_item(
    ctx: OrderContext,
    unit: ScannedUnit,
    order_item_id: int | None,
) -> tuple[OrderItem, bool]:
    if order_item_id is not None:
        item = next((li for li in ctx.line_items if li.id == order_item_id), None)
        if item is None:
            raise NotFoundError(
                'Order item not found or does not belong to the specified order',
                order_id=ctx.order.id,
                line_item_id=order_item_id,
            )
        if not spec_matches(unit.spec, item):
            raise ConflictError(
                'Scanned unit does not match the line item specification',
                barcode=unit.barcode,
                line_item_id=item.id,
            )
        if item.scanned_count >= item.required_quantity:
            raise LineItemFull(
                'Line item is already fully scanned; remove a previous scan to replace it',
                line_item_id=item.id,
                required=item.required_quantity,
            )
        return item, False

    result = match_line_item(unit.spec, ctx.line_items)
    if result.found:
        return result.line_item, result.status == MatchStatus.AMBIGUOUS

    full_matches = [li for li in ctx.line_items if spec_matches(unit.spec, li)]
    if full_matches:
        raise LineItemFull(
            'Every line item matching this unit is already fully scanned; remove a previous scan to replace it',
            barcode=unit.barcode,
            line_item_ids=[li.id for li in full_matches],
        )
    raise NotFoundError('No outstanding line item matches the scanned unit', barcode=unit.barcode)


def _increment_scanned(db: Session, *, line_item: OrderItem) -> None:
    # Conditional increment; the row itself decides whether another unit still fits.
    result = db.execute(
        update(OrderItem)
        .where(OrderItem.id == line_item.id, OrderItem.scanned_count < OrderItem.required_quantity)
        .values(scanned_count=OrderItem.scanned_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise LineItemFull(
            'Line item is already fully scanned; remove a previous scan to replace it',
            line_item_id=line_item.id,
            required=line_item.required_quantity,
        )


def _decrement_scanned(db: Session, *, order_item_id: int) -> None:
    result = db.execute(
        update(OrderItem)
        .where(OrderItem.id == order_item_id, OrderItem.scanned_count > 0)
        .values(scanned_count=OrderItem.scanned_count - 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ConflictError('Line item scan counter is already zero', line_item_id=order_item_id)


def _consumption_length(line_item: OrderItem, unit: ScannedUnit) -> Decimal:
    if line_item.length is not None:
        return Decimal(line_item.length)
    return Decimal(unit.remaining_length)


def record_scan(
    db: Session,
    *,
    order_id: int,
    barcode: str,
    principal_id: int | None,
    order_item_id: int | None = None,
) -> ScanResult:
    """Record one barcode scan against an order as a single unit of work.

    Re-scanning a barcode already recorded on the order is a no-op that reports
    `already_recorded`. Every rejection raises before anything is committed; the
    caller owns the transaction and rolls it back on error.
    """
    clean_barcode = (barcode or '').strip()
    if not order_id or not clean_barcode:
        raise ValidationError('Missing required parameters: order_id and barcode')

    ctx = get_order_context(db, order_id)
    _scannable_guard(ctx, _shipment_for_order(db, order_id))
    unit = find_unit_by_barcode(db, clean_barcode)

    existing = _existing_scan(db, order_id=order_id, barcode=clean_barcode, order_item_id=order_item_id)
    if existing:
        logger.info('Scan already recorded', extra={'order_id': order_id, 'barcode': clean_barcode})
        return ScanResult(
            already_recorded=True,
            scan=existing,
            unit=unit,
            progress=query_progress(db, order_id=order_id),
        )

    if unit.sold_elsewhere(order_id):
        logger.info('Scan rejected: unit sold elsewhere', extra={'order_id': order_id, 'barcode': clean_barcode})
        raise UnitAlreadySold(
            'This item has already been sold to a different order',
            barcode=clean_barcode,
            sold_order_id=unit.sold_order_id,
        )

    line_item, ambiguous = _resolve_line_item(ctx, unit, order_item_id)
    quantity = _consumption_length(line_item, unit)
    if quantity <= 0:
        raise InsufficientInventoryError('Unit has no remaining length to ship', barcode=clean_barcode)

    shipment = ensure_in_progress_shipment(db, order_id=order_id)
    inserted = db.execute(
        insert_for(db, ShipmentItem.__table__)
        .values(
            shipment_id=shipment.id,
            order_item_id=line_item.id,
            kind=ScanKind.SCANNED.value,
            barcode=clean_barcode,
            jumbo_roll_id=unit.id if unit.kind == UnitKind.JUMBO else None,
            divided_roll_id=unit.id if unit.kind == UnitKind.DIVIDED else None,
            consumed_length=quantity,
            recorded_by_principal_id=principal_id,
            recorded_at=_now(),
        )
        .on_conflict_do_nothing(index_elements=['order_item_id', 'barcode'])
    )
    scan = db.execute(
        select(ShipmentItem).where(ShipmentItem.order_item_id == line_item.id, ShipmentItem.barcode == clean_barcode)
    ).scalar_one()
    if inserted.rowcount == 0:
        # A concurrent request recorded the same scan first.
        return ScanResult(
            already_recorded=True,
            scan=scan,
            unit=unit,
            progress=query_progress(db, order_id=order_id),
        )

    _increment_scanned(db, line_item=line_item)
    unit = consume_unit(db, unit=unit, order_id=order_id, customer_name=ctx.customer_name, quantity=quantity)

    log_audit(
        db,
        actor_principal_id=principal_id,
        action='SCAN_RECORDED',
        order_id=order_id,
        metadata={'barcode': clean_barcode, 'line_item_id': line_item.id, 'consumed_length': str(quantity)},
    )
    logger.info(
        'Scan recorded',
        extra={'order_id': order_id, 'line_item_id': line_item.id, 'barcode': clean_barcode, 'ambiguous': ambiguous},
    )
    return ScanResult(
        already_recorded=False,
        scan=scan,
        unit=unit,
        progress=query_progress(db, order_id=order_id),
        ambiguous=ambiguous,
    )


def record_unidentified_count(
    db: Session,
    *,
    shipment: Shipment,
    line_item: OrderItem,
    principal_id: int | None,
) -> ShipmentItem:
    """Count one unit against a line item without a physical identity.

    No barcode is invented and no inventory is touched.
    """
    scan = ShipmentItem(
        shipment_id=shipment.id,
        order_item_id=line_item.id,
        kind=ScanKind.UNIDENTIFIED,
        barcode=None,
        consumed_length=Decimal('0'),
        recorded_by_principal_id=principal_id,
        recorded_at=_now(),
    )
    db.add(scan)
    db.flush()
    _increment_scanned(db, line_item=line_item)
    return scan


def _unwind_scan(db: Session, *, order_id: int, scan: ShipmentItem) -> None:
    _decrement_scanned(db, order_item_id=scan.order_item_id)

    if scan.kind == ScanKind.SCANNED and (scan.jumbo_roll_id or scan.divided_roll_id):
        kind = UnitKind.JUMBO if scan.jumbo_roll_id else UnitKind.DIVIDED
        unit_id = scan.jumbo_roll_id or scan.divided_roll_id
        column = ShipmentItem.jumbo_roll_id if kind == UnitKind.JUMBO else ShipmentItem.divided_roll_id
        other_refs = db.execute(
            select(func.count(ShipmentItem.id))
            .join(OrderItem, OrderItem.id == ShipmentItem.order_item_id)
            .where(column == unit_id, OrderItem.order_id == order_id, ShipmentItem.id != scan.id)
        ).scalar_one()
        release_unit(
            db,
            kind=kind,
            unit_id=unit_id,
            order_id=order_id,
            quantity=scan.consumed_length,
            keep_sold=other_refs > 0,
        )

    db.delete(scan)
    db.flush()


def _in_progress_shipment_or_raise(db: Session, *, order_id: int) -> Shipment:
    shipment = _shipment_for_order(db, order_id)
    if not shipment:
        raise NotFoundError('No scans have been recorded for this order', order_id=order_id)
    if shipment.status != ShipmentStatus.IN_PROGRESS:
        raise OrderAlreadyShipped('This order has already been shipped', order_id=order_id)
    return shipment


def remove_scan(db: Session, *, order_id: int, scan_id: int, principal_id: int | None) -> Progress:
    shipment = _in_progress_shipment_or_raise(db, order_id=order_id)
    scan = db.execute(
        select(ShipmentItem).where(ShipmentItem.id == scan_id, ShipmentItem.shipment_id == shipment.id)
    ).scalar_one_or_none()
    if not scan:
        raise NotFoundError('Scan not found for this order', order_id=order_id, scan_id=scan_id)

    barcode = scan.barcode
    _unwind_scan(db, order_id=order_id, scan=scan)
    log_audit(
        db,
        actor_principal_id=principal_id,
        action='SCAN_REMOVED',
        order_id=order_id,
        metadata={'scan_id': scan_id, 'barcode': barcode},
    )
    logger.info('Scan removed', extra={'order_id': order_id, 'scan_id': scan_id, 'barcode': barcode})
    return query_progress(db, order_id=order_id)


def discard_in_progress_shipment(db: Session, *, order_id: int, principal_id: int | None) -> Progress:
    shipment = _in_progress_shipment_or_raise(db, order_id=order_id)
    scans = db.execute(
        select(ShipmentItem).where(ShipmentItem.shipment_id == shipment.id).order_by(ShipmentItem.id.desc())
    ).scalars().all()
    for scan in scans:
        _unwind_scan(db, order_id=order_id, scan=scan)
    db.delete(shipment)
    db.flush()

    log_audit(
        db,
        actor_principal_id=principal_id,
        action='SHIPMENT_DISCARDED',
        order_id=order_id,
        metadata={'shipment_id': shipment.id, 'scans_removed': len(scans)},
    )
    logger.info('In-progress shipment discarded', extra={'order_id': order_id, 'scans_removed': len(scans)})
    return query_progress(db, order_id=order_id)
