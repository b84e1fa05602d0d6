from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import func, literal, or_, select, union_all, update
from sqlalchemy.orm import Session

from rollship.config import settings
from rollship.models import DividedRoll, InspectionLog, JumboRoll, ShipmentItem, UnitKind
from rollship.services.errors import (
    ConflictError,
    InsufficientInventoryError,
    NotFoundError,
    UnitAlreadySold,
    ValidationError,
)
from rollship.services.spec_matcher import UnitSpec

logger = logging.getLogger(__name__)

WEIGHT_QUANT = Decimal('0.001')


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _model_for(kind: UnitKind):
    return JumboRoll if kind == UnitKind.JUMBO else DividedRoll


def _positive(value, *, field: str) -> Decimal:
    try:
        parsed = Decimal(str(value))
    except (ArithmeticError, ValueError) as exc:
        raise ValidationError(f'Invalid {field}') from exc
    if not parsed.is_finite() or parsed <= 0:
        raise ValidationError(f'{field} must be greater than zero')
    return parsed


@dataclass
class ScannedUnit:
    kind: UnitKind
    id: int
    barcode: str
    roll_no: str
    spec: UnitSpec
    remaining_length: Decimal
    sold: bool
    sold_order_id: int | None

    def sold_elsewhere(self, order_id: int) -> bool:
        return self.sold and self.sold_order_id != order_id

    def to_dict(self) -> dict:
        return {
            'kind': self.kind.value,
            'id': self.id,
            'barcode': self.barcode,
            'roll_no': self.roll_no,
            'material_type': self.spec.material_type,
            'basis_weight': self.spec.basis_weight,
            'width': self.spec.width,
            'remaining_length': self.remaining_length,
            'sold': self.sold,
            'sold_order_id': self.sold_order_id,
        }


def _jumbo_view(roll: JumboRoll) -> ScannedUnit:
    return ScannedUnit(
        kind=UnitKind.JUMBO,
        id=roll.id,
        barcode=roll.barcode,
        roll_no=roll.roll_no,
        spec=UnitSpec(material_type=roll.material_type, basis_weight=roll.basis_weight, width=roll.width),
        remaining_length=roll.remaining_length,
        sold=roll.sold,
        sold_order_id=roll.sold_order_id,
    )


def _divided_view(roll: DividedRoll, parent: JumboRoll) -> ScannedUnit:
    # Material and basis weight are properties of the parent paper; only width is re-cut.
    return ScannedUnit(
        kind=UnitKind.DIVIDED,
        id=roll.id,
        barcode=roll.barcode,
        roll_no=roll.roll_no,
        spec=UnitSpec(material_type=parent.material_type, basis_weight=parent.basis_weight, width=roll.width),
        remaining_length=roll.remaining_length,
        sold=roll.sold,
        sold_order_id=roll.sold_order_id,
    )


def get_jumbo_roll(db: Session, jumbo_roll_id: int) -> JumboRoll:
    roll = db.execute(
        select(JumboRoll).where(JumboRoll.id == jumbo_roll_id).execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not roll:
        raise NotFoundError('Jumbo roll not found', jumbo_roll_id=jumbo_roll_id)
    return roll


def get_divided_roll(db: Session, divided_roll_id: int) -> DividedRoll:
    roll = db.execute(
        select(DividedRoll).where(DividedRoll.id == divided_roll_id).execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not roll:
        raise NotFoundError('Divided roll not found', divided_roll_id=divided_roll_id)
    return roll


def get_unit(db: Session, *, kind: UnitKind, unit_id: int) -> ScannedUnit:
    if kind == UnitKind.JUMBO:
        return _jumbo_view(get_jumbo_roll(db, unit_id))
    roll = get_divided_roll(db, unit_id)
    return _divided_view(roll, get_jumbo_roll(db, roll.jumbo_roll_id))


def find_unit_by_barcode(db: Session, barcode: str) -> ScannedUnit:
    clean = (barcode or '').strip()
    if not clean:
        raise ValidationError('Barcode is required')

    jumbo = db.execute(
        select(JumboRoll).where(JumboRoll.barcode == clean).execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if jumbo:
        return _jumbo_view(jumbo)

    divided = db.execute(
        select(DividedRoll).where(DividedRoll.barcode == clean).execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if divided:
        return _divided_view(divided, get_jumbo_roll(db, divided.jumbo_roll_id))

    raise NotFoundError('Barcode does not match any item in inventory', barcode=clean)


def _barcode_taken(db: Session, barcode: str) -> bool:
    in_jumbo = db.execute(select(JumboRoll.id).where(JumboRoll.barcode == barcode)).first()
    if in_jumbo:
        return True
    return db.execute(select(DividedRoll.id).where(DividedRoll.barcode == barcode)).first() is not None


def next_roll_no(db: Session, *, today: date | None = None) -> str:
    day = today or _now().date()
    prefix = f'{settings.roll_number_prefix}{day:%y%m}'
    latest = db.execute(
        select(JumboRoll.roll_no).where(JumboRoll.roll_no.startswith(prefix)).order_by(JumboRoll.roll_no.desc())
    ).scalars().first()
    sequence = 1
    if latest:
        tail = latest[len(prefix) :]
        if tail.isdigit():
            sequence = int(tail) + 1
    return f'{prefix}{sequence:04d}'


def register_jumbo_roll(
    db: Session,
    *,
    barcode: str,
    material_type: str,
    basis_weight,
    width,
    length,
    weight=None,
    container_no: str | None = None,
    arrival_date: date | None = None,
    note: str | None = None,
) -> JumboRoll:
    clean_barcode = (barcode or '').strip()
    if not clean_barcode:
        raise ValidationError('Barcode is required')
    clean_type = (material_type or '').strip()
    if not clean_type:
        raise ValidationError('Material type is required')
    total = _positive(length, field='length')
    if _barcode_taken(db, clean_barcode):
        raise ConflictError('Barcode already registered', barcode=clean_barcode)

    roll = JumboRoll(
        roll_no=next_roll_no(db, today=arrival_date),
        barcode=clean_barcode,
        material_type=clean_type,
        basis_weight=_positive(basis_weight, field='basis weight'),
        width=_positive(width, field='width'),
        total_length=total,
        remaining_length=total,
        weight=_positive(weight, field='weight') if weight is not None else None,
        container_no=(container_no or '').strip() or None,
        arrival_date=arrival_date or _now().date(),
        note=note,
        sold=False,
        inspected=False,
    )
    db.add(roll)
    db.flush()
    logger.info('Registered jumbo roll', extra={'jumbo_roll_id': roll.id, 'roll_no': roll.roll_no})
    return roll


def divided_suffix(index: int) -> str:
    """Spreadsheet-style suffix: 0 -> A, 25 -> Z, 26 -> AA."""
    result = ''
    num = index
    while num >= 0:
        result = chr(65 + (num % 26)) + result
        num = num // 26 - 1
    return result


def cut_divided_rolls(
    db: Session,
    *,
    jumbo_roll_id: int,
    length,
    count: int,
    note: str | None = None,
) -> list[DividedRoll]:
    cut_length = _positive(length, field='length')
    if count < 1:
        raise ValidationError('Roll count must be at least 1')

    parent = get_jumbo_roll(db, jumbo_roll_id)
    total = cut_length * count

    # Conditional decrement: the parent row is the arbiter when two cuts race.
    result = db.execute(
        update(JumboRoll)
        .where(JumboRoll.id == parent.id, JumboRoll.remaining_length >= total)
        .values(remaining_length=JumboRoll.remaining_length - total)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise InsufficientInventoryError(
            'Total length exceeds available stock length',
            jumbo_roll_id=parent.id,
            requested=str(total),
            remaining=str(parent.remaining_length),
        )

    already_cut = db.execute(
        select(func.count(DividedRoll.id)).where(DividedRoll.jumbo_roll_id == parent.id)
    ).scalar_one()

    unit_weight = None
    if parent.weight is not None and parent.total_length:
        unit_weight = (parent.weight / parent.total_length * cut_length).quantize(WEIGHT_QUANT)

    rolls = []
    for i in range(count):
        roll_no = f'{parent.roll_no}{divided_suffix(already_cut + i)}'
        if _barcode_taken(db, roll_no):
            raise ConflictError('Generated roll number collides with an existing barcode', roll_no=roll_no)
        rolls.append(
            DividedRoll(
                roll_no=roll_no,
                barcode=roll_no,
                jumbo_roll_id=parent.id,
                width=parent.width,
                length=cut_length,
                remaining_length=cut_length,
                weight=unit_weight,
                note=note,
                sold=False,
                inspected=False,
            )
        )
    db.add_all(rolls)
    db.flush()
    logger.info(
        'Cut divided rolls',
        extra={'jumbo_roll_id': parent.id, 'count': count, 'cut_length': str(cut_length)},
    )
    return rolls


def _scan_references(db: Session, *, kind: UnitKind, unit_id: int) -> int:
    column = ShipmentItem.jumbo_roll_id if kind == UnitKind.JUMBO else ShipmentItem.divided_roll_id
    return db.execute(select(func.count(ShipmentItem.id)).where(column == unit_id)).scalar_one()


def delete_divided_roll(db: Session, *, divided_roll_id: int) -> None:
    roll = get_divided_roll(db, divided_roll_id)
    if roll.sold:
        raise ConflictError('Sold divided rolls cannot be deleted', divided_roll_id=roll.id)
    if _scan_references(db, kind=UnitKind.DIVIDED, unit_id=roll.id):
        raise ConflictError('Divided roll is referenced by a shipment scan', divided_roll_id=roll.id)

    result = db.execute(
        update(JumboRoll)
        .where(JumboRoll.id == roll.jumbo_roll_id, JumboRoll.remaining_length + roll.length <= JumboRoll.total_length)
        .values(remaining_length=JumboRoll.remaining_length + roll.length)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ConflictError('Re-crediting the parent roll would exceed its total length', divided_roll_id=roll.id)
    db.delete(roll)
    db.flush()
    logger.info('Deleted divided roll', extra={'divided_roll_id': divided_roll_id, 'jumbo_roll_id': roll.jumbo_roll_id})


def resize_divided_roll(
    db: Session,
    *,
    divided_roll_id: int,
    length,
    width=None,
    note: str | None = None,
) -> DividedRoll:
    roll = get_divided_roll(db, divided_roll_id)
    new_length = _positive(length, field='length')
    if roll.sold or roll.remaining_length != roll.length:
        raise ConflictError('Consumed divided rolls cannot be resized', divided_roll_id=roll.id)

    diff = new_length - roll.length
    if diff > 0:
        result = db.execute(
            update(JumboRoll)
            .where(JumboRoll.id == roll.jumbo_roll_id, JumboRoll.remaining_length >= diff)
            .values(remaining_length=JumboRoll.remaining_length - diff)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InsufficientInventoryError('Not enough remaining length in parent stock', divided_roll_id=roll.id)
    elif diff < 0:
        result = db.execute(
            update(JumboRoll)
            .where(
                JumboRoll.id == roll.jumbo_roll_id,
                JumboRoll.remaining_length - diff <= JumboRoll.total_length,
            )
            .values(remaining_length=JumboRoll.remaining_length - diff)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConflictError('Re-crediting the parent roll would exceed its total length', divided_roll_id=roll.id)

    roll.length = new_length
    roll.remaining_length = new_length
    if width is not None:
        roll.width = _positive(width, field='width')
    if note is not None:
        roll.note = note
    db.flush()
    return roll


def set_remaining_length(db: Session, *, jumbo_roll_id: int, remaining_length) -> JumboRoll:
    roll = get_jumbo_roll(db, jumbo_roll_id)
    try:
        value = Decimal(str(remaining_length))
    except ArithmeticError as exc:
        raise ValidationError('Invalid remaining length') from exc
    if not value.is_finite() or value < 0:
        raise ValidationError('Remaining length cannot be negative')
    if value > roll.total_length:
        raise ValidationError('Remaining length cannot exceed the total length')
    roll.remaining_length = value
    db.flush()
    return roll


def update_jumbo_roll(
    db: Session,
    *,
    jumbo_roll_id: int,
    material_type: str | None = None,
    basis_weight=None,
    width=None,
    length=None,
    weight=None,
    container_no: str | None = None,
    arrival_date: date | None = None,
    note: str | None = None,
) -> JumboRoll:
    """Correct intake details of an unsold jumbo roll.

    A new total length moves the remaining length by the same amount, so
    length already cut into divided rolls stays accounted for.
    """
    roll = get_jumbo_roll(db, jumbo_roll_id)
    if roll.sold:
        raise ConflictError('Sold jumbo rolls cannot be edited', jumbo_roll_id=roll.id)

    if length is not None:
        new_total = _positive(length, field='length')
        diff = new_total - roll.total_length
        result = db.execute(
            update(JumboRoll)
            .where(
                JumboRoll.id == roll.id,
                JumboRoll.sold.is_(False),
                JumboRoll.remaining_length + diff >= 0,
            )
            .values(total_length=new_total, remaining_length=JumboRoll.remaining_length + diff)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InsufficientInventoryError(
                'New length is shorter than what has already been cut from this roll',
                jumbo_roll_id=roll.id,
                requested=str(new_total),
            )
        roll = get_jumbo_roll(db, roll.id)

    if material_type is not None:
        clean_type = material_type.strip()
        if not clean_type:
            raise ValidationError('Material type is required')
        roll.material_type = clean_type
    if basis_weight is not None:
        roll.basis_weight = _positive(basis_weight, field='basis weight')
    if width is not None:
        roll.width = _positive(width, field='width')
    if weight is not None:
        roll.weight = _positive(weight, field='weight')
    if container_no is not None:
        roll.container_no = container_no.strip() or None
    if arrival_date is not None:
        roll.arrival_date = arrival_date
    if note is not None:
        roll.note = note
    db.flush()
    logger.info('Updated jumbo roll', extra={'jumbo_roll_id': roll.id})
    return roll


def _jumbo_delete_blockers(db: Session, roll: JumboRoll) -> str | None:
    if roll.sold:
        return 'sold'
    children = db.execute(
        select(func.count(DividedRoll.id)).where(DividedRoll.jumbo_roll_id == roll.id)
    ).scalar_one()
    if children:
        return 'has divided rolls'
    if _scan_references(db, kind=UnitKind.JUMBO, unit_id=roll.id):
        return 'referenced by a shipment scan'
    return None


def delete_jumbo_roll(db: Session, *, jumbo_roll_id: int) -> None:
    roll = get_jumbo_roll(db, jumbo_roll_id)
    reason = _jumbo_delete_blockers(db, roll)
    if reason:
        raise ConflictError(f'Jumbo roll cannot be deleted: {reason}', jumbo_roll_id=roll.id, roll_no=roll.roll_no)
    db.delete(roll)
    db.flush()
    logger.info('Deleted jumbo roll', extra={'jumbo_roll_id': jumbo_roll_id})


def bulk_delete_jumbo_rolls(db: Session, *, jumbo_roll_ids: list[int]) -> int:
    """Delete several jumbo rolls, or none of them when any one is still in use."""
    ids = sorted(set(jumbo_roll_ids or []))
    if not ids:
        raise ValidationError('No IDs provided for deletion')

    rolls = db.execute(select(JumboRoll).where(JumboRoll.id.in_(ids))).scalars().all()
    missing = sorted(set(ids) - {roll.id for roll in rolls})
    if missing:
        raise NotFoundError('Jumbo roll not found', jumbo_roll_ids=missing)

    blocked = [roll.roll_no for roll in rolls if _jumbo_delete_blockers(db, roll)]
    if blocked:
        raise ConflictError(
            'Jumbo rolls with divided rolls, scans or sales cannot be deleted',
            roll_nos=blocked,
        )

    for roll in rolls:
        db.delete(roll)
    db.flush()
    logger.info('Bulk deleted jumbo rolls', extra={'jumbo_roll_ids': ids})
    return len(rolls)


def inspect_unit(db: Session, *, kind: UnitKind, unit_id: int, principal_id: int | None) -> ScannedUnit:
    roll = get_jumbo_roll(db, unit_id) if kind == UnitKind.JUMBO else get_divided_roll(db, unit_id)
    roll.inspected = True
    roll.inspected_at = _now()
    roll.inspected_by_principal_id = principal_id
    db.add(
        InspectionLog(
            unit_kind=kind,
            unit_id=roll.id,
            barcode=roll.barcode,
            action='INSPECTED',
            principal_id=principal_id,
        )
    )
    db.flush()
    logger.info('Inspected unit', extra={'unit_kind': kind.value, 'unit_id': roll.id})
    return get_unit(db, kind=kind, unit_id=roll.id)


def consume_unit(
    db: Session,
    *,
    unit: ScannedUnit,
    order_id: int,
    customer_name: str,
    quantity,
) -> ScannedUnit:
    """Mark a unit sold to the order and take `quantity` off its remaining length.

    Compare-and-set on `sold`: the first consumer claims the unit. A unit already
    sold to the same order only has its length decremented again. Never clamps.
    """
    amount = _positive(quantity, field='quantity')
    model = _model_for(unit.kind)

    claimed = db.execute(
        update(model)
        .where(model.id == unit.id, model.sold.is_(False), model.remaining_length >= amount)
        .values(
            sold=True,
            sold_order_id=order_id,
            sold_customer_name=customer_name,
            sold_at=_now(),
            remaining_length=model.remaining_length - amount,
        )
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount == 0:
        follow_up = db.execute(
            update(model)
            .where(
                model.id == unit.id,
                model.sold.is_(True),
                model.sold_order_id == order_id,
                model.remaining_length >= amount,
            )
            .values(remaining_length=model.remaining_length - amount)
            .execution_options(synchronize_session=False)
        )
        if follow_up.rowcount == 0:
            current = get_unit(db, kind=unit.kind, unit_id=unit.id)
            if current.sold_elsewhere(order_id):
                raise UnitAlreadySold(
                    'This item has already been sold to a different order',
                    barcode=current.barcode,
                )
            raise InsufficientInventoryError(
                'Consumption would drive remaining length below zero',
                barcode=current.barcode,
                requested=str(amount),
                remaining=str(current.remaining_length),
            )

    return get_unit(db, kind=unit.kind, unit_id=unit.id)


def release_unit(
    db: Session,
    *,
    kind: UnitKind,
    unit_id: int,
    order_id: int,
    quantity,
    keep_sold: bool,
) -> ScannedUnit:
    """Give consumed length back to a unit, clearing the sale when nothing else holds it."""
    amount = Decimal(str(quantity))
    model = _model_for(kind)
    ceiling = model.total_length if kind == UnitKind.JUMBO else model.length

    values = {'remaining_length': model.remaining_length + amount}
    if not keep_sold:
        values.update(sold=False, sold_order_id=None, sold_customer_name=None, sold_at=None)

    result = db.execute(
        update(model)
        .where(
            model.id == unit_id,
            model.sold.is_(True),
            model.sold_order_id == order_id,
            model.remaining_length + amount <= ceiling,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ConflictError('Unit is not held by this order or would exceed its original length', unit_id=unit_id)
    return get_unit(db, kind=kind, unit_id=unit_id)


def _jumbo_listing(sold: bool | None, like: str | None):
    stmt = select(
        literal(UnitKind.JUMBO.value).label('kind'),
        JumboRoll.id.label('id'),
        JumboRoll.roll_no.label('roll_no'),
        JumboRoll.barcode.label('barcode'),
        JumboRoll.material_type.label('material_type'),
        JumboRoll.basis_weight.label('basis_weight'),
        JumboRoll.width.label('width'),
        JumboRoll.total_length.label('length'),
        JumboRoll.remaining_length.label('remaining_length'),
        JumboRoll.sold.label('sold'),
        JumboRoll.sold_order_id.label('sold_order_id'),
        JumboRoll.sold_customer_name.label('sold_customer_name'),
        JumboRoll.sold_at.label('sold_at'),
        JumboRoll.inspected.label('inspected'),
        JumboRoll.created_at.label('created_at'),
    )
    if sold is not None:
        stmt = stmt.where(JumboRoll.sold.is_(sold))
    if like:
        stmt = stmt.where(or_(JumboRoll.barcode.ilike(like), JumboRoll.roll_no.ilike(like)))
    return stmt


def _divided_listing(sold: bool | None, like: str | None):
    # Material and basis weight come from the parent roll.
    stmt = select(
        literal(UnitKind.DIVIDED.value).label('kind'),
        DividedRoll.id.label('id'),
        DividedRoll.roll_no.label('roll_no'),
        DividedRoll.barcode.label('barcode'),
        JumboRoll.material_type.label('material_type'),
        JumboRoll.basis_weight.label('basis_weight'),
        DividedRoll.width.label('width'),
        DividedRoll.length.label('length'),
        DividedRoll.remaining_length.label('remaining_length'),
        DividedRoll.sold.label('sold'),
        DividedRoll.sold_order_id.label('sold_order_id'),
        DividedRoll.sold_customer_name.label('sold_customer_name'),
        DividedRoll.sold_at.label('sold_at'),
        DividedRoll.inspected.label('inspected'),
        DividedRoll.created_at.label('created_at'),
    ).join(JumboRoll, JumboRoll.id == DividedRoll.jumbo_roll_id)
    if sold is not None:
        stmt = stmt.where(DividedRoll.sold.is_(sold))
    if like:
        stmt = stmt.where(or_(DividedRoll.barcode.ilike(like), DividedRoll.roll_no.ilike(like)))
    return stmt


def list_units(
    db: Session,
    *,
    kind: UnitKind | None = None,
    sold: bool | None = None,
    search: str | None = None,
    page: int = 1,
    page_size: int = 50,
) -> dict:
    page = max(page, 1)
    page_size = min(max(page_size, 1), 500)
    term = (search or '').strip()
    like = f'%{term}%' if term else None

    parts = []
    if kind in (None, UnitKind.JUMBO):
        parts.append(_jumbo_listing(sold, like))
    if kind in (None, UnitKind.DIVIDED):
        parts.append(_divided_listing(sold, like))
    units = (parts[0] if len(parts) == 1 else union_all(*parts)).subquery()

    total = db.execute(select(func.count()).select_from(units)).scalar_one()
    rows = db.execute(
        select(units)
        .order_by(units.c.sold.asc(), units.c.created_at.desc(), units.c.kind.asc(), units.c.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).mappings().all()
    return {
        'items': [dict(row) for row in rows],
        'total_items': total,
        'total_pages': (total + page_size - 1) // page_size,
        'current_page': page,
    }


def list_inspection_logs(
    db: Session,
    *,
    kind: UnitKind | None = None,
    page: int = 1,
    page_size: int = 50,
) -> dict:
    page = max(page, 1)
    page_size = min(max(page_size, 1), 500)
    stmt = select(InspectionLog)
    if kind is not None:
        stmt = stmt.where(InspectionLog.unit_kind == kind)
    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    logs = db.execute(
        stmt.order_by(InspectionLog.created_at.desc(), InspectionLog.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).scalars().all()
    return {
        'items': [
            {
                'id': log.id,
                'unit_kind': log.unit_kind.value,
                'unit_id': log.unit_id,
                'barcode': log.barcode,
                'action': log.action,
                'principal_id': log.principal_id,
                'created_at': log.created_at,
            }
            for log in logs
        ],
        'total_items': total,
        'total_pages': (total + page_size - 1) // page_size,
        'current_page': page,
    }
