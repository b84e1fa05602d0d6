from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

from rollship.models import OrderItem, ScanKind, Shipment, ShipmentItem, ShipmentStatus
from rollship.services.order_catalog_service import get_order


@dataclass
class LineItemProgress:
    line_item_id: int
    required: int
    scanned: int
    unidentified: int = 0
    barcodes: list[str] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return self.scanned >= self.required


@dataclass
class Progress:
    order_id: int
    total_required: int
    total_scanned: int
    line_items: list[LineItemProgress]
    shipment_status: ShipmentStatus | None

    @property
    def is_complete(self) -> bool:
        return self.total_required > 0 and self.total_scanned >= self.total_required

    def to_dict(self) -> dict:
        return {
            'order_id': self.order_id,
            'total_required': self.total_required,
            'total_scanned': self.total_scanned,
            'is_complete': self.is_complete,
            'shipment_status': self.shipment_status.value if self.shipment_status else None,
            'per_line_item': [
                {
                    'line_item_id': item.line_item_id,
                    'required': item.required,
                    'scanned': item.scanned,
                    'unidentified': item.unidentified,
                    'barcodes': item.barcodes,
                }
                for item in self.line_items
            ],
        }


def query_progress(db: Session, *, order_id: int) -> Progress:
    """Progress read straight from persisted rows, so a reload sees what the last scan saw."""
    get_order(db, order_id)

    item_rows = db.execute(
        select(OrderItem.id, OrderItem.required_quantity, OrderItem.scanned_count)
        .where(OrderItem.order_id == order_id)
        .order_by(OrderItem.position.asc(), OrderItem.id.asc())
    ).all()
    by_id = {
        item_id: LineItemProgress(line_item_id=item_id, required=required, scanned=scanned)
        for item_id, required, scanned in item_rows
    }

    scan_rows = db.execute(
        select(ShipmentItem.order_item_id, ShipmentItem.kind, ShipmentItem.barcode)
        .join(OrderItem, OrderItem.id == ShipmentItem.order_item_id)
        .where(OrderItem.order_id == order_id)
        .order_by(ShipmentItem.id.asc())
    ).all()
    for order_item_id, kind, barcode in scan_rows:
        line = by_id[order_item_id]
        if kind == ScanKind.UNIDENTIFIED:
            line.unidentified += 1
        else:
            line.barcodes.append(barcode)

    shipment_status = db.execute(select(Shipment.status).where(Shipment.order_id == order_id)).scalar_one_or_none()
    line_items = [by_id[item_id] for item_id, _, _ in item_rows]
    return Progress(
        order_id=order_id,
        total_required=sum(line.required for line in line_items),
        total_scanned=sum(line.scanned for line in line_items),
        line_items=line_items,
        shipment_status=shipment_status,
    )
