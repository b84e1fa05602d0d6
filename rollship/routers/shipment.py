from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from rollship.auth import ANY_ROLE, Principal, Role, require_role
from rollship.db import get_db, get_session_factory, run_in_transaction
from rollship.dependencies import Page, get_page
from rollship.schemas import FinalizeIn, ScanIn
from rollship.security.csrf import verify_csrf
from rollship.services.progress_service import query_progress
from rollship.services.scan_ledger_service import discard_in_progress_shipment, record_scan, remove_scan
from rollship.services.shipment_service import (
    finalize_shipment,
    get_shipment_detail,
    list_outstanding_orders,
    list_shipments,
    resolve_finalize_input,
)

router = APIRouter(prefix='/shipment', tags=['shipment'])


@router.get('/orders')
def outstanding_orders(
    search: str | None = None,
    paging: Page = Depends(get_page),
    _: Principal = Depends(require_role(*ANY_ROLE)),
    db: Session = Depends(get_db),
):
    return list_outstanding_orders(db, search=search, page=paging.page, page_size=paging.page_size)


@router.get('/orders/{order_id}/progress')
def order_progress(
    order_id: int,
    _: Principal = Depends(require_role(*ANY_ROLE)),
    db: Session = Depends(get_db),
):
    return query_progress(db, order_id=order_id).to_dict()


@router.post('/orders/{order_id}/scans')
def order_scan(
    order_id: int,
    body: ScanIn,
    principal: Principal = Depends(require_role(*ANY_ROLE)),
    session_factory=Depends(get_session_factory),
    _: None = Depends(verify_csrf),
):
    def work(db: Session) -> dict:
        result = record_scan(
            db,
            order_id=order_id,
            barcode=body.barcode,
            principal_id=principal.id,
            order_item_id=body.order_item_id,
        )
        return result.to_dict()

    return run_in_transaction(work, session_factory=session_factory)


@router.delete('/orders/{order_id}/scans/{scan_id}')
def order_scan_remove(
    order_id: int,
    scan_id: int,
    principal: Principal = Depends(require_role(*ANY_ROLE)),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    progress = remove_scan(db, order_id=order_id, scan_id=scan_id, principal_id=principal.id)
    db.commit()
    return progress.to_dict()


@router.delete('/orders/{order_id}/in-progress')
def order_discard_in_progress(
    order_id: int,
    principal: Principal = Depends(require_role(Role.ADMIN, Role.SUPERVISOR)),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    progress = discard_in_progress_shipment(db, order_id=order_id, principal_id=principal.id)
    db.commit()
    return progress.to_dict()


@router.post('/orders/{order_id}/finalize')
def order_finalize(
    order_id: int,
    body: FinalizeIn,
    principal: Principal = Depends(require_role(*ANY_ROLE)),
    session_factory=Depends(get_session_factory),
    _: None = Depends(verify_csrf),
):
    claims = resolve_finalize_input(
        scanned_items=[item.model_dump() for item in body.scanned_items] if body.scanned_items else None,
        order_items=[item.model_dump() for item in body.order_items] if body.order_items else None,
    )

    def work(db: Session) -> dict:
        shipment = finalize_shipment(
            db,
            order_id=order_id,
            principal_id=principal.id,
            notes=body.notes,
            claims=claims,
        )
        return get_shipment_detail(db, shipment_id=shipment.id)

    return run_in_transaction(work, session_factory=session_factory)


@router.get('/history')
def shipment_history(
    search: str | None = None,
    order_id: int | None = None,
    paging: Page = Depends(get_page),
    _: Principal = Depends(require_role(*ANY_ROLE)),
    db: Session = Depends(get_db),
):
    return list_shipments(db, search=search, order_id=order_id, page=paging.page, page_size=paging.page_size)


@router.get('/history/{shipment_id}')
def shipment_history_detail(
    shipment_id: int,
    _: Principal = Depends(require_role(*ANY_ROLE)),
    db: Session = Depends(get_db),
):
    return get_shipment_detail(db, shipment_id=shipment_id)
