from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from rollship.auth import ANY_ROLE, Principal, Role, require_role
from rollship.db import get_db
from rollship.dependencies import Page, get_client_ip, get_page
from rollship.models import UnitKind
from rollship.schemas import (
    BulkDeleteIn,
    DividedRollUpdateIn,
    DivideIn,
    JumboRollIn,
    JumboRollUpdateIn,
    RemainingLengthIn,
)
from rollship.security.csrf import verify_csrf
from rollship.services.audit_service import log_audit
from rollship.services.inventory_service import (
    bulk_delete_jumbo_rolls,
    cut_divided_rolls,
    delete_divided_roll,
    delete_jumbo_roll,
    find_unit_by_barcode,
    get_unit,
    inspect_unit,
    list_inspection_logs,
    list_units,
    register_jumbo_roll,
    resize_divided_roll,
    set_remaining_length,
    update_jumbo_roll,
)

router = APIRouter(prefix='/inventory', tags=['inventory'])

_SUPERVISORS = (Role.ADMIN, Role.SUPERVISOR)


@router.get('/units')
def units_list(
    kind: UnitKind | None = None,
    sold: bool | None = None,
    search: str | None = None,
    paging: Page = Depends(get_page),
    _: Principal = Depends(require_role(*ANY_ROLE)),
    db: Session = Depends(get_db),
):
    return list_units(db, kind=kind, sold=sold, search=search, page=paging.page, page_size=paging.page_size)


@router.get('/units/by-barcode/{barcode}')
def unit_by_barcode(
    barcode: str,
    _: Principal = Depends(require_role(*ANY_ROLE)),
    db: Session = Depends(get_db),
):
    return find_unit_by_barcode(db, barcode).to_dict()


@router.post('/jumbo-rolls', status_code=201)
def jumbo_roll_create(
    body: JumboRollIn,
    request: Request,
    principal: Principal = Depends(require_role(*_SUPERVISORS)),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    roll = register_jumbo_roll(db, **body.model_dump())
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='JUMBO_ROLL_REGISTERED',
        ip=get_client_ip(request),
        metadata={'jumbo_roll_id': roll.id, 'roll_no': roll.roll_no, 'barcode': roll.barcode},
    )
    db.commit()
    return get_unit(db, kind=UnitKind.JUMBO, unit_id=roll.id).to_dict()


@router.post('/jumbo-rolls/bulk-delete')
def jumbo_rolls_bulk_delete(
    body: BulkDeleteIn,
    request: Request,
    principal: Principal = Depends(require_role(*_SUPERVISORS)),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    deleted = bulk_delete_jumbo_rolls(db, jumbo_roll_ids=body.ids)
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='JUMBO_ROLLS_DELETED',
        ip=get_client_ip(request),
        metadata={'jumbo_roll_ids': sorted(set(body.ids))},
    )
    db.commit()
    return {'success': True, 'deleted': deleted}


@router.patch('/jumbo-rolls/{jumbo_roll_id}')
def jumbo_roll_update(
    jumbo_roll_id: int,
    body: JumboRollUpdateIn,
    request: Request,
    principal: Principal = Depends(require_role(*_SUPERVISORS)),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    changes = body.model_dump(exclude_unset=True)
    roll = update_jumbo_roll(db, jumbo_roll_id=jumbo_roll_id, **changes)
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='JUMBO_ROLL_UPDATED',
        ip=get_client_ip(request),
        metadata={'jumbo_roll_id': roll.id, 'fields': sorted(changes)},
    )
    db.commit()
    return get_unit(db, kind=UnitKind.JUMBO, unit_id=roll.id).to_dict()


@router.delete('/jumbo-rolls/{jumbo_roll_id}')
def jumbo_roll_delete(
    jumbo_roll_id: int,
    request: Request,
    principal: Principal = Depends(require_role(*_SUPERVISORS)),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    delete_jumbo_roll(db, jumbo_roll_id=jumbo_roll_id)
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='JUMBO_ROLL_DELETED',
        ip=get_client_ip(request),
        metadata={'jumbo_roll_id': jumbo_roll_id},
    )
    db.commit()
    return {'success': True}


@router.post('/jumbo-rolls/{jumbo_roll_id}/divide', status_code=201)
def jumbo_roll_divide(
    jumbo_roll_id: int,
    body: DivideIn,
    request: Request,
    principal: Principal = Depends(require_role(*_SUPERVISORS)),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    rolls = cut_divided_rolls(db, jumbo_roll_id=jumbo_roll_id, length=body.length, count=body.count, note=body.note)
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='JUMBO_ROLL_DIVIDED',
        ip=get_client_ip(request),
        metadata={
            'jumbo_roll_id': jumbo_roll_id,
            'count': body.count,
            'length': str(body.length),
            'roll_nos': [roll.roll_no for roll in rolls],
        },
    )
    db.commit()
    parent = get_unit(db, kind=UnitKind.JUMBO, unit_id=jumbo_roll_id)
    return {
        'parent': parent.to_dict(),
        'divided_rolls': [get_unit(db, kind=UnitKind.DIVIDED, unit_id=roll.id).to_dict() for roll in rolls],
    }


@router.patch('/jumbo-rolls/{jumbo_roll_id}/remaining-length')
def jumbo_roll_remaining_length(
    jumbo_roll_id: int,
    body: RemainingLengthIn,
    request: Request,
    principal: Principal = Depends(require_role(*_SUPERVISORS)),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    roll = set_remaining_length(db, jumbo_roll_id=jumbo_roll_id, remaining_length=body.remaining_length)
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='REMAINING_LENGTH_CORRECTED',
        ip=get_client_ip(request),
        metadata={'jumbo_roll_id': roll.id, 'remaining_length': str(roll.remaining_length)},
    )
    db.commit()
    return get_unit(db, kind=UnitKind.JUMBO, unit_id=roll.id).to_dict()


@router.patch('/divided-rolls/{divided_roll_id}')
def divided_roll_update(
    divided_roll_id: int,
    body: DividedRollUpdateIn,
    request: Request,
    principal: Principal = Depends(require_role(*_SUPERVISORS)),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    roll = resize_divided_roll(
        db,
        divided_roll_id=divided_roll_id,
        length=body.length,
        width=body.width,
        note=body.note,
    )
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='DIVIDED_ROLL_RESIZED',
        ip=get_client_ip(request),
        metadata={'divided_roll_id': roll.id, 'length': str(roll.length)},
    )
    db.commit()
    return get_unit(db, kind=UnitKind.DIVIDED, unit_id=roll.id).to_dict()


@router.delete('/divided-rolls/{divided_roll_id}')
def divided_roll_delete(
    divided_roll_id: int,
    request: Request,
    principal: Principal = Depends(require_role(*_SUPERVISORS)),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    delete_divided_roll(db, divided_roll_id=divided_roll_id)
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='DIVIDED_ROLL_DELETED',
        ip=get_client_ip(request),
        metadata={'divided_roll_id': divided_roll_id},
    )
    db.commit()
    return {'success': True}


@router.post('/{kind}/{unit_id}/inspect')
def unit_inspect(
    kind: UnitKind,
    unit_id: int,
    principal: Principal = Depends(require_role(*ANY_ROLE)),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    unit = inspect_unit(db, kind=kind, unit_id=unit_id, principal_id=principal.id)
    db.commit()
    return unit.to_dict()


@router.get('/inspection-logs')
def inspection_logs(
    kind: UnitKind | None = None,
    paging: Page = Depends(get_page),
    _: Principal = Depends(require_role(*ANY_ROLE)),
    db: Session = Depends(get_db),
):
    return list_inspection_logs(db, kind=kind, page=paging.page, page_size=paging.page_size)
