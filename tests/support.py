from __future__ import annotations

from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rollship.models import Base, Customer, Principal, PrincipalRole
from rollship.services.inventory_service import register_jumbo_roll
from rollship.services.order_catalog_service import LineItemInput, create_order


def make_session_factory():
    """Fresh in-memory database shared by every session the factory opens."""
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def add_principal(db, *, username='operator', role=PrincipalRole.OPERATOR, password_hash='x') -> Principal:
    principal = Principal(username=username, password_hash=password_hash, role=role, active=True)
    db.add(principal)
    db.flush()
    return principal


def add_order(db, *items: LineItemInput, order_no='SO-1', customer_name='Acme Boxes'):
    customer = Customer(name=customer_name)
    db.add(customer)
    db.flush()
    return create_order(db, order_no=order_no, customer_id=customer.id, items=list(items))


def item(quantity, *, material_type=None, basis_weight=None, width=None, length=None) -> LineItemInput:
    return LineItemInput(
        required_quantity=quantity,
        material_type=material_type,
        basis_weight=Decimal(str(basis_weight)) if basis_weight is not None else None,
        width=Decimal(str(width)) if width is not None else None,
        length=Decimal(str(length)) if length is not None else None,
    )


def add_jumbo(db, barcode, *, material_type='A', basis_weight='80', width='100', length='1000', weight=None):
    return register_jumbo_roll(
        db,
        barcode=barcode,
        material_type=material_type,
        basis_weight=Decimal(basis_weight),
        width=Decimal(width),
        length=Decimal(length),
        weight=Decimal(weight) if weight is not None else None,
    )
