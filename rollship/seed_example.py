from decimal import Decimal

from sqlalchemy import select

from rollship.db import SessionLocal, engine
from rollship.models import Base, Customer, JumboRoll, Principal, PrincipalRole, SalesOrder
from rollship.security.passwords import hash_password
from rollship.services.inventory_service import cut_divided_rolls, register_jumbo_roll
from rollship.services.order_catalog_service import LineItemInput, create_order


def seed() -> None:
    Base.metadata.create_all(engine)
    with SessionLocal() as db:
        admin = db.execute(select(Principal).where(Principal.username == 'admin')).scalar_one_or_none()
        if not admin:
            db.add(
                Principal(
                    username='admin',
                    password_hash=hash_password('adminpass'),
                    role=PrincipalRole.ADMIN,
                    active=True,
                )
            )

        operator = db.execute(select(Principal).where(Principal.username == 'scanner1')).scalar_one_or_none()
        if not operator:
            db.add(
                Principal(
                    username='scanner1',
                    password_hash=hash_password('scannerpass'),
                    role=PrincipalRole.OPERATOR,
                    active=True,
                )
            )

        customer = db.execute(select(Customer).where(Customer.name == 'Demo Packaging Co')).scalar_one_or_none()
        if not customer:
            customer = Customer(name='Demo Packaging Co', phone='555-0100', address='1 Mill Road')
            db.add(customer)
            db.flush()

        has_stock = db.execute(select(JumboRoll.id).limit(1)).scalar_one_or_none()
        if not has_stock:
            kraft = register_jumbo_roll(
                db,
                barcode='DEMO-KRAFT-001',
                material_type='Kraft',
                basis_weight=Decimal('80'),
                width=Decimal('100'),
                length=Decimal('5000'),
                weight=Decimal('400'),
            )
            register_jumbo_roll(
                db,
                barcode='DEMO-KRAFT-002',
                material_type='Kraft',
                basis_weight=Decimal('80'),
                width=Decimal('100'),
                length=Decimal('5000'),
                weight=Decimal('400'),
            )
            cut_divided_rolls(db, jumbo_roll_id=kraft.id, length=Decimal('1000'), count=2, note='Demo cut')

        order = db.execute(select(SalesOrder).where(SalesOrder.order_no == 'SO-DEMO-001')).scalar_one_or_none()
        if not order:
            create_order(
                db,
                order_no='SO-DEMO-001',
                customer_id=customer.id,
                items=[
                    LineItemInput(required_quantity=1, material_type='Kraft', basis_weight=Decimal('80'), width=Decimal('100')),
                    LineItemInput(
                        required_quantity=2,
                        material_type='Kraft',
                        width=Decimal('100'),
                        length=Decimal('1000'),
                    ),
                ],
            )

        db.commit()


if __name__ == '__main__':
    seed()
