from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
IdType = BigInteger().with_variant(Integer(), 'sqlite')


class Base(DeclarativeBase):
    pass


class PrincipalRole(str, Enum):
    ADMIN = 'ADMIN'
    SUPERVISOR = 'SUPERVISOR'
    OPERATOR = 'OPERATOR'


class OrderStatus(str, Enum):
    OPEN = 'OPEN'
    SHIPPED = 'SHIPPED'
    CANCELLED = 'CANCELLED'


class ShipmentStatus(str, Enum):
    IN_PROGRESS = 'IN_PROGRESS'
    COMPLETED = 'COMPLETED'


class ScanKind(str, Enum):
    SCANNED = 'SCANNED'
    UNIDENTIFIED = 'UNIDENTIFIED'


class UnitKind(str, Enum):
    JUMBO = 'JUMBO'
    DIVIDED = 'DIVIDED'


class Principal(Base):
    __tablename__ = 'principals'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    username: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[PrincipalRole] = mapped_column(SQLEnum(PrincipalRole, name='principal_role'), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Customer(Base):
    __tablename__ = 'customers'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    phone: Mapped[str | None] = mapped_column(Text)
    address: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class SalesOrder(Base):
    __tablename__ = 'sales_orders'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    order_no: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    customer_id: Mapped[int] = mapped_column(IdType, ForeignKey('customers.id'), nullable=False)
    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name='order_status'), nullable=False, default=OrderStatus.OPEN, server_default='OPEN'
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class OrderItem(Base):
    __tablename__ = 'order_items'
    __table_args__ = (
        CheckConstraint('required_quantity > 0', name='order_items_required_positive_ck'),
        CheckConstraint('scanned_count >= 0', name='order_items_scanned_non_negative_ck'),
        CheckConstraint('scanned_count <= required_quantity', name='order_items_scanned_within_required_ck'),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    order_id: Mapped[int] = mapped_column(IdType, ForeignKey('sales_orders.id', ondelete='CASCADE'), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    material_type: Mapped[str | None] = mapped_column(Text)
    basis_weight: Mapped[Decimal | None] = mapped_column(Numeric(10, 3))
    width: Mapped[Decimal | None] = mapped_column(Numeric(10, 3))
    length: Mapped[Decimal | None] = mapped_column(Numeric(14, 3))
    required_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    scanned_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')


class JumboRoll(Base):
    __tablename__ = 'jumbo_rolls'
    __table_args__ = (
        CheckConstraint('remaining_length >= 0', name='jumbo_rolls_remaining_non_negative_ck'),
        CheckConstraint('remaining_length <= total_length', name='jumbo_rolls_remaining_within_total_ck'),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    roll_no: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    barcode: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    material_type: Mapped[str] = mapped_column(Text, nullable=False)
    basis_weight: Mapped[Decimal] = mapped_column(Numeric(10, 3), nullable=False)
    width: Mapped[Decimal] = mapped_column(Numeric(10, 3), nullable=False)
    total_length: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    remaining_length: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    weight: Mapped[Decimal | None] = mapped_column(Numeric(14, 3))
    container_no: Mapped[str | None] = mapped_column(Text)
    arrival_date: Mapped[date | None] = mapped_column(Date)
    note: Mapped[str | None] = mapped_column(Text)
    sold: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    sold_order_id: Mapped[int | None] = mapped_column(IdType, ForeignKey('sales_orders.id'))
    sold_customer_name: Mapped[str | None] = mapped_column(Text)
    sold_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    inspected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    inspected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    inspected_by_principal_id: Mapped[int | None] = mapped_column(IdType, ForeignKey('principals.id'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class DividedRoll(Base):
    __tablename__ = 'divided_rolls'
    __table_args__ = (
        CheckConstraint('length > 0', name='divided_rolls_length_positive_ck'),
        CheckConstraint('remaining_length >= 0', name='divided_rolls_remaining_non_negative_ck'),
        CheckConstraint('remaining_length <= length', name='divided_rolls_remaining_within_length_ck'),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    roll_no: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    barcode: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    jumbo_roll_id: Mapped[int] = mapped_column(IdType, ForeignKey('jumbo_rolls.id'), nullable=False)
    width: Mapped[Decimal] = mapped_column(Numeric(10, 3), nullable=False)
    length: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    remaining_length: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    weight: Mapped[Decimal | None] = mapped_column(Numeric(14, 3))
    note: Mapped[str | None] = mapped_column(Text)
    sold: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    sold_order_id: Mapped[int | None] = mapped_column(IdType, ForeignKey('sales_orders.id'))
    sold_customer_name: Mapped[str | None] = mapped_column(Text)
    sold_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    inspected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    inspected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    inspected_by_principal_id: Mapped[int | None] = mapped_column(IdType, ForeignKey('principals.id'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class InspectionLog(Base):
    __tablename__ = 'inspection_logs'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    unit_kind: Mapped[UnitKind] = mapped_column(SQLEnum(UnitKind, name='unit_kind'), nullable=False)
    unit_id: Mapped[int] = mapped_column(IdType, nullable=False)
    barcode: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    principal_id: Mapped[int | None] = mapped_column(IdType, ForeignKey('principals.id'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Shipment(Base):
    __tablename__ = 'shipments'
    __table_args__ = (
        # One shipment row per order; it is promoted IN_PROGRESS -> COMPLETED in place.
        UniqueConstraint('order_id', name='shipments_order_uniq'),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    order_id: Mapped[int] = mapped_column(IdType, ForeignKey('sales_orders.id'), nullable=False)
    status: Mapped[ShipmentStatus] = mapped_column(
        SQLEnum(ShipmentStatus, name='shipment_status'),
        nullable=False,
        default=ShipmentStatus.IN_PROGRESS,
        server_default='IN_PROGRESS',
    )
    shipped_by_principal_id: Mapped[int | None] = mapped_column(IdType, ForeignKey('principals.id'))
    shipment_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    notes: Mapped[str] = mapped_column(Text, nullable=False, default='', server_default='')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ShipmentItem(Base):
    __tablename__ = 'shipment_items'
    __table_args__ = (
        UniqueConstraint('order_item_id', 'barcode', name='shipment_items_order_item_barcode_uniq'),
        CheckConstraint(
            "(kind = 'SCANNED' AND barcode IS NOT NULL) OR (kind = 'UNIDENTIFIED' AND barcode IS NULL)",
            name='shipment_items_identity_ck',
        ),
        CheckConstraint('consumed_length >= 0', name='shipment_items_consumed_non_negative_ck'),
        Index('shipment_items_shipment_idx', 'shipment_id'),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    shipment_id: Mapped[int] = mapped_column(IdType, ForeignKey('shipments.id', ondelete='CASCADE'), nullable=False)
    order_item_id: Mapped[int] = mapped_column(IdType, ForeignKey('order_items.id'), nullable=False)
    kind: Mapped[ScanKind] = mapped_column(
        SQLEnum(ScanKind, name='scan_kind'), nullable=False, default=ScanKind.SCANNED, server_default='SCANNED'
    )
    barcode: Mapped[str | None] = mapped_column(String(64))
    jumbo_roll_id: Mapped[int | None] = mapped_column(IdType, ForeignKey('jumbo_rolls.id'))
    divided_roll_id: Mapped[int | None] = mapped_column(IdType, ForeignKey('divided_rolls.id'))
    consumed_length: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False, default=Decimal('0'), server_default='0')
    recorded_by_principal_id: Mapped[int | None] = mapped_column(IdType, ForeignKey('principals.id'))
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuthEvent(Base):
    __tablename__ = 'auth_events'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    attempted_username: Mapped[str] = mapped_column(Text, nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    principal_id: Mapped[int | None] = mapped_column(IdType, ForeignKey('principals.id'))
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    actor_principal_id: Mapped[int | None] = mapped_column(IdType, ForeignKey('principals.id'))
    action: Mapped[str] = mapped_column(Text, nullable=False)
    order_id: Mapped[int | None] = mapped_column(IdType, ForeignKey('sales_orders.id'))
    ip: Mapped[str | None] = mapped_column(String(64))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WebSession(Base):
    __tablename__ = 'web_sessions'
    __table_args__ = (
        UniqueConstraint('session_token', name='web_sessions_session_token_key'),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    session_token: Mapped[str] = mapped_column(String(128), nullable=False)
    principal_id: Mapped[int] = mapped_column(IdType, ForeignKey('principals.id'), nullable=False)
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
