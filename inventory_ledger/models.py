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
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntId = BigInteger().with_variant(Integer, 'sqlite')


class Base(DeclarativeBase):
    pass


class ProductType(str, Enum):
    RAW_MATERIAL = 'raw_material'
    FINISHED_PRODUCT = 'finished_product'


class BatchStatus(str, Enum):
    DRAFT = 'draft'
    RECEIVED = 'received'


class ProductionStatus(str, Enum):
    PENDING = 'pending'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class PaymentMethod(str, Enum):
    CASH = 'cash'
    TRANSFER = 'transfer'
    POS = 'pos'
    CREDIT = 'credit'


class SalesChannel(str, Enum):
    IN_STORE = 'in_store'
    ONLINE = 'online'
    WHOLESALE = 'wholesale'


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Category(Base):
    __tablename__ = 'categories'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text)
    product_type: Mapped[ProductType] = mapped_column(
        SQLEnum(ProductType, name='product_type', values_callable=_enum_values), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Supplier(Base):
    __tablename__ = 'suppliers'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    contact_person: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Maker(Base):
    __tablename__ = 'makers'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    specialization: Mapped[str | None] = mapped_column(Text)
    rate_per_unit: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='1')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Product(Base):
    __tablename__ = 'products'
    __table_args__ = (
        CheckConstraint('quantity_in_stock >= 0', name='products_stock_non_negative_ck'),
        CheckConstraint('reorder_level >= 0', name='products_reorder_level_non_negative_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    sku: Mapped[str | None] = mapped_column(Text, unique=True)
    product_type: Mapped[ProductType] = mapped_column(
        SQLEnum(ProductType, name='product_type', values_callable=_enum_values), nullable=False
    )
    category_id: Mapped[int | None] = mapped_column(BigIntId, ForeignKey('categories.id'))
    cost_price_usd: Mapped[Decimal | None] = mapped_column(Numeric(14, 4))
    cost_price_ngn: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    selling_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    selling_price_overridden: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default='0'
    )
    quantity_in_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    reorder_level: Mapped[int] = mapped_column(Integer, nullable=False, default=5, server_default='5')
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='1')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Batch(Base):
    __tablename__ = 'batches'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    batch_number: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    supplier_id: Mapped[int | None] = mapped_column(BigIntId, ForeignKey('suppliers.id'))
    purchase_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[BatchStatus] = mapped_column(
        SQLEnum(BatchStatus, name='batch_status', values_callable=_enum_values),
        nullable=False,
        default=BatchStatus.DRAFT,
        server_default='draft',
    )
    total_cost_usd: Mapped[Decimal] = mapped_column(
        Numeric(14, 4), nullable=False, default=Decimal('0'), server_default='0'
    )
    exchange_rate: Mapped[Decimal | None] = mapped_column(Numeric(14, 4))
    total_cost_ngn: Mapped[Decimal | None] = mapped_column(Numeric(16, 2))
    notes: Mapped[str | None] = mapped_column(Text)
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    items: Mapped[list[BatchItem]] = relationship(
        back_populates='batch',
        cascade='all, delete-orphan',
        order_by='BatchItem.position',
    )


class BatchItem(Base):
    __tablename__ = 'batch_items'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='batch_items_quantity_positive_ck'),
        UniqueConstraint('batch_id', 'product_id', name='batch_items_batch_product_uniq'),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    batch_id: Mapped[int] = mapped_column(BigIntId, ForeignKey('batches.id', ondelete='CASCADE'), nullable=False)
    product_id: Mapped[int] = mapped_column(BigIntId, ForeignKey('products.id'), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost_usd: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)

    batch: Mapped[Batch] = relationship(back_populates='items')


class Production(Base):
    __tablename__ = 'productions'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    production_number: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    product_id: Mapped[int] = mapped_column(BigIntId, ForeignKey('products.id'), nullable=False)
    maker_id: Mapped[int | None] = mapped_column(BigIntId, ForeignKey('makers.id'))
    status: Mapped[ProductionStatus] = mapped_column(
        SQLEnum(ProductionStatus, name='production_status', values_callable=_enum_values),
        nullable=False,
        default=ProductionStatus.PENDING,
        server_default='pending',
    )
    labor_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal('0'), server_default='0')
    total_material_cost: Mapped[Decimal] = mapped_column(Numeric(16, 2), nullable=False)
    total_production_cost: Mapped[Decimal] = mapped_column(Numeric(16, 2), nullable=False)
    margin_percent: Mapped[Decimal] = mapped_column(Numeric(7, 2), nullable=False)
    recommended_selling_price: Mapped[Decimal] = mapped_column(Numeric(16, 2), nullable=False)
    start_date: Mapped[date | None] = mapped_column(Date)
    expected_completion: Mapped[date | None] = mapped_column(Date)
    actual_completion: Mapped[date | None] = mapped_column(Date)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    materials: Mapped[list[ProductionMaterial]] = relationship(
        back_populates='production',
        cascade='all, delete-orphan',
        order_by='ProductionMaterial.position',
    )


class ProductionMaterial(Base):
    __tablename__ = 'production_materials'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='production_materials_quantity_positive_ck'),
        UniqueConstraint('production_id', 'product_id', name='production_materials_production_product_uniq'),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    production_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey('productions.id', ondelete='CASCADE'), nullable=False
    )
    product_id: Mapped[int] = mapped_column(BigIntId, ForeignKey('products.id'), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost_ngn: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    production: Mapped[Production] = relationship(back_populates='materials')


class Customer(Base):
    __tablename__ = 'customers'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    phone: Mapped[str | None] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(Text)
    total_purchases: Mapped[Decimal] = mapped_column(
        Numeric(16, 2), nullable=False, default=Decimal('0'), server_default='0'
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Sale(Base):
    __tablename__ = 'sales'
    __table_args__ = (
        CheckConstraint('discount >= 0', name='sales_discount_non_negative_ck'),
        CheckConstraint('total >= 0', name='sales_total_non_negative_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    sale_number: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    customer_id: Mapped[int | None] = mapped_column(BigIntId, ForeignKey('customers.id'))
    sale_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(16, 2), nullable=False)
    discount: Mapped[Decimal] = mapped_column(Numeric(16, 2), nullable=False, default=Decimal('0'), server_default='0')
    total: Mapped[Decimal] = mapped_column(Numeric(16, 2), nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(PaymentMethod, name='payment_method', values_callable=_enum_values), nullable=False
    )
    sales_channel: Mapped[SalesChannel] = mapped_column(
        SQLEnum(SalesChannel, name='sales_channel', values_callable=_enum_values), nullable=False
    )
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    items: Mapped[list[SaleItem]] = relationship(
        back_populates='sale',
        cascade='all, delete-orphan',
        order_by='SaleItem.position',
    )


class SaleItem(Base):
    __tablename__ = 'sale_items'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='sale_items_quantity_positive_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    sale_id: Mapped[int] = mapped_column(BigIntId, ForeignKey('sales.id', ondelete='CASCADE'), nullable=False)
    product_id: Mapped[int] = mapped_column(BigIntId, ForeignKey('products.id'), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(16, 2), nullable=False)

    sale: Mapped[Sale] = relationship(back_populates='items')


class ExchangeRate(Base):
    __tablename__ = 'exchange_rates'
    __table_args__ = (
        CheckConstraint('rate > 0', name='exchange_rates_rate_positive_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    rate: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Setting(Base):
    __tablename__ = 'settings'

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    description: Mapped[str | None] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class DocumentCounter(Base):
    __tablename__ = 'document_counters'

    prefix: Mapped[str] = mapped_column(Text, primary_key=True)
    day: Mapped[date] = mapped_column(Date, primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False)
