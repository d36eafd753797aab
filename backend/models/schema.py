"""
SQLAlchemy models for the inspection billing system.

This module defines the database schema using SQLAlchemy ORM,
matching the schema defined in Alembic migrations.
"""

from enum import Enum
from sqlalchemy import (
    Boolean, Column, Integer, String, Text, Numeric, TIMESTAMP, JSON,
    ForeignKey, CheckConstraint, Index, UniqueConstraint, func, text
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite test databases)
JSONType = JSON().with_variant(JSONB(), 'postgresql')


class FurnishingState(str, Enum):
    """Furnishing classification of an inspected property."""
    UNFURNISHED = 'unfurnished'
    SEMI_FURNISHED = 'semi_furnished'
    FURNISHED = 'furnished'


class ClosureStatus(str, Enum):
    """Workflow stage of a monthly closure."""
    DRAFT = 'draft'
    IMPORTED = 'imported'
    CALCULATED = 'calculated'
    AWAITING_INSPECTORS = 'awaiting_inspectors'
    IN_REVIEW = 'in_review'
    AWAITING_AGENCIES = 'awaiting_agencies'
    INVOICED = 'invoiced'
    FINALIZED = 'finalized'


class InspectionStatus(str, Enum):
    """Lifecycle of a single inspection record."""
    IMPORTED = 'imported'
    CALCULATED = 'calculated'
    DISPUTED = 'disputed'
    REVISED = 'revised'
    APPROVED = 'approved'
    INVOICED = 'invoiced'


class PaymentMethod(str, Enum):
    """How an agency settles its invoices."""
    BOLETO = 'boleto'
    PIX = 'pix'
    TRANSFER = 'transfer'


def _enum_values(enum_cls) -> str:
    return ', '.join(f"'{member.value}'" for member in enum_cls)


class Agency(Base):
    """Real-estate agency that orders inspections (receivable side)."""

    __tablename__ = 'agencies'
    __table_args__ = (
        CheckConstraint('payment_day BETWEEN 1 AND 28', name='agencies_payment_day_check'),
        CheckConstraint(
            f"payment_method IN ({_enum_values(PaymentMethod)})",
            name='agencies_payment_method_check'
        ),
        Index('idx_agencies_name', 'name'),
        {'comment': 'Agencies billed for inspections'}
    )

    id = Column(Integer, primary_key=True, autoincrement=True, nullable=False)
    name = Column(String(255), nullable=False, comment='Display name')
    external_name = Column(
        String(255),
        nullable=False,
        unique=True,
        comment='Name used by the scheduling system export (natural key on import)'
    )
    tax_id = Column(String(32), nullable=True, comment='CNPJ')
    email = Column(String(255), nullable=True)
    phone = Column(String(32), nullable=True)
    whatsapp = Column(String(32), nullable=True)
    city = Column(String(120), nullable=True)
    active = Column(Boolean, server_default=text('true'), default=True, nullable=False)
    payment_day = Column(
        Integer,
        server_default='12',
        default=12,
        nullable=False,
        comment='Day of the following month the invoice falls due'
    )
    payment_method = Column(
        String(20),
        server_default=PaymentMethod.BOLETO.value,
        default=PaymentMethod.BOLETO.value,
        nullable=False
    )
    created_at = Column(TIMESTAMP, server_default=text('CURRENT_TIMESTAMP'), nullable=False)
    updated_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        onupdate=func.now(),
        nullable=False
    )

    price_tables = relationship('PriceTable', back_populates='agency', cascade='all, delete-orphan')
    inspections = relationship('Inspection', back_populates='agency')

    def __repr__(self):
        return f"<Agency(id={self.id}, external_name='{self.external_name}')>"


class Inspector(Base):
    """Field inspector who performs inspections (payable side)."""

    __tablename__ = 'inspectors'
    __table_args__ = (
        Index('idx_inspectors_name', 'name'),
        {'comment': 'Inspectors paid per inspection'}
    )

    id = Column(Integer, primary_key=True, autoincrement=True, nullable=False)
    name = Column(String(255), nullable=False, comment='Display name')
    external_name = Column(
        String(255),
        nullable=False,
        unique=True,
        comment='Name used by the scheduling system export (natural key on import)'
    )
    tax_id = Column(String(32), nullable=True, comment='CPF')
    email = Column(String(255), nullable=True)
    phone = Column(String(32), nullable=True)
    whatsapp = Column(String(32), nullable=True)
    city = Column(String(120), nullable=True)
    pix_key = Column(String(255), nullable=True)
    active = Column(Boolean, server_default=text('true'), default=True, nullable=False)
    created_at = Column(TIMESTAMP, server_default=text('CURRENT_TIMESTAMP'), nullable=False)
    updated_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        onupdate=func.now(),
        nullable=False
    )

    payout_tables = relationship('PayoutTable', back_populates='inspector', cascade='all, delete-orphan')
    inspections = relationship('Inspection', back_populates='inspector')

    def __repr__(self):
        return f"<Inspector(id={self.id}, external_name='{self.external_name}')>"


class ServiceType(Base):
    """Catalog entry for a kind of inspection."""

    __tablename__ = 'service_types'
    __table_args__ = ({'comment': 'Inspection service catalog'},)

    id = Column(Integer, primary_key=True, autoincrement=True, nullable=False)
    code = Column(String(20), nullable=False, unique=True, comment='Catalog code e.g. 1.0')
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    active = Column(Boolean, server_default=text('true'), default=True, nullable=False)

    def __repr__(self):
        return f"<ServiceType(id={self.id}, code='{self.code}', name='{self.name}')>"


class AreaBand(Base):
    """Closed range of billable area mapped to a price multiplier."""

    __tablename__ = 'area_bands'
    __table_args__ = (
        CheckConstraint('max_area >= min_area', name='area_bands_range_check'),
        CheckConstraint('multiplier > 0', name='area_bands_multiplier_check'),
        Index('idx_area_bands_position', 'position'),
        {'comment': 'Area bands used to scale base prices'}
    )

    id = Column(Integer, primary_key=True, autoincrement=True, nullable=False)
    name = Column(String(120), nullable=False)
    min_area = Column(Numeric(10, 2), nullable=False, comment='Inclusive lower bound (m2)')
    max_area = Column(Numeric(10, 2), nullable=False, comment='Inclusive upper bound (m2)')
    multiplier = Column(Numeric(6, 2), server_default='1', default=1, nullable=False)
    position = Column(Integer, server_default='0', default=0, nullable=False, comment='Evaluation order')

    def __repr__(self):
        return f"<AreaBand(id={self.id}, range=[{self.min_area}, {self.max_area}], x{self.multiplier})>"


class PriceTable(Base):
    """Amount charged to an agency for a service type, optionally per area band."""

    __tablename__ = 'price_tables'
    __table_args__ = (
        Index('idx_price_tables_lookup', 'agency_id', 'service_type_id', 'area_band_id'),
        {'comment': 'Receivable rates per agency'}
    )

    id = Column(Integer, primary_key=True, autoincrement=True, nullable=False)
    agency_id = Column(Integer, ForeignKey('agencies.id', ondelete='CASCADE'), nullable=False)
    service_type_id = Column(Integer, ForeignKey('service_types.id'), nullable=False)
    area_band_id = Column(
        Integer,
        ForeignKey('area_bands.id', ondelete='SET NULL'),
        nullable=True,
        comment='NULL rows are the fallback default for the service type'
    )
    base_amount = Column(Numeric(12, 2), nullable=False)
    furnished_surcharge = Column(Numeric(12, 2), nullable=True)
    semi_furnished_surcharge = Column(Numeric(12, 2), nullable=True)
    active = Column(Boolean, server_default=text('true'), default=True, nullable=False)

    agency = relationship('Agency', back_populates='price_tables')
    service_type = relationship('ServiceType')
    area_band = relationship('AreaBand')

    def __repr__(self):
        return (f"<PriceTable(agency_id={self.agency_id}, service_type_id={self.service_type_id}, "
                f"area_band_id={self.area_band_id}, base={self.base_amount})>")


class PayoutTable(Base):
    """Amount paid to an inspector for a service type, optionally per area band."""

    __tablename__ = 'payout_tables'
    __table_args__ = (
        Index('idx_payout_tables_lookup', 'inspector_id', 'service_type_id', 'area_band_id'),
        {'comment': 'Payable rates per inspector'}
    )

    id = Column(Integer, primary_key=True, autoincrement=True, nullable=False)
    inspector_id = Column(Integer, ForeignKey('inspectors.id', ondelete='CASCADE'), nullable=False)
    service_type_id = Column(Integer, ForeignKey('service_types.id'), nullable=False)
    area_band_id = Column(
        Integer,
        ForeignKey('area_bands.id', ondelete='SET NULL'),
        nullable=True,
        comment='NULL rows are the fallback default for the service type'
    )
    base_amount = Column(Numeric(12, 2), nullable=False)
    furnished_surcharge = Column(Numeric(12, 2), nullable=True)
    semi_furnished_surcharge = Column(Numeric(12, 2), nullable=True)
    active = Column(Boolean, server_default=text('true'), default=True, nullable=False)

    inspector = relationship('Inspector', back_populates='payout_tables')
    service_type = relationship('ServiceType')
    area_band = relationship('AreaBand')

    def __repr__(self):
        return (f"<PayoutTable(inspector_id={self.inspector_id}, service_type_id={self.service_type_id}, "
                f"area_band_id={self.area_band_id}, base={self.base_amount})>")


class Closure(Base):
    """Monthly billing period aggregating imported inspections."""

    __tablename__ = 'closures'
    __table_args__ = (
        UniqueConstraint('reference_month', 'reference_year', name='closures_period_key'),
        CheckConstraint('reference_month BETWEEN 1 AND 12', name='closures_month_check'),
        CheckConstraint(
            f"status IN ({_enum_values(ClosureStatus)})",
            name='closures_status_check'
        ),
        Index('idx_closures_status', 'status'),
        {'comment': 'Monthly billing closures'}
    )

    id = Column(Integer, primary_key=True, autoincrement=True, nullable=False)
    reference_month = Column(Integer, nullable=False)
    reference_year = Column(Integer, nullable=False)
    status = Column(
        String(30),
        server_default=ClosureStatus.DRAFT.value,
        default=ClosureStatus.DRAFT.value,
        nullable=False
    )
    imported_at = Column(TIMESTAMP, nullable=True, comment='Last spreadsheet import')
    inspectors_sent_at = Column(TIMESTAMP, nullable=True)
    agencies_sent_at = Column(TIMESTAMP, nullable=True)
    finalized_at = Column(TIMESTAMP, nullable=True)
    total_inspections = Column(Integer, server_default='0', default=0, nullable=False)
    total_receivable = Column(Numeric(14, 2), server_default='0', default=0, nullable=False)
    total_payable = Column(Numeric(14, 2), server_default='0', default=0, nullable=False)
    created_at = Column(TIMESTAMP, server_default=text('CURRENT_TIMESTAMP'), nullable=False)
    updated_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        onupdate=func.now(),
        nullable=False
    )

    inspections = relationship('Inspection', back_populates='closure', cascade='all, delete-orphan')
    jobs = relationship('JobRun', back_populates='closure')

    @property
    def reference_label(self) -> str:
        """Period label in MM/YYYY form."""
        return f"{self.reference_month:02d}/{self.reference_year}"

    def __repr__(self):
        return f"<Closure(id={self.id}, period={self.reference_label}, status='{self.status}')>"


class Inspection(Base):
    """A single inspection job billed within a closure."""

    __tablename__ = 'inspections'
    __table_args__ = (
        CheckConstraint(
            f"furnishing IN ({_enum_values(FurnishingState)})",
            name='inspections_furnishing_check'
        ),
        CheckConstraint(
            f"status IN ({_enum_values(InspectionStatus)})",
            name='inspections_status_check'
        ),
        Index('idx_inspections_closure', 'closure_id'),
        Index('idx_inspections_closure_agency', 'closure_id', 'agency_id'),
        Index('idx_inspections_closure_inspector', 'closure_id', 'inspector_id'),
        Index('idx_inspections_external_id', 'external_id'),
        {'comment': 'Inspection records imported from the scheduling system'}
    )

    id = Column(Integer, primary_key=True, autoincrement=True, nullable=False)
    closure_id = Column(Integer, ForeignKey('closures.id', ondelete='CASCADE'), nullable=False)
    agency_id = Column(Integer, ForeignKey('agencies.id'), nullable=False)
    inspector_id = Column(Integer, ForeignKey('inspectors.id'), nullable=False)
    service_type_id = Column(Integer, ForeignKey('service_types.id'), nullable=False)
    external_id = Column(String(64), nullable=False, comment='Id in the scheduling system')
    contract_number = Column(String(64), nullable=True)
    address = Column(Text, nullable=True)
    city = Column(String(120), nullable=True)
    reported_area = Column(Numeric(10, 2), nullable=True)
    measured_area = Column(Numeric(10, 2), nullable=True)
    billable_area = Column(Numeric(10, 2), server_default='0', default=0, nullable=False)
    furnishing = Column(
        String(20),
        server_default=FurnishingState.UNFURNISHED.value,
        default=FurnishingState.UNFURNISHED.value,
        nullable=False
    )
    scheduled_at = Column(TIMESTAMP, nullable=True)
    finished_at = Column(TIMESTAMP, nullable=True)
    receivable_amount = Column(Numeric(12, 2), server_default='0', default=0, nullable=False)
    payable_amount = Column(Numeric(12, 2), server_default='0', default=0, nullable=False)
    status = Column(
        String(20),
        server_default=InspectionStatus.IMPORTED.value,
        default=InspectionStatus.IMPORTED.value,
        nullable=False
    )
    notes = Column(Text, nullable=True)
    created_at = Column(TIMESTAMP, server_default=text('CURRENT_TIMESTAMP'), nullable=False)
    updated_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        onupdate=func.now(),
        nullable=False
    )

    closure = relationship('Closure', back_populates='inspections')
    agency = relationship('Agency', back_populates='inspections')
    inspector = relationship('Inspector', back_populates='inspections')
    service_type = relationship('ServiceType')

    def __repr__(self):
        return f"<Inspection(id={self.id}, external_id='{self.external_id}', status='{self.status}')>"
