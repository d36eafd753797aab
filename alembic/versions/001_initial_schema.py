"""Initial schema for inspection billing

Revision ID: 001_initial_schema
Revises:
Create Date: 2025-10-14

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    ]


def _rate_columns():
    return [
        sa.Column('service_type_id', sa.Integer(), nullable=False),
        sa.Column('area_band_id', sa.Integer(), nullable=True,
                  comment='NULL rows are the fallback default for the service type'),
        sa.Column('base_amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('furnished_surcharge', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('semi_furnished_surcharge', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.ForeignKeyConstraint(['service_type_id'], ['service_types.id']),
        sa.ForeignKeyConstraint(['area_band_id'], ['area_bands.id'], ondelete='SET NULL'),
    ]


def upgrade() -> None:
    # Agencies (receivable side)
    op.create_table(
        'agencies',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False, comment='Display name'),
        sa.Column('external_name', sa.String(length=255), nullable=False,
                  comment='Name used by the scheduling system export (natural key on import)'),
        sa.Column('tax_id', sa.String(length=32), nullable=True, comment='CNPJ'),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('whatsapp', sa.String(length=32), nullable=True),
        sa.Column('city', sa.String(length=120), nullable=True),
        sa.Column('active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('payment_day', sa.Integer(), server_default='12', nullable=False,
                  comment='Day of the following month the invoice falls due'),
        sa.Column('payment_method', sa.String(length=20), server_default='boleto', nullable=False),
        *_timestamps(),
        sa.CheckConstraint('payment_day BETWEEN 1 AND 28', name='agencies_payment_day_check'),
        sa.CheckConstraint("payment_method IN ('boleto', 'pix', 'transfer')", name='agencies_payment_method_check'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_name'),
        comment='Agencies billed for inspections'
    )
    op.create_index('idx_agencies_name', 'agencies', ['name'])

    # Inspectors (payable side)
    op.create_table(
        'inspectors',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False, comment='Display name'),
        sa.Column('external_name', sa.String(length=255), nullable=False,
                  comment='Name used by the scheduling system export (natural key on import)'),
        sa.Column('tax_id', sa.String(length=32), nullable=True, comment='CPF'),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('whatsapp', sa.String(length=32), nullable=True),
        sa.Column('city', sa.String(length=120), nullable=True),
        sa.Column('pix_key', sa.String(length=255), nullable=True),
        sa.Column('active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_name'),
        comment='Inspectors paid per inspection'
    )
    op.create_index('idx_inspectors_name', 'inspectors', ['name'])

    op.create_table(
        'service_types',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('code', sa.String(length=20), nullable=False, comment='Catalog code e.g. 1.0'),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        comment='Inspection service catalog'
    )

    op.create_table(
        'area_bands',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('min_area', sa.Numeric(precision=10, scale=2), nullable=False, comment='Inclusive lower bound (m2)'),
        sa.Column('max_area', sa.Numeric(precision=10, scale=2), nullable=False, comment='Inclusive upper bound (m2)'),
        sa.Column('multiplier', sa.Numeric(precision=6, scale=2), server_default='1', nullable=False),
        sa.Column('position', sa.Integer(), server_default='0', nullable=False, comment='Evaluation order'),
        sa.CheckConstraint('max_area >= min_area', name='area_bands_range_check'),
        sa.CheckConstraint('multiplier > 0', name='area_bands_multiplier_check'),
        sa.PrimaryKeyConstraint('id'),
        comment='Area bands used to scale base prices'
    )
    op.create_index('idx_area_bands_position', 'area_bands', ['position'])

    op.create_table(
        'price_tables',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('agency_id', sa.Integer(), nullable=False),
        *_rate_columns(),
        sa.ForeignKeyConstraint(['agency_id'], ['agencies.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        comment='Receivable rates per agency'
    )
    op.create_index('idx_price_tables_lookup', 'price_tables', ['agency_id', 'service_type_id', 'area_band_id'])

    op.create_table(
        'payout_tables',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('inspector_id', sa.Integer(), nullable=False),
        *_rate_columns(),
        sa.ForeignKeyConstraint(['inspector_id'], ['inspectors.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        comment='Payable rates per inspector'
    )
    op.create_index('idx_payout_tables_lookup', 'payout_tables',
                    ['inspector_id', 'service_type_id', 'area_band_id'])

    # Monthly closures
    op.create_table(
        'closures',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('reference_month', sa.Integer(), nullable=False),
        sa.Column('reference_year', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=30), server_default='draft', nullable=False),
        sa.Column('imported_at', sa.TIMESTAMP(), nullable=True, comment='Last spreadsheet import'),
        sa.Column('inspectors_sent_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('agencies_sent_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('finalized_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('total_inspections', sa.Integer(), server_default='0', nullable=False),
        sa.Column('total_receivable', sa.Numeric(precision=14, scale=2), server_default='0', nullable=False),
        sa.Column('total_payable', sa.Numeric(precision=14, scale=2), server_default='0', nullable=False),
        *_timestamps(),
        sa.CheckConstraint('reference_month BETWEEN 1 AND 12', name='closures_month_check'),
        sa.CheckConstraint(
            "status IN ('draft', 'imported', 'calculated', 'awaiting_inspectors', 'in_review', "
            "'awaiting_agencies', 'invoiced', 'finalized')",
            name='closures_status_check'
        ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('reference_month', 'reference_year', name='closures_period_key'),
        comment='Monthly billing closures'
    )
    op.create_index('idx_closures_status', 'closures', ['status'])

    # Inspections
    op.create_table(
        'inspections',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('closure_id', sa.Integer(), nullable=False),
        sa.Column('agency_id', sa.Integer(), nullable=False),
        sa.Column('inspector_id', sa.Integer(), nullable=False),
        sa.Column('service_type_id', sa.Integer(), nullable=False),
        sa.Column('external_id', sa.String(length=64), nullable=False, comment='Id in the scheduling system'),
        sa.Column('contract_number', sa.String(length=64), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('city', sa.String(length=120), nullable=True),
        sa.Column('reported_area', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('measured_area', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('billable_area', sa.Numeric(precision=10, scale=2), server_default='0', nullable=False),
        sa.Column('furnishing', sa.String(length=20), server_default='unfurnished', nullable=False),
        sa.Column('scheduled_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('finished_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('receivable_amount', sa.Numeric(precision=12, scale=2), server_default='0', nullable=False),
        sa.Column('payable_amount', sa.Numeric(precision=12, scale=2), server_default='0', nullable=False),
        sa.Column('status', sa.String(length=20), server_default='imported', nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("furnishing IN ('unfurnished', 'semi_furnished', 'furnished')",
                           name='inspections_furnishing_check'),
        sa.CheckConstraint(
            "status IN ('imported', 'calculated', 'disputed', 'revised', 'approved', 'invoiced')",
            name='inspections_status_check'
        ),
        sa.ForeignKeyConstraint(['closure_id'], ['closures.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['agency_id'], ['agencies.id']),
        sa.ForeignKeyConstraint(['inspector_id'], ['inspectors.id']),
        sa.ForeignKeyConstraint(['service_type_id'], ['service_types.id']),
        sa.PrimaryKeyConstraint('id'),
        comment='Inspection records imported from the scheduling system'
    )
    op.create_index('idx_inspections_closure', 'inspections', ['closure_id'])
    op.create_index('idx_inspections_closure_agency', 'inspections', ['closure_id', 'agency_id'])
    op.create_index('idx_inspections_closure_inspector', 'inspections', ['closure_id', 'inspector_id'])
    op.create_index('idx_inspections_external_id', 'inspections', ['external_id'])


def downgrade() -> None:
    op.drop_index('idx_inspections_external_id', table_name='inspections')
    op.drop_index('idx_inspections_closure_inspector', table_name='inspections')
    op.drop_index('idx_inspections_closure_agency', table_name='inspections')
    op.drop_index('idx_inspections_closure', table_name='inspections')
    op.drop_table('inspections')

    op.drop_index('idx_closures_status', table_name='closures')
    op.drop_table('closures')

    op.drop_index('idx_payout_tables_lookup', table_name='payout_tables')
    op.drop_table('payout_tables')
    op.drop_index('idx_price_tables_lookup', table_name='price_tables')
    op.drop_table('price_tables')

    op.drop_index('idx_area_bands_position', table_name='area_bands')
    op.drop_table('area_bands')
    op.drop_table('service_types')

    op.drop_index('idx_inspectors_name', table_name='inspectors')
    op.drop_table('inspectors')
    op.drop_index('idx_agencies_name', table_name='agencies')
    op.drop_table('agencies')
