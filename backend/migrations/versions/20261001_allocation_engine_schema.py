"""Allocation engine schema: tenants, catalog references, pools, buckets, reservations, rate plans

Creates every table the engine owns:
1. organizations (tenant root)
2. suppliers, product_variants, time_slots (catalog references, owned upstream)
3. inventory_pools, allocation_buckets, reservations (Allocation Store)
4. rate_plans, rate_seasons, rate_occupancies (Rate Plan Registry)

Counter invariants are also CHECK constraints so no writer path can
persist booked + held above the ceiling.

Revision ID: 20261001_allocation_engine
Revises:
Create Date: 2026-10-01 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261001_allocation_engine'
down_revision = None
branch_labels = None
depends_on = None


CEILING_CHECK = (
    "quantity IS NULL OR booked + held <= quantity + "
    "(CASE WHEN allow_overbooking THEN overbooking_limit ELSE 0 END)"
)


def upgrade():
    # ==========================================================================
    # STEP 1: Tenant root
    # ==========================================================================
    op.create_table('organizations',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_organizations_code', 'organizations', ['code'], unique=True)
    op.create_index('ix_organizations_is_active', 'organizations', ['is_active'])

    # ==========================================================================
    # STEP 2: Catalog references
    # ==========================================================================
    op.create_table('suppliers',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('default_priority', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('default_cost_rank', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'code', name='uq_suppliers_org_code'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_suppliers_org_id', 'suppliers', ['org_id'])

    op.create_table('product_variants',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('product_ref', sa.String(length=64), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=True),
        sa.Column('variant_type', sa.String(length=32), nullable=False, server_default='room'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'code', name='uq_product_variants_org_code'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_product_variants_org_id', 'product_variants', ['org_id'])

    op.create_table('time_slots',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('variant_id', 'name', name='uq_time_slots_variant_name'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_time_slots_org_id', 'time_slots', ['org_id'])
    op.create_index('ix_time_slots_variant_id', 'time_slots', ['variant_id'])

    # ==========================================================================
    # STEP 3: Allocation Store
    # ==========================================================================
    op.create_table('inventory_pools',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('reference', sa.String(length=64), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=True),
        sa.Column('booked', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('held', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('allow_overbooking', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('overbooking_limit', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(length=3), nullable=True),
        sa.Column('valid_from', sa.Date(), nullable=True),
        sa.Column('valid_to', sa.Date(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('booked >= 0', name='ck_inventory_pools_booked_nonneg'),
        sa.CheckConstraint('held >= 0', name='ck_inventory_pools_held_nonneg'),
        sa.CheckConstraint('overbooking_limit >= 0', name='ck_inventory_pools_overbooking_nonneg'),
        sa.CheckConstraint(CEILING_CHECK, name='ck_inventory_pools_ceiling'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_inventory_pools_org_id', 'inventory_pools', ['org_id'])
    op.create_index('ix_inventory_pools_supplier_id', 'inventory_pools', ['supplier_id'])

    op.create_table('allocation_buckets',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=True),
        sa.Column('scope_type', sa.String(length=16), nullable=False, server_default='date'),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('time_slot_id', sa.Integer(), nullable=True),
        sa.Column('scope_key', sa.String(length=96), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=True),
        sa.Column('booked', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('held', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('allocation_type', sa.String(length=16), nullable=False, server_default='committed'),
        sa.Column('stop_sell', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('blackout', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('allow_overbooking', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('overbooking_limit', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unit_cost', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=True),
        sa.Column('release_period_hours', sa.Integer(), nullable=True),
        sa.Column('min_stay', sa.Integer(), nullable=True),
        sa.Column('max_stay', sa.Integer(), nullable=True),
        sa.Column('min_occupancy', sa.Integer(), nullable=True),
        sa.Column('max_occupancy', sa.Integer(), nullable=True),
        sa.Column('inventory_pool_id', sa.Integer(), nullable=True),
        sa.Column('alternate_variant_ids', sa.JSON(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('booked >= 0', name='ck_allocation_buckets_booked_nonneg'),
        sa.CheckConstraint('held >= 0', name='ck_allocation_buckets_held_nonneg'),
        sa.CheckConstraint('overbooking_limit >= 0', name='ck_allocation_buckets_overbooking_nonneg'),
        sa.CheckConstraint('start_date <= end_date', name='ck_allocation_buckets_window'),
        sa.CheckConstraint(CEILING_CHECK, name='ck_allocation_buckets_ceiling'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id']),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id']),
        sa.ForeignKeyConstraint(['time_slot_id'], ['time_slots.id']),
        sa.ForeignKeyConstraint(['inventory_pool_id'], ['inventory_pools.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'variant_id', 'scope_key', name='uq_allocation_buckets_scope'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_allocation_buckets_org_id', 'allocation_buckets', ['org_id'])
    op.create_index('ix_allocation_buckets_variant_id', 'allocation_buckets', ['variant_id'])
    op.create_index('ix_allocation_buckets_supplier_id', 'allocation_buckets', ['supplier_id'])
    op.create_index('ix_allocation_buckets_time_slot_id', 'allocation_buckets', ['time_slot_id'])
    op.create_index('ix_allocation_buckets_inventory_pool_id', 'allocation_buckets', ['inventory_pool_id'])
    op.create_index(
        'ix_allocation_buckets_variant_window',
        'allocation_buckets',
        ['org_id', 'variant_id', 'start_date', 'end_date'],
    )

    op.create_table('reservations',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('bucket_id', sa.Integer(), nullable=False),
        sa.Column('counter_pool_id', sa.Integer(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='HELD'),
        sa.Column('selection_ref', sa.String(length=36), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('released_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('release_reason', sa.String(length=32), nullable=True),
        sa.CheckConstraint('quantity > 0', name='ck_reservations_quantity_positive'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['bucket_id'], ['allocation_buckets.id']),
        sa.ForeignKeyConstraint(['counter_pool_id'], ['inventory_pools.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_reservations_org_id', 'reservations', ['org_id'])
    op.create_index('ix_reservations_bucket_id', 'reservations', ['bucket_id'])
    op.create_index('ix_reservations_status', 'reservations', ['status'])
    op.create_index('ix_reservations_selection_ref', 'reservations', ['selection_ref'])
    op.create_index('ix_reservations_status_expires', 'reservations', ['status', 'expires_at'])

    # ==========================================================================
    # STEP 4: Rate Plan Registry
    # ==========================================================================
    op.create_table('rate_plans',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=True),
        sa.Column('contract_ref', sa.String(length=64), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('valid_from', sa.Date(), nullable=False),
        sa.Column('valid_to', sa.Date(), nullable=False),
        sa.Column('inventory_model', sa.String(length=16), nullable=False, server_default='committed'),
        sa.Column('priority', sa.Integer(), nullable=True),
        sa.Column('preferred', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('valid_from <= valid_to', name='ck_rate_plans_window'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id']),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_rate_plans_org_id', 'rate_plans', ['org_id'])
    op.create_index('ix_rate_plans_variant_id', 'rate_plans', ['variant_id'])
    op.create_index('ix_rate_plans_supplier_id', 'rate_plans', ['supplier_id'])
    op.create_index('ix_rate_plans_variant_window', 'rate_plans', ['org_id', 'variant_id', 'valid_from', 'valid_to'])

    op.create_table('rate_seasons',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('rate_plan_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=True),
        sa.Column('date_from', sa.Date(), nullable=False),
        sa.Column('date_to', sa.Date(), nullable=False),
        sa.Column('dow_mask', sa.String(length=7), nullable=False, server_default='1111111'),
        sa.Column('min_pax', sa.Integer(), nullable=True),
        sa.Column('max_pax', sa.Integer(), nullable=True),
        sa.CheckConstraint('date_from <= date_to', name='ck_rate_seasons_window'),
        sa.ForeignKeyConstraint(['rate_plan_id'], ['rate_plans.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_rate_seasons_rate_plan_id', 'rate_seasons', ['rate_plan_id'])

    op.create_table('rate_occupancies',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('rate_plan_id', sa.Integer(), nullable=False),
        sa.Column('min_occupancy', sa.Integer(), nullable=False),
        sa.Column('max_occupancy', sa.Integer(), nullable=False),
        sa.Column('pricing_model', sa.String(length=16), nullable=False, server_default='fixed'),
        sa.Column('base_amount', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('per_person_amount', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.CheckConstraint('min_occupancy >= 1', name='ck_rate_occupancies_min'),
        sa.CheckConstraint('min_occupancy <= max_occupancy', name='ck_rate_occupancies_range'),
        sa.ForeignKeyConstraint(['rate_plan_id'], ['rate_plans.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_rate_occupancies_rate_plan_id', 'rate_occupancies', ['rate_plan_id'])


def downgrade():
    for table in (
        'rate_occupancies',
        'rate_seasons',
        'rate_plans',
        'reservations',
        'allocation_buckets',
        'inventory_pools',
        'time_slots',
        'product_variants',
        'suppliers',
        'organizations',
    ):
        op.drop_table(table)
