"""Create warehouse core schema

Revision ID: 001_warehouse_core
Revises:
Create Date: 2026-10-18

Tables:
- warehouses, warehouse_cells, client_cell_assignments
- entry_orders, entry_order_lines
- inventory_allocations, inventory_records, quality_control_transitions
- departure_orders, departure_order_lines, departure_allocations
- inventory_logs, audit_logs, document_sequences
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001_warehouse_core'
down_revision = None
branch_labels = None
depends_on = None


def _measure(name, nullable=False):
    if nullable:
        return sa.Column(name, sa.Numeric(10, 2), nullable=True)
    return sa.Column(name, sa.Numeric(10, 2), server_default='0', nullable=False)


def _timestamp(name, nullable=False):
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade():
    """Create warehouse core tables"""

    # ====================
    # WAREHOUSES & CELLS
    # ====================
    op.create_table(
        'warehouses',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False, unique=True),
        sa.Column('location', sa.String(255), nullable=True),
        sa.Column('address', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(20), server_default='ACTIVE', nullable=False),
        _timestamp('created_at'),
    )

    op.create_table(
        'warehouse_cells',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('warehouse_id', sa.Uuid(), sa.ForeignKey('warehouses.id', ondelete='CASCADE'), nullable=False),
        sa.Column('row', sa.String(5), nullable=False),
        sa.Column('bay', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('cell_role', sa.String(20), server_default='STANDARD', nullable=False),
        sa.Column('is_passage', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('status', sa.String(20), server_default='AVAILABLE', nullable=False),
        sa.Column('max_quantity', sa.Integer(), nullable=True),
        sa.Column('max_packages', sa.Integer(), nullable=True),
        _measure('max_weight', nullable=True),
        _measure('max_volume', nullable=True),
        sa.Column('current_quantity', sa.Integer(), server_default='0', nullable=False),
        sa.Column('current_packages', sa.Integer(), server_default='0', nullable=False),
        _measure('current_weight'),
        _measure('current_volume'),
        sa.Column('version', sa.Integer(), nullable=False),
        _timestamp('updated_at'),
        sa.UniqueConstraint('warehouse_id', 'row', 'bay', 'position', name='uq_warehouse_cell_address'),
    )
    op.create_index('ix_warehouse_cells_warehouse_id', 'warehouse_cells', ['warehouse_id'])
    op.create_index('ix_warehouse_cells_role_status', 'warehouse_cells', ['warehouse_id', 'cell_role', 'status'])

    op.create_table(
        'client_cell_assignments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('client_id', sa.Uuid(), nullable=False),
        sa.Column('cell_id', sa.Uuid(), sa.ForeignKey('warehouse_cells.id', ondelete='CASCADE'), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('assigned_by', sa.Uuid(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        _timestamp('assigned_at'),
        sa.UniqueConstraint('client_id', 'cell_id', name='uq_client_cell_assignment'),
    )
    op.create_index('ix_client_cell_assignments_client_id', 'client_cell_assignments', ['client_id'])
    op.create_index('ix_client_cell_assignments_cell_id', 'client_cell_assignments', ['cell_id'])

    # ====================
    # ENTRY ORDERS
    # ====================
    op.create_table(
        'entry_orders',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('order_no', sa.String(30), nullable=False, unique=True),
        sa.Column('client_id', sa.Uuid(), nullable=False),
        sa.Column('warehouse_id', sa.Uuid(), sa.ForeignKey('warehouses.id'), nullable=False),
        sa.Column('review_status', sa.String(20), server_default='PENDING', nullable=False),
        sa.Column('review_comments', sa.Text(), nullable=True),
        sa.Column('reviewed_by', sa.Uuid(), nullable=True),
        _timestamp('reviewed_at', nullable=True),
        sa.Column('guide_number', sa.String(50), nullable=True),
        sa.Column('observations', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Uuid(), nullable=False),
        _timestamp('registered_at'),
    )
    op.create_index('ix_entry_orders_client_id', 'entry_orders', ['client_id'])
    op.create_index('ix_entry_orders_warehouse_id', 'entry_orders', ['warehouse_id'])

    op.create_table(
        'entry_order_lines',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('entry_order_id', sa.Uuid(), sa.ForeignKey('entry_orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.Uuid(), nullable=False),
        sa.Column('product_code', sa.String(50), nullable=True),
        sa.Column('lot_number', sa.String(50), nullable=False),
        sa.Column('expiration_date', sa.Date(), nullable=True),
        sa.Column('manufacturing_date', sa.Date(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('packages', sa.Integer(), server_default='0', nullable=False),
        _measure('weight'),
        _measure('volume'),
        sa.Column('presentation', sa.String(20), server_default='CAJA', nullable=False),
        _timestamp('received_at'),
        sa.CheckConstraint('quantity > 0', name='ck_entry_line_quantity_positive'),
    )
    op.create_index('ix_entry_order_lines_entry_order_id', 'entry_order_lines', ['entry_order_id'])
    op.create_index('ix_entry_order_lines_product_id', 'entry_order_lines', ['product_id'])
    op.create_index('ix_entry_order_lines_expiration_date', 'entry_order_lines', ['expiration_date'])

    # ====================
    # INVENTORY
    # ====================
    op.create_table(
        'inventory_allocations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('entry_order_id', sa.Uuid(), sa.ForeignKey('entry_orders.id'), nullable=False),
        sa.Column('entry_order_line_id', sa.Uuid(), sa.ForeignKey('entry_order_lines.id'), nullable=False),
        sa.Column('parent_allocation_id', sa.Uuid(), sa.ForeignKey('inventory_allocations.id'), nullable=True),
        sa.Column('client_id', sa.Uuid(), nullable=False),
        sa.Column('product_id', sa.Uuid(), nullable=False),
        sa.Column('lot_number', sa.String(50), nullable=False),
        sa.Column('expiration_date', sa.Date(), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('warehouse_id', sa.Uuid(), sa.ForeignKey('warehouses.id'), nullable=False),
        sa.Column('cell_id', sa.Uuid(), sa.ForeignKey('warehouse_cells.id'), nullable=False),
        sa.Column('allocated_quantity', sa.Integer(), nullable=False),
        sa.Column('allocated_packages', sa.Integer(), server_default='0', nullable=False),
        _measure('allocated_weight'),
        _measure('allocated_volume'),
        sa.Column('remaining_quantity', sa.Integer(), nullable=False),
        sa.Column('remaining_packages', sa.Integer(), server_default='0', nullable=False),
        _measure('remaining_weight'),
        _measure('remaining_volume'),
        sa.Column('quality_status', sa.String(20), server_default='QUARANTINE', nullable=False),
        sa.Column('lifecycle_status', sa.String(20), server_default='ACTIVE', nullable=False),
        sa.Column('presentation', sa.String(20), nullable=True),
        sa.Column('guide_number', sa.String(50), nullable=True),
        sa.Column('observations', sa.Text(), nullable=True),
        sa.Column('allocated_by', sa.Uuid(), nullable=False),
        sa.Column('last_modified_by', sa.Uuid(), nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.CheckConstraint('remaining_quantity >= 0', name='ck_allocation_remaining_non_negative'),
        sa.CheckConstraint('remaining_quantity <= allocated_quantity', name='ck_allocation_remaining_le_allocated'),
    )
    op.create_index('ix_inventory_allocations_entry_order_id', 'inventory_allocations', ['entry_order_id'])
    op.create_index('ix_inventory_allocations_entry_order_line_id', 'inventory_allocations', ['entry_order_line_id'])
    op.create_index('ix_inventory_allocations_client_id', 'inventory_allocations', ['client_id'])
    op.create_index('ix_inventory_allocations_product_id', 'inventory_allocations', ['product_id'])
    op.create_index('ix_inventory_allocations_warehouse_id', 'inventory_allocations', ['warehouse_id'])
    op.create_index('ix_inventory_allocations_cell_id', 'inventory_allocations', ['cell_id'])
    op.create_index('ix_inventory_allocations_quality_status', 'inventory_allocations', ['quality_status'])
    op.create_index(
        'ix_allocations_fifo', 'inventory_allocations',
        ['product_id', 'quality_status', 'lifecycle_status', 'expiration_date'],
    )

    op.create_table(
        'inventory_records',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('product_id', sa.Uuid(), nullable=False),
        sa.Column('warehouse_id', sa.Uuid(), sa.ForeignKey('warehouses.id'), nullable=False),
        sa.Column('cell_id', sa.Uuid(), sa.ForeignKey('warehouse_cells.id'), nullable=False),
        sa.Column('quality_status', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), server_default='QUARANTINED', nullable=False),
        sa.Column('current_quantity', sa.Integer(), server_default='0', nullable=False),
        sa.Column('current_packages', sa.Integer(), server_default='0', nullable=False),
        _measure('current_weight'),
        _measure('current_volume'),
        sa.Column('last_modified_by', sa.Uuid(), nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.UniqueConstraint('product_id', 'cell_id', 'quality_status', name='uq_inventory_record_position'),
    )
    op.create_index('ix_inventory_records_product_id', 'inventory_records', ['product_id'])
    op.create_index('ix_inventory_records_cell_id', 'inventory_records', ['cell_id'])

    op.create_table(
        'quality_control_transitions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('allocation_id', sa.Uuid(), sa.ForeignKey('inventory_allocations.id'), nullable=False),
        sa.Column('new_allocation_id', sa.Uuid(), sa.ForeignKey('inventory_allocations.id'), nullable=True),
        sa.Column('product_id', sa.Uuid(), nullable=False),
        sa.Column('from_status', sa.String(20), nullable=False),
        sa.Column('to_status', sa.String(20), nullable=False),
        sa.Column('quantity_moved', sa.Integer(), nullable=False),
        sa.Column('packages_moved', sa.Integer(), server_default='0', nullable=False),
        _measure('weight_moved'),
        _measure('volume_moved'),
        sa.Column('from_cell_id', sa.Uuid(), sa.ForeignKey('warehouse_cells.id'), nullable=False),
        sa.Column('to_cell_id', sa.Uuid(), sa.ForeignKey('warehouse_cells.id'), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('performed_by', sa.Uuid(), nullable=False),
        _timestamp('performed_at'),
    )
    op.create_index('ix_quality_control_transitions_allocation_id', 'quality_control_transitions', ['allocation_id'])
    op.create_index('ix_quality_control_transitions_product_id', 'quality_control_transitions', ['product_id'])
    op.create_index('ix_quality_control_transitions_performed_at', 'quality_control_transitions', ['performed_at'])

    # ====================
    # DEPARTURES
    # ====================
    op.create_table(
        'departure_orders',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('order_no', sa.String(30), nullable=False, unique=True),
        sa.Column('client_id', sa.Uuid(), nullable=False),
        sa.Column('warehouse_id', sa.Uuid(), sa.ForeignKey('warehouses.id'), nullable=False),
        sa.Column('order_status', sa.String(30), server_default='PENDING', nullable=False),
        sa.Column('destination_point', sa.String(255), nullable=True),
        sa.Column('transport_type', sa.String(50), nullable=True),
        sa.Column('observations', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Uuid(), nullable=False),
        _timestamp('registered_at'),
        sa.Column('approved_by', sa.Uuid(), nullable=True),
        _timestamp('approved_at', nullable=True),
        sa.Column('dispatched_by', sa.Uuid(), nullable=True),
        _timestamp('dispatched_at', nullable=True),
        _timestamp('completed_at', nullable=True),
    )
    op.create_index('ix_departure_orders_client_id', 'departure_orders', ['client_id'])
    op.create_index('ix_departure_orders_order_status', 'departure_orders', ['order_status'])

    op.create_table(
        'departure_order_lines',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('departure_order_id', sa.Uuid(), sa.ForeignKey('departure_orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.Uuid(), nullable=False),
        sa.Column('product_code', sa.String(50), nullable=True),
        sa.Column('requested_quantity', sa.Integer(), nullable=False),
        sa.Column('dispatched_quantity', sa.Integer(), server_default='0', nullable=False),
        sa.CheckConstraint('requested_quantity > 0', name='ck_departure_line_requested_positive'),
        sa.CheckConstraint('dispatched_quantity <= requested_quantity', name='ck_departure_line_not_overdispatched'),
    )
    op.create_index('ix_departure_order_lines_departure_order_id', 'departure_order_lines', ['departure_order_id'])
    op.create_index('ix_departure_order_lines_product_id', 'departure_order_lines', ['product_id'])

    op.create_table(
        'departure_allocations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('departure_order_id', sa.Uuid(), sa.ForeignKey('departure_orders.id'), nullable=False),
        sa.Column('departure_order_line_id', sa.Uuid(), sa.ForeignKey('departure_order_lines.id'), nullable=False),
        sa.Column('source_allocation_id', sa.Uuid(), sa.ForeignKey('inventory_allocations.id'), nullable=False),
        sa.Column('cell_id', sa.Uuid(), sa.ForeignKey('warehouse_cells.id'), nullable=False),
        sa.Column('reserved_quantity', sa.Integer(), nullable=False),
        sa.Column('reserved_packages', sa.Integer(), server_default='0', nullable=False),
        _measure('reserved_weight'),
        _measure('reserved_volume'),
        sa.Column('status', sa.String(20), server_default='RESERVED', nullable=False),
        sa.Column('reserved_by', sa.Uuid(), nullable=False),
        _timestamp('reserved_at'),
        _timestamp('dispatched_at', nullable=True),
        _timestamp('released_at', nullable=True),
        sa.CheckConstraint('reserved_quantity > 0', name='ck_departure_allocation_positive'),
    )
    op.create_index('ix_departure_allocations_departure_order_id', 'departure_allocations', ['departure_order_id'])
    op.create_index('ix_departure_allocations_departure_order_line_id', 'departure_allocations', ['departure_order_line_id'])
    op.create_index('ix_departure_allocations_source_status', 'departure_allocations', ['source_allocation_id', 'status'])

    # ====================
    # LOGS & SEQUENCES
    # ====================
    op.create_table(
        'inventory_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('operation_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('movement_type', sa.String(30), nullable=False),
        sa.Column('product_id', sa.Uuid(), nullable=False),
        sa.Column('allocation_id', sa.Uuid(), nullable=False),
        sa.Column('warehouse_id', sa.Uuid(), nullable=False),
        sa.Column('cell_id', sa.Uuid(), nullable=False),
        sa.Column('quantity_change', sa.Integer(), server_default='0', nullable=False),
        sa.Column('package_change', sa.Integer(), server_default='0', nullable=False),
        _measure('weight_change'),
        _measure('volume_change'),
        sa.Column('quantity_moved', sa.Integer(), server_default='0', nullable=False),
        sa.Column('from_status', sa.String(20), nullable=True),
        sa.Column('to_status', sa.String(20), nullable=True),
        sa.Column('from_cell_id', sa.Uuid(), nullable=True),
        sa.Column('to_cell_id', sa.Uuid(), nullable=True),
        sa.Column('entry_order_line_id', sa.Uuid(), nullable=True),
        sa.Column('departure_order_id', sa.Uuid(), nullable=True),
        sa.Column('departure_allocation_id', sa.Uuid(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        _timestamp('created_at'),
        sa.UniqueConstraint('operation_id', 'allocation_id', name='uq_inventory_log_operation_allocation'),
    )
    op.create_index('ix_inventory_logs_operation_id', 'inventory_logs', ['operation_id'])
    op.create_index('ix_inventory_logs_movement_type', 'inventory_logs', ['movement_type'])
    op.create_index('ix_inventory_logs_allocation_id', 'inventory_logs', ['allocation_id'])
    op.create_index('ix_inventory_logs_product_created', 'inventory_logs', ['product_id', 'created_at'])
    op.create_index('ix_inventory_logs_cell_created', 'inventory_logs', ['cell_id', 'created_at'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.Uuid(), nullable=True),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        _timestamp('created_at'),
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])

    op.create_table(
        'document_sequences',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('prefix', sa.String(10), nullable=False, unique=True),
        sa.Column('current_number', sa.Integer(), server_default='0', nullable=False),
        sa.Column('padding_length', sa.Integer(), server_default='5', nullable=False),
        sa.Column('separator', sa.String(5), server_default='-', nullable=False),
        _timestamp('updated_at'),
    )


def downgrade():
    """Drop warehouse core tables"""
    op.drop_table('document_sequences')
    op.drop_table('audit_logs')
    op.drop_table('inventory_logs')
    op.drop_table('departure_allocations')
    op.drop_table('departure_order_lines')
    op.drop_table('departure_orders')
    op.drop_table('quality_control_transitions')
    op.drop_table('inventory_records')
    op.drop_table('inventory_allocations')
    op.drop_table('entry_order_lines')
    op.drop_table('entry_orders')
    op.drop_table('client_cell_assignments')
    op.drop_table('warehouse_cells')
    op.drop_table('warehouses')
