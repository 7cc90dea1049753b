"""module schema and records

Revision ID: ms001
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the dynamic schema tables and the record store:
- modules / blocks / fields / field_options: runtime-defined record types
- module_relationships: declared references between modules
- module_records: one JSON document per record, keyed by field api_name
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'ms001'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade():
    # ============================================================================
    # modules: record type definitions
    # ============================================================================
    op.create_table(
        'modules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('singular_name', sa.String(length=255), nullable=False),
        sa.Column('api_name', sa.String(length=255), nullable=False),
        sa.Column('icon', sa.String(length=64), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_system', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('settings', sa.JSON(), nullable=True),
        sa.Column('order', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_modules_api_name', 'modules', ['api_name'], unique=True)
    op.create_index('ix_modules_is_active', 'modules', ['is_active'])
    op.create_index('ix_modules_order', 'modules', ['order'])

    # ============================================================================
    # blocks: layout groups of fields
    # ============================================================================
    op.create_table(
        'blocks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('module_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False, server_default='section'),
        sa.Column('order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('columns', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('is_collapsible', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_collapsed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('settings', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['module_id'], ['modules.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_blocks_module_id', 'blocks', ['module_id'])
    op.create_index('ix_blocks_module_order', 'blocks', ['module_id', 'order'])

    # ============================================================================
    # module_relationships: references between modules (stored in documents)
    # ============================================================================
    op.create_table(
        'module_relationships',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('from_module_id', sa.Integer(), nullable=False),
        sa.Column('to_module_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('api_name', sa.String(length=255), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('settings', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['from_module_id'], ['modules.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['to_module_id'], ['modules.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('from_module_id', 'name', name='uq_module_relationships_from_name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_module_relationships_api_name', 'module_relationships', ['api_name'], unique=True)
    op.create_index('ix_module_relationships_from_module_id', 'module_relationships', ['from_module_id'])
    op.create_index('ix_module_relationships_to_module_id', 'module_relationships', ['to_module_id'])

    # ============================================================================
    # fields: typed attributes, api_name is the document key
    # ============================================================================
    op.create_table(
        'fields',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('block_id', sa.Integer(), nullable=False),
        sa.Column('relationship_id', sa.Integer(), nullable=True),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('api_name', sa.String(length=255), nullable=False),
        sa.Column('label', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('help_text', sa.Text(), nullable=True),
        sa.Column('is_required', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_unique', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_searchable', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_visible_in_list', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_visible_in_detail', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('validation_rules', sa.JSON(), nullable=True),
        sa.Column('settings', sa.JSON(), nullable=True),
        sa.Column('default_value', sa.JSON(), nullable=True),
        sa.Column('order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('width', sa.Integer(), nullable=False, server_default='100'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['block_id'], ['blocks.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['relationship_id'], ['module_relationships.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('block_id', 'api_name', name='uq_fields_block_api_name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_fields_block_id', 'fields', ['block_id'])
    op.create_index('ix_fields_relationship_id', 'fields', ['relationship_id'])
    op.create_index('ix_fields_block_order', 'fields', ['block_id', 'order'])
    op.create_index('ix_fields_type', 'fields', ['type'])

    # ============================================================================
    # field_options: allowed values of select / multiselect / radio fields
    # ============================================================================
    op.create_table(
        'field_options',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('field_id', sa.Integer(), nullable=False),
        sa.Column('label', sa.String(length=255), nullable=False),
        sa.Column('value', sa.String(length=255), nullable=False),
        sa.Column('color', sa.String(length=32), nullable=True),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('order', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['field_id'], ['fields.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('field_id', 'value', name='uq_field_options_field_value'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_field_options_field_id', 'field_options', ['field_id'])
    op.create_index('ix_field_options_field_order', 'field_options', ['field_id', 'order'])

    # ============================================================================
    # module_records: JSON documents, soft-deletable
    # ============================================================================
    op.create_table(
        'module_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('module_id', sa.Integer(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('updated_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['module_id'], ['modules.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_module_records_module_id', 'module_records', ['module_id'])
    op.create_index('ix_module_records_created_by', 'module_records', ['created_by'])
    op.create_index('ix_module_records_created_at', 'module_records', ['created_at'])
    op.create_index('ix_module_records_module_deleted', 'module_records', ['module_id', 'deleted_at'])


def downgrade():
    op.drop_table('module_records')
    op.drop_table('field_options')
    op.drop_table('fields')
    op.drop_table('module_relationships')
    op.drop_table('blocks')
    op.drop_table('modules')
