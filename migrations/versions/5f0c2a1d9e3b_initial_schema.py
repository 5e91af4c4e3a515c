"""initial schema

Revision ID: 5f0c2a1d9e3b
Revises:
Create Date: 2024-03-04 10:12:41.503112

"""

# revision identifiers, used by Alembic.
revision = '5f0c2a1d9e3b'
down_revision = None

from alembic import op
import sqlalchemy as sa


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('ext_id', sa.String(length=128), nullable=True),
        sa.Column('password', sa.String(length=100), nullable=True),
        sa.Column('joining_ts', sa.DateTime(), nullable=True),
        sa.Column('last_login_ts', sa.DateTime(), nullable=True),
        sa.Column('is_admin', sa.Boolean(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_users')),
        sa.UniqueConstraint('ext_id', name=op.f('uq_users_ext_id'))
    )
    op.create_table(
        'hosts',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('host_name', sa.String(length=255), nullable=False),
        sa.Column('password', sa.String(length=100), nullable=True),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_hosts')),
        sa.UniqueConstraint('host_name', name=op.f('uq_hosts_host_name'))
    )
    op.create_table(
        'host_storages',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('host_id', sa.String(length=32), nullable=False),
        sa.Column('path', sa.String(length=1024), nullable=False),
        sa.Column('file_system_type', sa.String(length=32), nullable=True),
        sa.ForeignKeyConstraint(['host_id'], ['hosts.id'], name=op.f('fk_host_storages_host_id_hosts')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_host_storages')),
        sa.UniqueConstraint('host_id', 'path', name=op.f('uq_host_storages_host_id'))
    )
    op.create_table(
        'resource_groups',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_resource_groups')),
        sa.UniqueConstraint('name', name=op.f('uq_resource_groups_name'))
    )
    op.create_table(
        'resources',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('resource_group_id', sa.String(length=32), nullable=False),
        sa.Column('storage_id', sa.String(length=32), nullable=False),
        sa.Column('resource_provider_name', sa.String(length=64), nullable=False),
        sa.Column('resource_type', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.ForeignKeyConstraint(['resource_group_id'], ['resource_groups.id'],
                                name=op.f('fk_resources_resource_group_id_resource_groups')),
        sa.ForeignKeyConstraint(['storage_id'], ['host_storages.id'],
                                name=op.f('fk_resources_storage_id_host_storages')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_resources')),
        sa.UniqueConstraint('resource_group_id', 'resource_provider_name', 'resource_type', 'name',
                            name=op.f('uq_resources_resource_group_id'))
    )
    op.create_table(
        'resource_configs',
        sa.Column('resource_id', sa.String(length=32), nullable=False),
        sa.Column('config', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['resource_id'], ['resources.id'],
                                name=op.f('fk_resource_configs_resource_id_resources')),
        sa.PrimaryKeyConstraint('resource_id', name=op.f('pk_resource_configs'))
    )
    op.create_table(
        'resource_logs',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('resource_id', sa.String(length=32), nullable=True),
        sa.Column('title', sa.String(length=255), nullable=True),
        sa.Column('status', sa.Integer(), nullable=True),
        sa.Column('log', sa.Text(), nullable=True),
        sa.Column('start_ts', sa.DateTime(), nullable=True),
        sa.Column('end_ts', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['resource_id'], ['resources.id'],
                                name=op.f('fk_resource_logs_resource_id_resources')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_resource_logs'))
    )
    op.create_index(op.f('ix_resource_logs_resource_id'), 'resource_logs', ['resource_id'], unique=False)
    op.create_table(
        'locks',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('owner', sa.String(length=64), nullable=True),
        sa.Column('acquired_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_locks'))
    )


def downgrade():
    op.drop_table('locks')
    op.drop_index(op.f('ix_resource_logs_resource_id'), table_name='resource_logs')
    op.drop_table('resource_logs')
    op.drop_table('resource_configs')
    op.drop_table('resources')
    op.drop_table('resource_groups')
    op.drop_table('host_storages')
    op.drop_table('hosts')
    op.drop_table('users')
