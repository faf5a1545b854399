"""Initial schema with users, organizations, projects, branches and elements.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(255), primary_key=True),
        sa.Column('fname', sa.String(255), server_default=''),
        sa.Column('lname', sa.String(255), server_default=''),
        sa.Column('email', sa.String(255)),
        sa.Column('admin', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_on', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'organizations',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False, server_default=''),
        sa.Column('custom', sa.JSON, nullable=False),
        sa.Column('archived', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_on', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_on', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'organization_members',
        sa.Column('organization_id', sa.String(64), sa.ForeignKey('organizations.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('user_id', sa.String(255), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('permission', sa.Enum('read', 'write', 'admin', name='permission'), nullable=False, server_default='read'),
    )

    op.create_table(
        'projects',
        sa.Column('id', sa.String(130), primary_key=True),
        sa.Column('organization_id', sa.String(64), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False, server_default=''),
        sa.Column('visibility', sa.Enum('private', 'internal', name='projectvisibility'), nullable=False, server_default='private'),
        sa.Column('custom', sa.JSON, nullable=False),
        sa.Column('archived', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_by', sa.String(255), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('created_on', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_on', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_projects_organization_id', 'projects', ['organization_id'])
    op.create_index('ix_projects_visibility', 'projects', ['visibility'])

    # Permission enum already exists from organization_members
    op.create_table(
        'project_members',
        sa.Column('project_id', sa.String(130), sa.ForeignKey('projects.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('user_id', sa.String(255), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('permission', postgresql.ENUM('read', 'write', 'admin', name='permission', create_type=False), nullable=False, server_default='read'),
    )

    op.create_table(
        'branches',
        sa.Column('id', sa.String(200), primary_key=True),
        sa.Column('project_id', sa.String(130), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False, server_default=''),
        sa.Column('source', sa.String(200)),
        sa.Column('tag', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('custom', sa.JSON, nullable=False),
        sa.Column('archived', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_by', sa.String(255), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('created_on', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_on', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_branches_project_id', 'branches', ['project_id'])

    op.create_table(
        'elements',
        sa.Column('id', sa.String(512), primary_key=True),
        sa.Column('project_id', sa.String(130), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('branch_id', sa.String(200), sa.ForeignKey('branches.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False, server_default=''),
        sa.Column('type', sa.String(255), nullable=False, server_default=''),
        sa.Column('documentation', sa.Text, nullable=False, server_default=''),
        sa.Column('parent', sa.String(512)),
        sa.Column('source', sa.String(512)),
        sa.Column('target', sa.String(512)),
        sa.Column('custom', sa.JSON, nullable=False),
        sa.Column('archived', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('archived_on', sa.DateTime),
        sa.Column('archived_by', sa.String(255), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('created_by', sa.String(255), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('last_modified_by', sa.String(255), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('created_on', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_on', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('source IS NULL OR source != id', name='no_self_source'),
        sa.CheckConstraint('target IS NULL OR target != id', name='no_self_target'),
        sa.CheckConstraint(
            '(source IS NULL AND target IS NULL) OR (source IS NOT NULL AND target IS NOT NULL)',
            name='paired_source_target'
        ),
    )

    # Reference columns are looked up when repairing deleted elements
    op.create_index('ix_elements_project_id', 'elements', ['project_id'])
    op.create_index('ix_elements_branch_id', 'elements', ['branch_id'])
    op.create_index('ix_elements_parent', 'elements', ['parent'])
    op.create_index('ix_elements_source', 'elements', ['source'])
    op.create_index('ix_elements_target', 'elements', ['target'])
    op.create_index('ix_elements_archived', 'elements', ['archived'])


def downgrade() -> None:
    op.drop_table('elements')
    op.drop_table('branches')
    op.drop_table('project_members')
    op.drop_table('projects')
    op.drop_table('organization_members')
    op.drop_table('organizations')
    op.drop_table('users')

    # Drop enums
    op.execute('DROP TYPE IF EXISTS projectvisibility')
    op.execute('DROP TYPE IF EXISTS permission')
