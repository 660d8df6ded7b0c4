"""create wiki tables

Revision ID: 0001_create_wiki_tables
Revises: 
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_create_wiki_tables"
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        "wiki_users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("username", sa.String(length=80), nullable=False, unique=True),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "wiki_groups",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=80), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "wiki_user_groups",
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("wiki_users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("group_id", sa.String(length=36), sa.ForeignKey("wiki_groups.id", ondelete="CASCADE"), primary_key=True),
    )

    op.create_table(
        "wiki_pages",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("title", sa.String(length=35), nullable=False, unique=True),
        sa.Column("shorthand_title", sa.String(length=35), nullable=False, unique=True),
        sa.Column("title_char", sa.String(length=1), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("compiled_content", sa.Text(), nullable=False, server_default=""),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("markup", sa.String(length=20), nullable=False, server_default="markdown"),
        sa.Column("comment", sa.String(length=255), nullable=True),
        sa.Column("created_by", sa.String(length=36), sa.ForeignKey("wiki_users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("updated_by", sa.String(length=36), sa.ForeignKey("wiki_users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("revision", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_wiki_pages_title_char", "wiki_pages", ["title_char"])
    op.create_index("ix_wiki_pages_updated_at", "wiki_pages", ["updated_at"])

    op.create_table(
        "wiki_permissions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("page_id", sa.String(length=36), sa.ForeignKey("wiki_pages.id", ondelete="CASCADE"), nullable=False),
        sa.Column("kind", sa.String(length=10), nullable=False),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("wiki_users.id", ondelete="CASCADE"), nullable=True),
        sa.Column("group_id", sa.String(length=36), sa.ForeignKey("wiki_groups.id", ondelete="CASCADE"), nullable=True),
        sa.Column("is_global", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "(CASE WHEN user_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN group_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN is_global THEN 1 ELSE 0 END) = 1",
            name="ck_wiki_permission_single_scope",
        ),
        sa.CheckConstraint("kind IN ('own', 'write', 'read')", name="ck_wiki_permission_kind"),
    )
    op.create_index("ix_wiki_permissions_page_id", "wiki_permissions", ["page_id"])
    op.create_index("ix_wiki_permissions_user_id", "wiki_permissions", ["user_id"])
    op.create_index("ix_wiki_permissions_group_id", "wiki_permissions", ["group_id"])

    op.create_table(
        "wiki_revisions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("page_id", sa.String(length=36), sa.ForeignKey("wiki_pages.id", ondelete="CASCADE"), nullable=False),
        sa.Column("revision", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=35), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("markup", sa.String(length=20), nullable=False),
        sa.Column("comment", sa.String(length=255), nullable=True),
        sa.Column("updated_by", sa.String(length=36), sa.ForeignKey("wiki_users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("page_id", "revision", name="ux_wiki_revision_page_number"),
    )
    op.create_index("ix_wiki_revisions_page_id", "wiki_revisions", ["page_id"])

def downgrade():
    op.drop_table("wiki_revisions")
    op.drop_table("wiki_permissions")
    op.drop_table("wiki_pages")
    op.drop_table("wiki_user_groups")
    op.drop_table("wiki_groups")
    op.drop_table("wiki_users")
