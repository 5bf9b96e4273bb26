"""Initial schema: users, GitHub installations, repos and repo files

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

"""
from collections.abc import Sequence
from typing import Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("github_id", sa.BigInteger(), nullable=False),
        sa.Column("github_username", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_users_github_id", "users", ["github_id"], unique=True)

    op.create_table(
        "github_installations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("installation_id", sa.BigInteger(), nullable=False, unique=True),
        sa.Column("account_id", sa.BigInteger(), nullable=False),
        sa.Column("account_login", sa.String(255), nullable=False),
        sa.Column("account_type", sa.String(32), nullable=False),
        sa.Column("account_avatar_url", sa.String(500), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("suspended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "repositories_cache",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("repositories_cache_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_github_installations_account_id", "github_installations", ["account_id"]
    )
    op.create_index(
        "ix_github_installations_account_login", "github_installations", ["account_login"]
    )

    op.create_table(
        "installation_members",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("installation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("role", sa.String(32), nullable=False, server_default="member"),
        sa.Column("discovered_via", sa.String(32), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["installation_id"], ["github_installations.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ux_installation_members_installation_user",
        "installation_members",
        ["installation_id", "user_id"],
        unique=True,
    )
    op.create_index("ix_installation_members_user_id", "installation_members", ["user_id"])

    op.create_table(
        "repos",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("github_id", sa.BigInteger(), nullable=False, unique=True),
        sa.Column("github_full_name", sa.String(255), nullable=False),
        sa.Column("default_branch", sa.String(255), nullable=False, server_default="main"),
        sa.Column("private", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("installation_id", sa.BigInteger(), nullable=True),
        sa.Column("ingestion_status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("last_ingested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_ingested_commit_sha", sa.String(64), nullable=True),
        sa.Column("file_count", sa.Integer(), nullable=True),
        sa.Column("token_count", sa.Integer(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("extraction_status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "ingestion_status IN ('pending', 'ingesting', 'ingested', 'failed')",
            name="ck_repos_ingestion_status",
        ),
    )
    op.create_index("ix_repos_user_id", "repos", ["user_id"])
    op.create_index("ix_repos_installation_id", "repos", ["installation_id"])
    op.create_index("ix_repos_ingestion_status", "repos", ["ingestion_status"])

    op.create_table(
        "repo_files",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("repo_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("file_path", sa.Text(), nullable=False),
        sa.Column("language", sa.String(64), nullable=True),
        sa.Column("size_bytes", sa.Integer(), nullable=False),
        sa.Column("token_estimate", sa.Integer(), nullable=False),
        sa.Column(
            "last_seen_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["repo_id"], ["repos.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ux_repo_files_repo_path", "repo_files", ["repo_id", "file_path"], unique=True
    )
    op.create_index("ix_repo_files_repo_last_seen", "repo_files", ["repo_id", "last_seen_at"])


def downgrade() -> None:
    op.drop_index("ix_repo_files_repo_last_seen", table_name="repo_files")
    op.drop_index("ux_repo_files_repo_path", table_name="repo_files")
    op.drop_table("repo_files")
    op.drop_index("ix_repos_ingestion_status", table_name="repos")
    op.drop_index("ix_repos_installation_id", table_name="repos")
    op.drop_index("ix_repos_user_id", table_name="repos")
    op.drop_table("repos")
    op.drop_index("ix_installation_members_user_id", table_name="installation_members")
    op.drop_index("ux_installation_members_installation_user", table_name="installation_members")
    op.drop_table("installation_members")
    op.drop_index("ix_github_installations_account_login", table_name="github_installations")
    op.drop_index("ix_github_installations_account_id", table_name="github_installations")
    op.drop_table("github_installations")
    op.drop_index("ix_users_github_id", table_name="users")
    op.drop_table("users")
