"""Create stored_files and upload_records tables

Revision ID: 001
Revises: None
Create Date: 2026-10-18 00:00:00.000000+00:00

What:  Initial schema: the stored file records and the upload statistics log.
Rollback: downgrade() drops both tables (destructive).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "stored_files",
        sa.Column("id", sa.Uuid(), nullable=False, comment="Unique identifier"),
        sa.Column("name", sa.String(255), nullable=False, comment="Display name (the uploaded file name)"),
        sa.Column(
            "description",
            sa.Text(),
            nullable=False,
            server_default=sa.text("''"),
            comment="Free-form description supplied by the uploader",
        ),
        sa.Column("url", sa.Text(), nullable=False, comment="Public or presigned URL of the stored object"),
        sa.Column("storage_key", sa.String(512), nullable=False, comment="Object key inside the bucket"),
        sa.Column("size", sa.BigInteger(), nullable=False, comment="Size in bytes"),
        sa.Column("mime_type", sa.String(100), nullable=False, comment="MIME type resolved from the file extension"),
        sa.Column("owner_id", sa.String(64), nullable=False, comment="Identifier of the uploading user"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
            comment="When the record was created (UTC)",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_stored_files"),
    )
    op.create_index(
        "idx_stored_files_owner_created",
        "stored_files",
        ["owner_id", sa.text("created_at DESC")],
    )

    op.create_table(
        "upload_records",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("file_count", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("file_type", sa.String(20), nullable=False),
        sa.Column("ip", sa.String(64), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_upload_records"),
    )
    op.create_index("idx_upload_records_file_type", "upload_records", ["file_type"])


def downgrade() -> None:
    op.drop_index("idx_upload_records_file_type", table_name="upload_records")
    op.drop_table("upload_records")
    op.drop_index("idx_stored_files_owner_created", table_name="stored_files")
    op.drop_table("stored_files")
