"""initial_workflow_schema

Create documents, templates, certificates, requests with approval history,
activity log with entity refs, notification outbox / in-app notifications
and the scheduled job registry.

Revision ID: 5f1c2a9d7e01
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "5f1c2a9d7e01"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=True):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "documents" not in existing_tables:
        op.create_table(
            "documents",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("uploader_id", sa.String(length=64), nullable=False),
            sa.Column("uploader_name", sa.String(length=150), nullable=True),
            sa.Column("file_name", sa.String(length=255), nullable=False),
            sa.Column("mime_type", sa.String(length=100), nullable=False),
            sa.Column("file_size", sa.Integer(), nullable=False),
            sa.Column("type", sa.String(length=30), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            _ts("uploaded_at", nullable=False),
            sa.Column("reviewed_by", sa.String(length=64), nullable=True),
            _ts("reviewed_at"),
            sa.Column("rejection_reason", sa.Text(), nullable=True),
            sa.Column("review_comments", sa.Text(), nullable=True),
            sa.Column("template_created", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("template_version", sa.Integer(), nullable=False, server_default="0"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_documents_uploader_id", "documents", ["uploader_id"])
        op.create_index("ix_documents_status", "documents", ["status"])
        op.create_index("ix_documents_uploader_status", "documents", ["uploader_id", "status"])

    if "certificate_templates" not in existing_tables:
        op.create_table(
            "certificate_templates",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("certificate_type", sa.String(length=30), nullable=False),
            sa.Column("source_document_id", sa.String(length=36), nullable=True),
            sa.Column("revision_of_id", sa.String(length=36), nullable=True),
            sa.Column("created_by", sa.String(length=64), nullable=False),
            _ts("created_at", nullable=False),
            sa.Column("status", sa.String(length=30), nullable=False),
            sa.Column("client_reviewed_by", sa.String(length=64), nullable=True),
            _ts("client_reviewed_at"),
            sa.Column("client_comments", sa.Text(), nullable=True),
            _ts("activated_at"),
            sa.ForeignKeyConstraint(["source_document_id"], ["documents.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["revision_of_id"], ["certificate_templates.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_certificate_templates_source_document_id", "certificate_templates",
                        ["source_document_id"])
        op.create_index("ix_certificate_templates_created_by", "certificate_templates", ["created_by"])
        op.create_index("ix_templates_source_status", "certificate_templates",
                        ["source_document_id", "status"])

    if "certificates" not in existing_tables:
        op.create_table(
            "certificates",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("recipient_id", sa.String(length=64), nullable=False),
            sa.Column("recipient_name", sa.String(length=150), nullable=False),
            sa.Column("recipient_email", sa.String(length=255), nullable=True),
            sa.Column("issuer_id", sa.String(length=64), nullable=False),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("type", sa.String(length=30), nullable=False),
            sa.Column("template_id", sa.String(length=36), nullable=True),
            sa.Column("request_id", sa.String(length=36), nullable=True),
            _ts("issued_at", nullable=False),
            _ts("expires_at"),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("verification_code", sa.String(length=8), nullable=False),
            sa.Column("revoked_by", sa.String(length=64), nullable=True),
            _ts("revoked_at"),
            sa.Column("revocation_reason", sa.Text(), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.ForeignKeyConstraint(["template_id"], ["certificate_templates.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("verification_code"),
        )
        op.create_index("ix_certificates_recipient_id", "certificates", ["recipient_id"])
        op.create_index("ix_certificates_request_id", "certificates", ["request_id"])
        op.create_index("ix_certificates_recipient_status", "certificates", ["recipient_id", "status"])

    if "certificate_requests" not in existing_tables:
        op.create_table(
            "certificate_requests",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("client_id", sa.String(length=64), nullable=False),
            sa.Column("client_name", sa.String(length=150), nullable=False),
            sa.Column("client_email", sa.String(length=255), nullable=False),
            sa.Column("organization_name", sa.String(length=200), nullable=False),
            sa.Column("certificate_type", sa.String(length=30), nullable=False),
            sa.Column("title", sa.String(length=100), nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("purpose", sa.Text(), nullable=False),
            sa.Column("requested_data", sa.JSON(), nullable=True),
            sa.Column("priority", sa.Integer(), nullable=False, server_default="3"),
            sa.Column("status", sa.String(length=30), nullable=False),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("assigned_reviewer_id", sa.String(length=64), nullable=True),
            sa.Column("certificate_id", sa.String(length=36), nullable=True),
            _ts("created_at", nullable=False),
            _ts("submitted_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["certificate_id"], ["certificates.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_certificate_requests_client_id", "certificate_requests", ["client_id"])
        op.create_index("ix_certificate_requests_assigned_reviewer_id", "certificate_requests",
                        ["assigned_reviewer_id"])
        op.create_index("ix_requests_client_status", "certificate_requests", ["client_id", "status"])
        op.create_index("ix_requests_status", "certificate_requests", ["status"])

    if "request_approval_records" not in existing_tables:
        op.create_table(
            "request_approval_records",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("request_id", sa.String(length=36), nullable=False),
            sa.Column("sequence", sa.Integer(), nullable=False),
            sa.Column("reviewer_id", sa.String(length=64), nullable=False),
            sa.Column("reviewer_name", sa.String(length=150), nullable=True),
            sa.Column("reviewer_role", sa.String(length=20), nullable=True),
            sa.Column("action", sa.String(length=30), nullable=False),
            sa.Column("comments", sa.Text(), nullable=True),
            sa.Column("assignee_id", sa.String(length=64), nullable=True),
            _ts("timestamp", nullable=False),
            sa.ForeignKeyConstraint(["request_id"], ["certificate_requests.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("request_id", "sequence", name="uq_approval_record_sequence"),
        )
        op.create_index("ix_request_approval_records_request_id", "request_approval_records",
                        ["request_id"])

    if "activity_entries" not in existing_tables:
        op.create_table(
            "activity_entries",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("actor_id", sa.String(length=64), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            _ts("timestamp", nullable=False),
            _ts("recorded_at", nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_activity_actor_ts", "activity_entries", ["actor_id", "timestamp"])
        op.create_index("idx_activity_action", "activity_entries", ["action"])
        op.create_index("idx_activity_ts", "activity_entries", ["timestamp"])

    if "activity_entity_refs" not in existing_tables:
        op.create_table(
            "activity_entity_refs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("activity_id", sa.Integer(), nullable=False),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=64), nullable=False),
            sa.ForeignKeyConstraint(["activity_id"], ["activity_entries.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_activity_entity_refs_activity_id", "activity_entity_refs", ["activity_id"])
        op.create_index("idx_activity_ref_entity", "activity_entity_refs", ["entity_type", "entity_id"])

    if "notification_outbox" not in existing_tables:
        op.create_table(
            "notification_outbox",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.String(length=64), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("type", sa.String(length=40), nullable=False),
            sa.Column("data", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_error", sa.Text(), nullable=True),
            _ts("created_at"),
            _ts("sent_at"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notification_outbox_user_id", "notification_outbox", ["user_id"])
        op.create_index("ix_outbox_status_created", "notification_outbox", ["status", "created_at"])

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("recipient", sa.String(length=64), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("type", sa.String(length=40), nullable=True),
            sa.Column("data", sa.JSON(), nullable=True),
            sa.Column("outbox_id", sa.Integer(), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=True),
            _ts("read_at"),
            _ts("created_at"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("outbox_id"),
        )
        op.create_index("ix_notifications_recipient", "notifications", ["recipient"])

    if "scheduled_jobs" not in existing_tables:
        op.create_table(
            "scheduled_jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("job_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("interval_seconds", sa.Integer(), nullable=False, server_default="60"),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("is_enabled", sa.Boolean(), nullable=True),
            _ts("last_run_at"),
            sa.Column("last_run_status", sa.String(length=20), nullable=True),
            sa.Column("last_run_duration_ms", sa.Integer(), nullable=True),
            sa.Column("last_run_result", sa.JSON(), nullable=True),
            sa.Column("run_count", sa.Integer(), nullable=True),
            sa.Column("error_count", sa.Integer(), nullable=True),
            sa.Column("last_error", sa.Text(), nullable=True),
            _ts("created_at"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("job_name"),
        )


def downgrade():
    for table in (
        "scheduled_jobs",
        "notifications",
        "notification_outbox",
        "activity_entity_refs",
        "activity_entries",
        "request_approval_records",
        "certificate_requests",
        "certificates",
        "certificate_templates",
        "documents",
    ):
        op.drop_table(table)
