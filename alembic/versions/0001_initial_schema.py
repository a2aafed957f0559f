"""Initial BondLedger schema.

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"
    json_type = postgresql.JSONB() if is_postgres else sa.JSON()

    # =============================================================================
    # Users
    # =============================================================================
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(20), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(50), nullable=False),
        sa.Column("last_name", sa.String(50), nullable=False),
        sa.Column("avatar", sa.String(1000)),
        sa.Column("bio", sa.String(500)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("username", name="uq_users_username"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    # =============================================================================
    # Relationships
    # =============================================================================
    op.create_table(
        "relationships",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("initiator_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("partner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("pair_low", sa.Integer(), nullable=False),
        sa.Column("pair_high", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("breakup_requested_by", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("breakup_requested_at", sa.DateTime(timezone=True)),
        sa.Column("latest_certificate_id", sa.Integer()),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("description", sa.String(500)),
        sa.Column("privacy", sa.String(16), nullable=False),
        sa.Column("tags", json_type),
        sa.Column("custom_fields", json_type),
        sa.Column("start_date", sa.DateTime(timezone=True)),
        sa.Column("accepted_date", sa.DateTime(timezone=True)),
        sa.Column("end_date", sa.DateTime(timezone=True)),
        sa.Column("trust_level", sa.Integer(), nullable=False),
        sa.Column("communication_frequency", sa.String(16), nullable=False),
        sa.Column("total_activities", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("milestones_achieved", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_interaction", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("pair_low", "pair_high", name="uq_relationships_pair"),
        sa.CheckConstraint("initiator_id <> partner_id", name="check_relationship_distinct_parties"),
        sa.CheckConstraint("trust_level >= 0 AND trust_level <= 100", name="check_trust_level"),
        sa.CheckConstraint(
            "breakup_requested_by IS NULL OR breakup_requested_by = initiator_id "
            "OR breakup_requested_by = partner_id",
            name="check_breakup_requested_by_party",
        ),
    )
    op.create_index("ix_relationships_status", "relationships", ["status"])
    op.create_index("ix_relationships_type", "relationships", ["type"])
    op.create_index("ix_relationships_initiator", "relationships", ["initiator_id"])
    op.create_index("ix_relationships_partner", "relationships", ["partner_id"])

    # =============================================================================
    # Terms
    # =============================================================================
    op.create_table(
        "terms",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("relationship_id", sa.Integer(), sa.ForeignKey("relationships.id"), nullable=False),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("description", sa.String(1000), nullable=False),
        sa.Column("category", sa.String(32), nullable=False),
        sa.Column("priority", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_terms_relationship", "terms", ["relationship_id"])
    op.create_index("ix_terms_status", "terms", ["status"])
    op.create_index("ix_terms_category", "terms", ["category"])

    op.create_table(
        "term_agreements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("term_id", sa.Integer(), sa.ForeignKey("terms.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("agreed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("signature", sa.String(255)),
        sa.UniqueConstraint("term_id", "user_id", name="uq_term_agreements_term_user"),
    )

    op.create_table(
        "term_violations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("term_id", sa.Integer(), sa.ForeignKey("terms.id"), nullable=False),
        sa.Column("reported_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("severity", sa.String(16), nullable=False),
        sa.Column("reported_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("resolution", sa.Text()),
    )
    op.create_index("ix_term_violations_term", "term_violations", ["term_id"])

    # =============================================================================
    # Milestones
    # =============================================================================
    op.create_table(
        "milestones",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("relationship_id", sa.Integer(), sa.ForeignKey("relationships.id"), nullable=False),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("description", sa.String(500)),
        sa.Column("category", sa.String(32), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("target_date", sa.DateTime(timezone=True)),
        sa.Column("completed_date", sa.DateTime(timezone=True)),
        sa.Column("completed_by", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("criteria", json_type),
        sa.Column("rewards", json_type),
        sa.Column("participants", json_type),
        sa.Column("evidence", json_type),
        sa.Column("is_template", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("template_category", sa.String(100)),
        sa.Column("difficulty", sa.String(16), nullable=False),
        sa.Column("tags", json_type),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_milestones_relationship", "milestones", ["relationship_id"])
    op.create_index("ix_milestones_status", "milestones", ["status"])
    op.create_index("ix_milestones_category", "milestones", ["category"])
    op.create_index("ix_milestones_target_date", "milestones", ["target_date"])

    # =============================================================================
    # Activities
    # =============================================================================
    op.create_table(
        "activities",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("relationship_id", sa.Integer(), sa.ForeignKey("relationships.id"), nullable=False),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("description", sa.String(1000)),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("category", sa.String(32), nullable=False),
        sa.Column("mood", sa.String(16), nullable=False),
        sa.Column("privacy", sa.String(16), nullable=False),
        sa.Column("location", json_type),
        sa.Column("duration", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("participants", json_type),
        sa.Column("media", json_type),
        sa.Column("tags", json_type),
        sa.Column("related_milestone_id", sa.Integer(), sa.ForeignKey("milestones.id")),
        sa.Column("trust_change", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("relationship_strength", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("recurring_pattern", json_type),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
        sa.CheckConstraint("trust_change >= -10 AND trust_change <= 10", name="check_activity_trust_change"),
        sa.CheckConstraint(
            "relationship_strength >= -10 AND relationship_strength <= 10",
            name="check_activity_relationship_strength",
        ),
    )
    op.create_index("ix_activities_relationship", "activities", ["relationship_id"])
    op.create_index("ix_activities_created_by", "activities", ["created_by"])
    op.create_index("ix_activities_type", "activities", ["type"])
    op.create_index("ix_activities_created_at", "activities", ["created_at"])

    op.create_table(
        "activity_reactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("activity_id", sa.Integer(), sa.ForeignKey("activities.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("activity_id", "user_id", name="uq_activity_reactions_activity_user"),
    )

    op.create_table(
        "activity_comments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("activity_id", sa.Integer(), sa.ForeignKey("activities.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("text", sa.String(500), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_activity_comments_activity", "activity_comments", ["activity_id"])

    # =============================================================================
    # Certificates
    # =============================================================================
    op.create_table(
        "certificates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("related_to", sa.String(16), nullable=False),
        sa.Column("related_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("description", sa.String(500)),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("level", sa.String(16), nullable=False),
        sa.Column("criteria", json_type),
        sa.Column("design", json_type),
        sa.Column("issued_by", sa.String(100)),
        sa.Column("certificate_number", sa.String(40), nullable=False),
        sa.Column("valid_until", sa.DateTime(timezone=True)),
        sa.Column("is_revoked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("revoked_at", sa.DateTime(timezone=True)),
        sa.Column("revoked_reason", sa.Text()),
        sa.Column("custom_data", json_type),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("shared_on", json_type),
        sa.Column("view_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("download_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("share_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("certificate_number", name="uq_certificates_number"),
    )
    op.create_index("ix_certificates_related", "certificates", ["related_to", "related_id"])
    op.create_index("ix_certificates_type", "certificates", ["type"])
    op.create_index("ix_certificates_level", "certificates", ["level"])

    op.create_table(
        "certificate_recipients",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("certificate_id", sa.Integer(), sa.ForeignKey("certificates.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("awarded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("personal_message", sa.String(500)),
        sa.UniqueConstraint("certificate_id", "user_id", name="uq_certificate_recipients_cert_user"),
    )
    op.create_index("ix_certificate_recipients_user", "certificate_recipients", ["user_id"])

    # =============================================================================
    # Notifications
    # =============================================================================
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("recipient_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("sender_id", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("type", sa.String(40), nullable=False),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("message", sa.String(500), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("priority", sa.String(16), nullable=False),
        sa.Column("category", sa.String(16), nullable=False),
        sa.Column("metadata", json_type),
        sa.Column("action_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("actions", json_type),
        sa.Column("read_at", sa.DateTime(timezone=True)),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_notifications_recipient_status", "notifications", ["recipient_id", "status"])
    op.create_index("ix_notifications_recipient_created", "notifications", ["recipient_id", "created_at"])
    op.create_index("ix_notifications_type", "notifications", ["type"])

    # =============================================================================
    # Audit Events
    # =============================================================================
    op.create_table(
        "audit_events",
        sa.Column("event_id", sa.String(36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("event_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("actor_type", sa.String(50), nullable=False),
        sa.Column("actor_id", sa.String(255)),
        sa.Column("relationship_id", sa.Integer()),
        sa.Column("target_type", sa.String(50), nullable=False),
        sa.Column("target_ids", json_type, nullable=False),
        sa.Column("reason", sa.Text()),
        sa.Column("request_id", sa.String(255)),
        sa.Column("metadata", json_type),
    )
    op.create_index("ix_audit_events_created_at", "audit_events", ["created_at"])
    op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"])
    op.create_index("ix_audit_events_relationship", "audit_events", ["relationship_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_events_relationship", table_name="audit_events")
    op.drop_index("ix_audit_events_event_type", table_name="audit_events")
    op.drop_index("ix_audit_events_created_at", table_name="audit_events")
    op.drop_table("audit_events")

    op.drop_index("ix_notifications_type", table_name="notifications")
    op.drop_index("ix_notifications_recipient_created", table_name="notifications")
    op.drop_index("ix_notifications_recipient_status", table_name="notifications")
    op.drop_table("notifications")

    op.drop_index("ix_certificate_recipients_user", table_name="certificate_recipients")
    op.drop_table("certificate_recipients")
    op.drop_index("ix_certificates_level", table_name="certificates")
    op.drop_index("ix_certificates_type", table_name="certificates")
    op.drop_index("ix_certificates_related", table_name="certificates")
    op.drop_table("certificates")

    op.drop_index("ix_activity_comments_activity", table_name="activity_comments")
    op.drop_table("activity_comments")
    op.drop_table("activity_reactions")
    op.drop_index("ix_activities_created_at", table_name="activities")
    op.drop_index("ix_activities_type", table_name="activities")
    op.drop_index("ix_activities_created_by", table_name="activities")
    op.drop_index("ix_activities_relationship", table_name="activities")
    op.drop_table("activities")

    op.drop_index("ix_milestones_target_date", table_name="milestones")
    op.drop_index("ix_milestones_category", table_name="milestones")
    op.drop_index("ix_milestones_status", table_name="milestones")
    op.drop_index("ix_milestones_relationship", table_name="milestones")
    op.drop_table("milestones")

    op.drop_index("ix_term_violations_term", table_name="term_violations")
    op.drop_table("term_violations")
    op.drop_table("term_agreements")
    op.drop_index("ix_terms_category", table_name="terms")
    op.drop_index("ix_terms_status", table_name="terms")
    op.drop_index("ix_terms_relationship", table_name="terms")
    op.drop_table("terms")

    op.drop_index("ix_relationships_partner", table_name="relationships")
    op.drop_index("ix_relationships_initiator", table_name="relationships")
    op.drop_index("ix_relationships_type", table_name="relationships")
    op.drop_index("ix_relationships_status", table_name="relationships")
    op.drop_table("relationships")

    op.drop_table("users")
