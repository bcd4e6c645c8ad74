"""initial studio marketplace schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-17 09:12:40.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    """Create every table the app needs. Safe to re-run against a partially created database."""
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = set(inspector.get_table_names())

    # ---------- Accounts and RBAC ----------
    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(320), nullable=False, unique=True),
            sa.Column("username", sa.String(128), nullable=False, unique=True),
            sa.Column("display_name", sa.String(128), nullable=False),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("avatar_url", sa.String(1024), nullable=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="PENDING"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("membership_tier", sa.String(32), nullable=False, server_default="BASIC"),
            sa.Column("email_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("verification_token", sa.String(128), nullable=True, unique=True),
            sa.Column("verification_token_expiry", sa.DateTime(), nullable=True),
            sa.Column("reservation_expires_at", sa.DateTime(), nullable=True),
            sa.Column("payment_attempted_at", sa.DateTime(), nullable=True),
            sa.Column("payment_retry_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("day2_reminder_sent_at", sa.DateTime(), nullable=True),
            sa.Column("day5_reminder_sent_at", sa.DateTime(), nullable=True),
            sa.Column("payment_failed_email_sent_at", sa.DateTime(), nullable=True),
            sa.Column("last_login_at", sa.DateTime(), nullable=True),
            *_timestamps(),
        )
        op.create_index("idx_users_status", "users", ["status"])
        op.create_index("idx_users_reservation_expires_at", "users", ["reservation_expires_at"])

    if "roles" not in existing_tables:
        op.create_table(
            "roles",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(64), nullable=False, unique=True),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "permissions" not in existing_tables:
        op.create_table(
            "permissions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(128), nullable=False, unique=True),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "user_roles" not in existing_tables:
        op.create_table(
            "user_roles",
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
        )

    if "role_permissions" not in existing_tables:
        op.create_table(
            "role_permissions",
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
        )

    if "user_metadata" not in existing_tables:
        op.create_table(
            "user_metadata",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("key", sa.String(128), nullable=False),
            sa.Column("value", sa.Text(), nullable=True),
            *_timestamps(),
            sa.UniqueConstraint("user_id", "key", name="uq_user_metadata_user_key"),
        )

    if "site_settings" not in existing_tables:
        op.create_table(
            "site_settings",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(128), nullable=False, unique=True),
            sa.Column("content", sa.Text(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        )

    if "audit_events" not in existing_tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("client_ip", sa.String(64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("actor_user_email", sa.String(320), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("entity_type", sa.String(128), nullable=True),
            sa.Column("entity_id", sa.String(128), nullable=True),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
        )
        op.create_index("idx_audit_events_created_at", "audit_events", ["created_at"])
        op.create_index("idx_audit_events_action", "audit_events", ["action"])

    # ---------- Studios ----------
    if "studio_profiles" not in existing_tables:
        social = [
            sa.Column(f"{name}_url", sa.String(1024), nullable=True)
            for name in (
                "facebook", "x", "twitter", "linkedin", "instagram", "youtube",
                "tiktok", "threads", "soundcloud", "vimeo", "bluesky",
            )
        ]
        connections = [sa.Column(f"connection{i}", sa.String(1), nullable=True) for i in range(1, 13)]
        op.create_table(
            "studio_profiles",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("short_about", sa.Text(), nullable=True),
            sa.Column("about", sa.Text(), nullable=True),
            sa.Column("last_name", sa.String(128), nullable=True),
            sa.Column("address", sa.Text(), nullable=True),
            sa.Column("full_address", sa.Text(), nullable=True),
            sa.Column("city", sa.String(128), nullable=True),
            sa.Column("location", sa.String(128), nullable=True),
            sa.Column("latitude", sa.Float(), nullable=True),
            sa.Column("longitude", sa.Float(), nullable=True),
            sa.Column("phone", sa.String(64), nullable=True),
            sa.Column("website_url", sa.String(1024), nullable=True),
            *social,
            sa.Column("rate_tier_1", sa.String(64), nullable=True),
            sa.Column("rate_tier_2", sa.String(64), nullable=True),
            sa.Column("rate_tier_3", sa.String(64), nullable=True),
            sa.Column("show_rates", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("show_email", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("show_phone", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("show_address", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("show_directions", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("show_exact_location", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("use_coordinates_for_map", sa.Boolean(), nullable=False, server_default=sa.false()),
            *connections,
            sa.Column("custom_connection_methods", sa.JSON(), nullable=True),
            sa.Column("equipment_list", sa.Text(), nullable=True),
            sa.Column("services_offered", sa.Text(), nullable=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="PENDING"),
            sa.Column("is_profile_visible", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_featured", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("featured_until", sa.DateTime(), nullable=True),
            *_timestamps(),
        )
        op.create_index("idx_studio_profiles_status", "studio_profiles", ["status"])
        op.create_index("idx_studio_profiles_city", "studio_profiles", ["city"])
        op.create_index("idx_studio_profiles_featured", "studio_profiles", ["is_featured"])

    if "studio_studio_types" not in existing_tables:
        op.create_table(
            "studio_studio_types",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("studio_id", sa.Integer(), sa.ForeignKey("studio_profiles.id", ondelete="CASCADE"), nullable=False),
            sa.Column("studio_type", sa.String(32), nullable=False),
            sa.UniqueConstraint("studio_id", "studio_type", name="uq_studio_type"),
        )

    if "studio_services" not in existing_tables:
        op.create_table(
            "studio_services",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("studio_id", sa.Integer(), sa.ForeignKey("studio_profiles.id", ondelete="CASCADE"), nullable=False),
            sa.Column("service", sa.String(32), nullable=False),
            sa.UniqueConstraint("studio_id", "service", name="uq_studio_service"),
        )

    if "studio_images" not in existing_tables:
        op.create_table(
            "studio_images",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("studio_id", sa.Integer(), sa.ForeignKey("studio_profiles.id", ondelete="CASCADE"), nullable=False),
            sa.Column("storage_key", sa.String(512), nullable=False),
            sa.Column("image_url", sa.String(1024), nullable=False),
            sa.Column("alt_text", sa.String(255), nullable=True),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("content_type", sa.String(128), nullable=True),
            sa.Column("sha256", sa.String(64), nullable=True),
            sa.Column("size_bytes", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_studio_images_studio_id", "studio_images", ["studio_id"])

    # ---------- Memberships ----------
    if "subscriptions" not in existing_tables:
        op.create_table(
            "subscriptions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("status", sa.String(32), nullable=False, server_default="ACTIVE"),
            sa.Column("payment_method", sa.String(32), nullable=False, server_default="stripe"),
            sa.Column("stripe_subscription_id", sa.String(255), nullable=True, unique=True),
            sa.Column("stripe_customer_id", sa.String(255), nullable=True),
            sa.Column("auto_renew", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("current_period_start", sa.DateTime(), nullable=True),
            sa.Column("current_period_end", sa.DateTime(), nullable=True),
            sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("cancelled_at", sa.DateTime(), nullable=True),
            sa.Column("last_reminder_window", sa.Integer(), nullable=True),
            *_timestamps(),
        )
        op.create_index("idx_subscriptions_user_id", "subscriptions", ["user_id"])
        op.create_index("idx_subscriptions_period_end", "subscriptions", ["current_period_end"])

    if "payments" not in existing_tables:
        op.create_table(
            "payments",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("stripe_checkout_session_id", sa.String(255), nullable=True, unique=True),
            sa.Column("stripe_payment_intent_id", sa.String(255), nullable=True),
            sa.Column("stripe_charge_id", sa.String(255), nullable=True),
            sa.Column("amount", sa.Integer(), nullable=False),
            sa.Column("currency", sa.String(8), nullable=False, server_default="gbp"),
            sa.Column("status", sa.String(32), nullable=False, server_default="PENDING"),
            sa.Column("refunded_amount", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("purpose", sa.String(32), nullable=False, server_default="membership"),
            sa.Column("metadata_json", sa.JSON(), nullable=True),
            *_timestamps(),
        )
        op.create_index("idx_payments_user_id", "payments", ["user_id"])
        op.create_index("idx_payments_status", "payments", ["status"])
        op.create_index("idx_payments_created_at", "payments", ["created_at"])

    if "refunds" not in existing_tables:
        op.create_table(
            "refunds",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payments.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("stripe_refund_id", sa.String(255), nullable=True, unique=True),
            sa.Column("amount", sa.Integer(), nullable=False),
            sa.Column("currency", sa.String(8), nullable=False, server_default="gbp"),
            sa.Column("reason", sa.Text(), nullable=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="SUCCEEDED"),
            sa.Column("processed_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    # ---------- Community ----------
    if "reviews" not in existing_tables:
        op.create_table(
            "reviews",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("studio_id", sa.Integer(), sa.ForeignKey("studio_profiles.id", ondelete="CASCADE"), nullable=False),
            sa.Column("reviewer_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("rating", sa.Integer(), nullable=False),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("status", sa.String(32), nullable=False, server_default="PENDING"),
            sa.Column("moderated_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("moderated_at", sa.DateTime(), nullable=True),
            *_timestamps(),
            sa.UniqueConstraint("studio_id", "reviewer_id", name="uq_reviews_studio_reviewer"),
        )
        op.create_index("idx_reviews_studio_status", "reviews", ["studio_id", "status"])

    if "messages" not in existing_tables:
        op.create_table(
            "messages",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("sender_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("recipient_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("subject", sa.String(200), nullable=False),
            sa.Column("body", sa.Text(), nullable=False),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("read_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_messages_recipient", "messages", ["recipient_id", "created_at"])
        op.create_index("idx_messages_sender", "messages", ["sender_id", "created_at"])

    if "support_tickets" not in existing_tables:
        op.create_table(
            "support_tickets",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("category", sa.String(32), nullable=False, server_default="OTHER"),
            sa.Column("subject", sa.String(200), nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("status", sa.String(32), nullable=False, server_default="OPEN"),
            sa.Column("admin_notes", sa.Text(), nullable=True),
            *_timestamps(),
            sa.Column("resolved_at", sa.DateTime(), nullable=True),
        )
        op.create_index("idx_support_tickets_status", "support_tickets", ["status", "created_at"])

    # ---------- Email ----------
    if "email_templates" not in existing_tables:
        op.create_table(
            "email_templates",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(128), nullable=False, unique=True),
            sa.Column("subject", sa.String(255), nullable=True),
            sa.Column("heading", sa.String(255), nullable=True),
            sa.Column("body_paragraphs", sa.JSON(), nullable=True),
            sa.Column("cta_label", sa.String(128), nullable=True),
            sa.Column("cta_url", sa.String(1024), nullable=True),
            sa.Column("footer_text", sa.Text(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        )

    if "email_preferences" not in existing_tables:
        op.create_table(
            "email_preferences",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
            sa.Column("marketing_opt_in", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("unsubscribe_token", sa.String(64), nullable=False, unique=True),
            sa.Column("unsubscribed_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "email_campaigns" not in existing_tables:
        op.create_table(
            "email_campaigns",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("template_key", sa.String(128), nullable=False),
            sa.Column("segment", sa.String(64), nullable=False, server_default="active_members"),
            sa.Column("variables", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="DRAFT"),
            sa.Column("recipient_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("sent_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("failed_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("queued_at", sa.DateTime(), nullable=True),
            sa.Column("sent_at", sa.DateTime(), nullable=True),
        )

    if "email_deliveries" not in existing_tables:
        op.create_table(
            "email_deliveries",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("campaign_id", sa.Integer(), sa.ForeignKey("email_campaigns.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("to_email", sa.String(320), nullable=False),
            sa.Column("status", sa.String(32), nullable=False, server_default="PENDING"),
            sa.Column("provider_message_id", sa.String(255), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
            sa.Column("sent_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint("campaign_id", "user_id", name="uq_email_delivery_campaign_user"),
        )
        op.create_index("idx_email_deliveries_status", "email_deliveries", ["campaign_id", "status"])

    # ---------- Operations ----------
    if "error_log_groups" not in existing_tables:
        op.create_table(
            "error_log_groups",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("sentry_issue_id", sa.String(64), nullable=False, unique=True),
            sa.Column("title", sa.String(512), nullable=False),
            sa.Column("level", sa.String(32), nullable=False, server_default="error"),
            sa.Column("culprit", sa.String(512), nullable=True),
            sa.Column("permalink", sa.String(1024), nullable=True),
            sa.Column("environment", sa.String(64), nullable=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="UNRESOLVED"),
            sa.Column("event_count", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("first_seen_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("last_seen_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("sample_event", sa.JSON(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
        )
        op.create_index("idx_error_log_groups_status", "error_log_groups", ["status", "last_seen_at"])

    if "rate_limit_events" not in existing_tables:
        op.create_table(
            "rate_limit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("fingerprint", sa.String(255), nullable=False),
            sa.Column("endpoint", sa.String(64), nullable=False),
            sa.Column("event_count", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("window_start", sa.DateTime(), nullable=False),
            sa.Column("last_event_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("fingerprint", "endpoint", name="uq_rate_limit_fingerprint_endpoint"),
        )
        op.create_index("idx_rate_limit_events_last_event_at", "rate_limit_events", ["last_event_at"])


def downgrade() -> None:
    for table in (
        "rate_limit_events",
        "error_log_groups",
        "email_deliveries",
        "email_campaigns",
        "email_preferences",
        "email_templates",
        "support_tickets",
        "messages",
        "reviews",
        "refunds",
        "payments",
        "subscriptions",
        "studio_images",
        "studio_services",
        "studio_studio_types",
        "studio_profiles",
        "audit_events",
        "site_settings",
        "user_metadata",
        "role_permissions",
        "user_roles",
        "permissions",
        "roles",
        "users",
    ):
        op.drop_table(table)
