"""Notification engine schema - notifications, templates, campaigns, devices.

Revision ID: 001
Revises: None
Create Date: 2026-10-18

This migration creates:
- notifications: one addressed delivery per channel, with dispatch claim columns
- notification_templates: per-channel content templates
- notification_campaigns: campaign definition, budget and running counters
- campaign_recipients: per-target ledger used to resume campaigns
- device_tokens: push device registrations

Enum labels are the member names, which is what SQLModel persists.
"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create enums in PostgreSQL
    op.execute("CREATE TYPE notificationtype AS ENUM ('EMAIL', 'SMS', 'PUSH', 'IN_APP')")
    op.execute(
        "CREATE TYPE notificationstatus AS ENUM "
        "('PENDING', 'SENT', 'DELIVERED', 'FAILED', 'BOUNCED', 'CANCELLED')"
    )
    op.execute("CREATE TYPE notificationpriority AS ENUM ('LOW', 'NORMAL', 'HIGH', 'URGENT')")
    op.execute("""
        CREATE TYPE templatetype AS ENUM (
            'ORDER_CONFIRMATION', 'ORDER_STATUS_UPDATE', 'DELIVERY_NOTIFICATION',
            'CART_ABANDONMENT', 'MARKETING_CAMPAIGN', 'PASSWORD_RESET', 'WELCOME',
            'RECEIPT', 'FEEDBACK_REQUEST', 'PROMOTION', 'LOW_STOCK_ALERT',
            'SYSTEM_MAINTENANCE', 'BIRTHDAY_WISHES', 'LOYALTY_POINTS', 'NEWSLETTER'
        )
    """)
    op.execute("""
        CREATE TYPE campaigntype AS ENUM (
            'EMAIL_MARKETING', 'SMS_MARKETING', 'PUSH_MARKETING', 'CART_ABANDONMENT',
            'ORDER_FOLLOW_UP', 'WELCOME_SERIES', 'RE_ENGAGEMENT', 'BIRTHDAY_CAMPAIGN',
            'LOYALTY_PROGRAM', 'PRODUCT_LAUNCH', 'SEASONAL_PROMOTION', 'FEEDBACK_REQUEST',
            'NEWSLETTER', 'SYSTEM_MAINTENANCE'
        )
    """)
    op.execute(
        "CREATE TYPE campaignstatus AS ENUM "
        "('DRAFT', 'SCHEDULED', 'RUNNING', 'PAUSED', 'COMPLETED', 'CANCELLED', 'FAILED')"
    )
    op.execute("CREATE TYPE recipientoutcome AS ENUM ('PROCESSING', 'SENT', 'FAILED')")

    # Create notifications table
    op.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id UUID PRIMARY KEY,
            user_id UUID,
            type notificationtype NOT NULL,
            status notificationstatus NOT NULL DEFAULT 'PENDING',
            priority notificationpriority NOT NULL DEFAULT 'NORMAL',
            recipient_email VARCHAR(255),
            recipient_phone VARCHAR(20),
            recipient_name VARCHAR(100),
            push_token VARCHAR(255),
            push_endpoint VARCHAR(500),
            platform VARCHAR(20),
            template_id UUID,
            campaign_id UUID,
            title VARCHAR(500) NOT NULL,
            content TEXT NOT NULL,
            html_content TEXT,
            subject VARCHAR(255),
            email_message_id VARCHAR(255),
            sms_message_id VARCHAR(255),
            push_message_id VARCHAR(255),
            bounce_count INTEGER NOT NULL DEFAULT 0,
            retry_count INTEGER NOT NULL DEFAULT 0,
            max_retry_count INTEGER NOT NULL DEFAULT 3,
            scheduled_at TIMESTAMP,
            sent_at TIMESTAMP,
            delivered_at TIMESTAMP,
            failed_at TIMESTAMP,
            opened_at TIMESTAMP,
            clicked_at TIMESTAMP,
            error_message TEXT,
            error_code VARCHAR(50),
            last_error_at TIMESTAMP,
            details JSON,
            tracking_data JSON,
            related_entity_type VARCHAR(50),
            related_entity_id UUID,
            source VARCHAR(50),
            triggered_by VARCHAR(100),
            claim_token UUID,
            claimed_at TIMESTAMP,
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            expires_at TIMESTAMP
        );
        CREATE INDEX IF NOT EXISTS ix_notifications_user_id ON notifications(user_id);
        CREATE INDEX IF NOT EXISTS ix_notifications_type ON notifications(type);
        CREATE INDEX IF NOT EXISTS ix_notifications_status ON notifications(status);
        CREATE INDEX IF NOT EXISTS ix_notifications_template_id ON notifications(template_id);
        CREATE INDEX IF NOT EXISTS ix_notifications_campaign_id ON notifications(campaign_id);
        CREATE INDEX IF NOT EXISTS ix_notifications_scheduled_at ON notifications(scheduled_at);
        CREATE INDEX IF NOT EXISTS ix_notifications_last_error_at ON notifications(last_error_at);
        CREATE INDEX IF NOT EXISTS ix_notifications_created_at ON notifications(created_at);
    """)

    # Create notification_templates table
    op.execute("""
        CREATE TABLE IF NOT EXISTS notification_templates (
            id UUID PRIMARY KEY,
            name VARCHAR(100) NOT NULL UNIQUE,
            description VARCHAR(500),
            type templatetype NOT NULL,
            channel notificationtype,
            subject_template VARCHAR(500),
            title_template VARCHAR(500),
            content_template TEXT,
            html_template TEXT,
            sms_template VARCHAR(1600),
            push_template VARCHAR(500),
            variables JSON,
            sample_data JSON,
            tags JSON,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            is_default BOOLEAN NOT NULL DEFAULT FALSE,
            version INTEGER NOT NULL DEFAULT 1,
            language VARCHAR(10) NOT NULL DEFAULT 'en',
            category VARCHAR(50),
            usage_count INTEGER NOT NULL DEFAULT 0,
            last_used_at TIMESTAMP,
            created_by VARCHAR(100),
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
        );
        CREATE INDEX IF NOT EXISTS ix_notification_templates_name ON notification_templates(name);
        CREATE INDEX IF NOT EXISTS ix_notification_templates_type ON notification_templates(type);
    """)

    # Create notification_campaigns table
    op.execute("""
        CREATE TABLE IF NOT EXISTS notification_campaigns (
            id UUID PRIMARY KEY,
            name VARCHAR(200) NOT NULL UNIQUE,
            description VARCHAR(1000),
            type campaigntype NOT NULL,
            status campaignstatus NOT NULL DEFAULT 'DRAFT',
            priority notificationpriority NOT NULL DEFAULT 'NORMAL',
            template_id UUID,
            target_audience JSON,
            target_user_ids JSON,
            target_segments JSON,
            max_recipients INTEGER,
            scheduled_start_at TIMESTAMP,
            scheduled_end_at TIMESTAMP,
            started_at TIMESTAMP,
            completed_at TIMESTAMP,
            cancelled_at TIMESTAMP,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            is_recurring BOOLEAN NOT NULL DEFAULT FALSE,
            recurrence_pattern VARCHAR(100),
            budget_limit NUMERIC(12, 2),
            cost_per_notification NUMERIC(12, 4),
            total_cost NUMERIC(12, 2) NOT NULL DEFAULT 0,
            total_recipients INTEGER NOT NULL DEFAULT 0,
            sent_count INTEGER NOT NULL DEFAULT 0,
            delivered_count INTEGER NOT NULL DEFAULT 0,
            failed_count INTEGER NOT NULL DEFAULT 0,
            opened_count INTEGER NOT NULL DEFAULT 0,
            clicked_count INTEGER NOT NULL DEFAULT 0,
            bounced_count INTEGER NOT NULL DEFAULT 0,
            unsubscribed_count INTEGER NOT NULL DEFAULT 0,
            is_ab_test BOOLEAN NOT NULL DEFAULT FALSE,
            ab_test_percentage INTEGER,
            ab_test_variant VARCHAR(10),
            content_variations JSON,
            tags JSON,
            created_by VARCHAR(100),
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
        );
        CREATE INDEX IF NOT EXISTS ix_notification_campaigns_name ON notification_campaigns(name);
        CREATE INDEX IF NOT EXISTS ix_notification_campaigns_status ON notification_campaigns(status);
        CREATE INDEX IF NOT EXISTS ix_notification_campaigns_scheduled_start_at
            ON notification_campaigns(scheduled_start_at);
    """)

    # Create campaign_recipients table (campaign ledger)
    op.execute("""
        CREATE TABLE IF NOT EXISTS campaign_recipients (
            id UUID PRIMARY KEY,
            campaign_id UUID NOT NULL REFERENCES notification_campaigns(id),
            user_id UUID NOT NULL,
            outcome recipientoutcome NOT NULL,
            notification_id UUID,
            error_message VARCHAR(1000),
            processed_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            CONSTRAINT uq_campaign_recipient UNIQUE (campaign_id, user_id)
        );
        CREATE INDEX IF NOT EXISTS ix_campaign_recipients_campaign_id ON campaign_recipients(campaign_id);
    """)

    # Create device_tokens table
    op.execute("""
        CREATE TABLE IF NOT EXISTS device_tokens (
            id UUID PRIMARY KEY,
            user_id UUID,
            device_token VARCHAR(500) NOT NULL UNIQUE,
            endpoint_arn VARCHAR(500),
            platform VARCHAR(20) NOT NULL,
            device_id VARCHAR(255),
            app_version VARCHAR(20),
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            is_valid BOOLEAN NOT NULL DEFAULT TRUE,
            invalid_reason TEXT,
            error_count INTEGER NOT NULL DEFAULT 0,
            last_error_at TIMESTAMP,
            last_used_at TIMESTAMP,
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
        );
        CREATE INDEX IF NOT EXISTS ix_device_tokens_user_id ON device_tokens(user_id);
        CREATE INDEX IF NOT EXISTS ix_device_tokens_device_token ON device_tokens(device_token);
    """)


def downgrade() -> None:
    # Drop tables in reverse order
    op.execute("DROP TABLE IF EXISTS device_tokens CASCADE")
    op.execute("DROP TABLE IF EXISTS campaign_recipients CASCADE")
    op.execute("DROP TABLE IF EXISTS notification_campaigns CASCADE")
    op.execute("DROP TABLE IF EXISTS notification_templates CASCADE")
    op.execute("DROP TABLE IF EXISTS notifications CASCADE")

    # Drop enums
    op.execute("DROP TYPE IF EXISTS recipientoutcome")
    op.execute("DROP TYPE IF EXISTS campaignstatus")
    op.execute("DROP TYPE IF EXISTS campaigntype")
    op.execute("DROP TYPE IF EXISTS templatetype")
    op.execute("DROP TYPE IF EXISTS notificationpriority")
    op.execute("DROP TYPE IF EXISTS notificationstatus")
    op.execute("DROP TYPE IF EXISTS notificationtype")
