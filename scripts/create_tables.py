#!/usr/bin/env python3
"""Create database tables for the SocialOps reconciliation core."""

import os
import psycopg2
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")

SQL = """
-- 1. workspaces
CREATE TABLE IF NOT EXISTS workspaces (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name VARCHAR(255) NOT NULL,
    owner_id UUID NOT NULL,
    tier VARCHAR(50),
    subscription_status VARCHAR(20) NOT NULL DEFAULT 'unknown',
    add_ons INTEGER NOT NULL DEFAULT 0,
    stripe_customer_id VARCHAR(255),
    stripe_subscription_id VARCHAR(255),
    ayr_profile_key VARCHAR(255),
    ayr_ref_id VARCHAR(255),
    provisioning_state VARCHAR(30) NOT NULL DEFAULT 'none',
    provisioning_error TEXT,
    provisioning_started_at TIMESTAMPTZ,
    provisioned_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT workspaces_subscription_status_check
        CHECK (subscription_status IN ('active', 'past_due', 'cancelled', 'unknown')),
    CONSTRAINT workspaces_provisioning_state_check
        CHECK (provisioning_state IN ('none', 'in_progress', 'provisioned', 'provisioning_failed'))
);
CREATE INDEX IF NOT EXISTS idx_workspaces_owner_id ON workspaces(owner_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_workspaces_ayr_profile_key
    ON workspaces(ayr_profile_key) WHERE ayr_profile_key IS NOT NULL;
CREATE INDEX IF NOT EXISTS idx_workspaces_stripe_subscription_id ON workspaces(stripe_subscription_id);
CREATE INDEX IF NOT EXISTS idx_workspaces_stripe_customer_id ON workspaces(stripe_customer_id);

-- 2. workspace_members
CREATE TABLE IF NOT EXISTS workspace_members (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    workspace_id UUID NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
    user_id UUID NOT NULL,
    role VARCHAR(20) NOT NULL DEFAULT 'viewer',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (workspace_id, user_id)
);

-- 3. posts
CREATE TABLE IF NOT EXISTS posts (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    workspace_id UUID NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
    caption TEXT,
    platforms TEXT[] NOT NULL DEFAULT '{}',
    media_urls TEXT[],
    scheduled_at TIMESTAMPTZ,
    status VARCHAR(20) NOT NULL DEFAULT 'pending',
    approval_status VARCHAR(30) NOT NULL DEFAULT 'pending',
    ayr_post_id VARCHAR(255),
    posted_at TIMESTAMPTZ,
    last_error TEXT,
    analytics JSONB,
    analytics_updated_at TIMESTAMPTZ,
    supersedes_post_id UUID REFERENCES posts(id) ON DELETE SET NULL,
    superseded_by UUID REFERENCES posts(id) ON DELETE SET NULL,
    retired_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT posts_status_check CHECK (status IN ('pending', 'scheduled', 'posted', 'failed')),
    UNIQUE (workspace_id, ayr_post_id)
);
CREATE INDEX IF NOT EXISTS idx_posts_workspace_scheduled ON posts(workspace_id, scheduled_at);

-- ayr_post_id is write-once
CREATE OR REPLACE FUNCTION posts_ayr_post_id_immutable() RETURNS trigger AS $$
BEGIN
    IF OLD.ayr_post_id IS NOT NULL AND NEW.ayr_post_id IS DISTINCT FROM OLD.ayr_post_id THEN
        RAISE EXCEPTION 'posts.ayr_post_id is immutable once set';
    END IF;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;
DROP TRIGGER IF EXISTS trg_posts_ayr_post_id_immutable ON posts;
CREATE TRIGGER trg_posts_ayr_post_id_immutable
    BEFORE UPDATE ON posts
    FOR EACH ROW EXECUTE FUNCTION posts_ayr_post_id_immutable();

-- 4. processed_events (idempotency ledger)
CREATE TABLE IF NOT EXISTS processed_events (
    event_id VARCHAR(255) PRIMARY KEY,
    event_type VARCHAR(100) NOT NULL,
    provider VARCHAR(30) NOT NULL,
    status VARCHAR(20) NOT NULL DEFAULT 'processing',
    last_error TEXT,
    processed_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT processed_events_status_check CHECK (status IN ('processing', 'processed', 'failed'))
);

-- 5. engagement_items (comments and direct messages)
CREATE TABLE IF NOT EXISTS engagement_items (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    workspace_id UUID NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
    kind VARCHAR(20) NOT NULL,
    platform VARCHAR(50) NOT NULL,
    external_id VARCHAR(255) NOT NULL,
    post_id UUID REFERENCES posts(id) ON DELETE SET NULL,
    parent_ref VARCHAR(255),
    author_name VARCHAR(255),
    author_profile_url TEXT,
    body TEXT,
    external_created_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (platform, external_id)
);
CREATE INDEX IF NOT EXISTS idx_engagement_items_workspace ON engagement_items(workspace_id, kind);

-- 6. inbox_conversations
CREATE TABLE IF NOT EXISTS inbox_conversations (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    workspace_id UUID NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
    platform VARCHAR(50) NOT NULL,
    conversation_id VARCHAR(255) NOT NULL,
    participant_name VARCHAR(255),
    last_message_preview TEXT,
    last_message_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (workspace_id, platform, conversation_id)
);

-- 7. inbox_webhook_events (raw routed distribution events)
CREATE TABLE IF NOT EXISTS inbox_webhook_events (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    workspace_id UUID NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
    event_type VARCHAR(100) NOT NULL,
    payload JSONB NOT NULL,
    processed BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- 8. quarantined_events (unroutable distribution events)
CREATE TABLE IF NOT EXISTS quarantined_events (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    provider VARCHAR(30) NOT NULL,
    event_type VARCHAR(100),
    reason VARCHAR(50) NOT NULL,
    payload JSONB NOT NULL,
    request_id VARCHAR(100),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- 9. super_admins
CREATE TABLE IF NOT EXISTS super_admins (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    email VARCHAR(255) UNIQUE NOT NULL,
    name VARCHAR(255),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- 10. observability_metric_snapshots
CREATE TABLE IF NOT EXISTS observability_metric_snapshots (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    source VARCHAR(100) NOT NULL,
    request_id VARCHAR(100),
    counters JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


def main():
    if not DATABASE_URL:
        print("Error: DATABASE_URL must be set")
        raise SystemExit(1)

    print("Connecting to database...")
    conn = psycopg2.connect(DATABASE_URL)
    conn.autocommit = True
    cur = conn.cursor()

    print("Creating tables...")
    cur.execute(SQL)

    cur.execute("SELECT table_name FROM information_schema.tables WHERE table_schema = 'public' ORDER BY table_name;")
    tables = cur.fetchall()
    print(f"\nTables created: {[t[0] for t in tables]}")

    cur.close()
    conn.close()
    print("\nDone!")

if __name__ == "__main__":
    main()
