#!/usr/bin/env python3
"""Create the fulfillment engine tables."""

import os
import psycopg2
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")

SQL = """
-- 1. payment_customers (written by the processor's customer events)
CREATE TABLE IF NOT EXISTS payment_customers (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id UUID,
    customer_id VARCHAR(64) NOT NULL,
    email VARCHAR(255),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_payment_customers_user_id ON payment_customers(user_id);
CREATE INDEX IF NOT EXISTS idx_payment_customers_email ON payment_customers(lower(email));

-- 2. payment_transactions
CREATE TABLE IF NOT EXISTS payment_transactions (
    id VARCHAR(64) PRIMARY KEY,
    customer_id VARCHAR(64),
    status VARCHAR(40) NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_payment_transactions_customer ON payment_transactions(customer_id, updated_at DESC);

-- 3. payment_webhook_events (append-only mirror)
CREATE TABLE IF NOT EXISTS payment_webhook_events (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    event_id VARCHAR(64) UNIQUE,
    event_type VARCHAR(100) NOT NULL,
    payload JSONB,
    processed_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_payment_webhook_events_processed_at ON payment_webhook_events(processed_at DESC);

-- 4. payment_fulfillments (one row per fulfilled transaction)
CREATE TABLE IF NOT EXISTS payment_fulfillments (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    transaction_id VARCHAR(64) NOT NULL UNIQUE,
    user_id UUID NOT NULL,
    lead_count INTEGER NOT NULL,
    package_id VARCHAR(40),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- 5. marketplace_leads (inventory pool)
CREATE TABLE IF NOT EXISTS marketplace_leads (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    status VARCHAR(20) NOT NULL DEFAULT 'available'
        CHECK (status IN ('available', 'reserved', 'assigned')),
    assigned_to UUID,
    assigned_at TIMESTAMPTZ,
    allocation_ref VARCHAR(100),
    reserved_at TIMESTAMPTZ,
    business_name VARCHAR(255),
    contact_name VARCHAR(255),
    email VARCHAR(255),
    phone VARCHAR(50),
    address TEXT,
    website VARCHAR(255),
    business_type VARCHAR(100),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_marketplace_leads_available ON marketplace_leads(created_at, id) WHERE status = 'available';
CREATE INDEX IF NOT EXISTS idx_marketplace_leads_allocation_ref ON marketplace_leads(allocation_ref);

-- 6. leads (user-owned copies)
CREATE TABLE IF NOT EXISTS leads (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id UUID NOT NULL,
    source_lead_id UUID REFERENCES marketplace_leads(id),
    business_name VARCHAR(255),
    contact_name VARCHAR(255),
    email VARCHAR(255),
    phone VARCHAR(50),
    address TEXT,
    website VARCHAR(255),
    business_type VARCHAR(100),
    lead_status VARCHAR(20) NOT NULL DEFAULT 'new',
    status VARCHAR(20) NOT NULL DEFAULT 'New',
    last_contact VARCHAR(40) DEFAULT 'Never',
    scheduled_date VARCHAR(40) DEFAULT '-',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE(user_id, source_lead_id)
);
CREATE INDEX IF NOT EXISTS idx_leads_user_id ON leads(user_id);

-- 7. dispensed_leads
CREATE TABLE IF NOT EXISTS dispensed_leads (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id UUID NOT NULL,
    lead_id UUID NOT NULL REFERENCES leads(id) ON DELETE CASCADE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- 8. signup_grants
CREATE TABLE IF NOT EXISTS signup_grants (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id UUID NOT NULL UNIQUE,
    ip_hash VARCHAR(64) NOT NULL,
    lead_count INTEGER NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_signup_grants_ip_hash ON signup_grants(ip_hash, created_at DESC);

-- 9. user_profiles
CREATE TABLE IF NOT EXISTS user_profiles (
    user_id UUID PRIMARY KEY,
    starter_grant_claimed BOOLEAN NOT NULL DEFAULT FALSE,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- 10. allocation_claims
CREATE TABLE IF NOT EXISTS allocation_claims (
    ref VARCHAR(100) PRIMARY KEY,
    holder VARCHAR(64) NOT NULL,
    user_id UUID NOT NULL,
    expires_at TIMESTAMPTZ NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- 11. observability_metric_snapshots
CREATE TABLE IF NOT EXISTS observability_metric_snapshots (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    source VARCHAR(100) NOT NULL,
    request_id VARCHAR(100),
    counters JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


def main():
    print("Connecting to database...")
    conn = psycopg2.connect(DATABASE_URL)
    conn.autocommit = True
    cur = conn.cursor()

    print("Creating tables...")
    cur.execute(SQL)

    cur.execute("SELECT table_name FROM information_schema.tables WHERE table_schema = 'public' ORDER BY table_name;")
    tables = cur.fetchall()
    print(f"\nTables present: {[t[0] for t in tables]}")

    cur.execute("SELECT status, count(*) FROM marketplace_leads GROUP BY status;")
    print(f"Inventory by status: {cur.fetchall()}")

    cur.close()
    conn.close()
    print("\nDone!")

if __name__ == "__main__":
    main()
