"""
DuckDB schema for rotecore, kept apart from connection and query logic.

Item rows are updated in place after every review, so the items table
carries no secondary indexes; DuckDB rejects upserts that assign to indexed
columns. The reviews table is append-only and indexed.
"""

DB_SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS items (
        id UUID PRIMARY KEY,
        deck_name VARCHAR NOT NULL,
        front VARCHAR NOT NULL,
        back VARCHAR NOT NULL,
        tags VARCHAR[],
        learning_state VARCHAR NOT NULL,
        step_index INTEGER NOT NULL DEFAULT 0,
        ease_factor DOUBLE NOT NULL,
        interval_days DOUBLE NOT NULL DEFAULT 0,
        streak INTEGER NOT NULL DEFAULT 0,
        due_at TIMESTAMP WITH TIME ZONE,
        last_reviewed_at TIMESTAMP WITH TIME ZONE,
        review_count INTEGER NOT NULL DEFAULT 0,
        added_at TIMESTAMP WITH TIME ZONE NOT NULL,
        modified_at TIMESTAMP WITH TIME ZONE NOT NULL
    );

    CREATE SEQUENCE IF NOT EXISTS review_seq;

    CREATE TABLE IF NOT EXISTS reviews (
        review_id INTEGER PRIMARY KEY DEFAULT nextval('review_seq'),
        item_id UUID NOT NULL,
        ts TIMESTAMP WITH TIME ZONE NOT NULL,
        grade INTEGER NOT NULL CHECK (grade >= 1 AND grade <= 4),
        ease_factor_after DOUBLE NOT NULL,
        interval_days_after DOUBLE NOT NULL,
        review_type VARCHAR NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_reviews_item_id ON reviews (item_id);
    CREATE INDEX IF NOT EXISTS idx_reviews_ts ON reviews (ts);
"""
