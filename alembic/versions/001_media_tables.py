"""Create media_records and media_ingestion_jobs.

Revision ID: 001
Create Date: 2026-10-18

media_records holds one row per indexed media item (upserted by id) with a
generated tsvector over label text for search. media_ingestion_jobs is the
optional durable journal of pipeline job states.
"""

from alembic import op

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # -- media_records --------------------------------------------------------
    op.execute(
        """
        CREATE TABLE media_records (
            id TEXT PRIMARY KEY,
            labels JSONB NOT NULL DEFAULT '[]',
            label_text TEXT NOT NULL DEFAULT '',
            dominant_rgb INT[]
                CHECK (dominant_rgb IS NULL OR array_length(dominant_rgb, 1) = 3),
            dominant_weight DOUBLE PRECISION
                CHECK (dominant_weight IS NULL OR dominant_weight BETWEEN 0 AND 1),
            source_path TEXT NOT NULL,
            submitted_at TIMESTAMPTZ NOT NULL,

            fts TSVECTOR GENERATED ALWAYS AS (to_tsvector('english', label_text)) STORED,

            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        )
    """
    )
    op.execute("CREATE INDEX ix_media_records_fts ON media_records USING GIN (fts)")

    # -- media_ingestion_jobs -------------------------------------------------
    op.execute(
        """
        CREATE TABLE media_ingestion_jobs (
            item_id TEXT PRIMARY KEY,
            status TEXT NOT NULL
                CHECK (status IN ('pending', 'annotating', 'normalizing',
                                  'indexing', 'committed', 'failed')),
            source_path TEXT,
            attempts INT NOT NULL DEFAULT 0,
            reason TEXT,
            error_kind TEXT,
            metadata JSONB DEFAULT '{}',
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """
    )
    op.execute(
        "CREATE INDEX ix_media_ingestion_jobs_status ON media_ingestion_jobs (status, updated_at)"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS media_ingestion_jobs")
    op.execute("DROP TABLE IF EXISTS media_records")
