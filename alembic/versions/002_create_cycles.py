"""002: create cycles table

Revision ID: 002
Revises: 001
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE cycles (
            id                          VARCHAR(64)     PRIMARY KEY,
            name                        VARCHAR(200),
            status                      VARCHAR(20)     NOT NULL DEFAULT 'PLANNED',
            started_at                  TIMESTAMPTZ     NOT NULL,
            initial_injection_cents     BIGINT          NOT NULL DEFAULT 0,
            initial_capital_cents       BIGINT,
            closed_at                   TIMESTAMPTZ,
            created_at                  TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at                  TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_cycles_status             CHECK (status IN ('PLANNED', 'OPEN', 'CLOSED')),
            CONSTRAINT ck_cycles_injection_gte_0    CHECK (initial_injection_cents >= 0),
            CONSTRAINT ck_cycles_capital_gte_0      CHECK (initial_capital_cents IS NULL OR initial_capital_cents >= 0),
            CONSTRAINT ck_cycles_closed_at          CHECK ((status = 'CLOSED') = (closed_at IS NOT NULL))
        );
    """)
    # At most one OPEN cycle at any time
    op.execute("CREATE UNIQUE INDEX uq_cycles_single_open ON cycles ((status)) WHERE status = 'OPEN';")
    op.execute("CREATE INDEX idx_cycles_status_start ON cycles (status, started_at);")
    op.execute("""
        CREATE TRIGGER trg_cycles_updated_at
            BEFORE UPDATE ON cycles
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute("COMMENT ON TABLE cycles IS 'Trading cycles: PLANNED -> OPEN -> CLOSED, amounts in ISK cents';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS cycles CASCADE;")
