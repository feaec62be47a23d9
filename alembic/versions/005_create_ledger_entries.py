"""005: create ledger_entries table

Revision ID: 005
Revises: 004
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op

revision: str = "005"
down_revision: Union[str, None] = "004"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE ledger_entries (
            id                  BIGSERIAL       PRIMARY KEY,
            cycle_id            VARCHAR(64)     NOT NULL REFERENCES cycles (id),
            entry_type          VARCHAR(30)     NOT NULL,
            amount_cents        BIGINT          NOT NULL,
            occurred_at         TIMESTAMPTZ     NOT NULL,
            memo                VARCHAR(500),
            source              VARCHAR(30)     NOT NULL DEFAULT 'system',
            match_status        VARCHAR(20),
            plan_commit_id      VARCHAR(64),
            participation_id    VARCHAR(64),
            line_id             VARCHAR(64),
            character_name      VARCHAR(100),
            type_id             INT,
            station_id          BIGINT,
            external_ref_id     VARCHAR(128),
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_ledger_entry_type CHECK (
                entry_type IN (
                    'deposit', 'execution', 'fee', 'payout',
                    'rollover', 'refund', 'match_attempt', 'adjustment'
                )
            ),
            CONSTRAINT ck_ledger_source CHECK (
                source IN ('wallet_transactions', 'wallet_journal', 'operator', 'system')
            ),
            CONSTRAINT ck_ledger_match_status CHECK (
                match_status IS NULL OR match_status IN ('linked', 'unlinked', 'matched', 'rejected')
            )
        );
    """)
    op.execute("CREATE INDEX idx_ledger_cycle ON ledger_entries (cycle_id, id DESC);")
    op.execute("CREATE INDEX idx_ledger_cycle_type ON ledger_entries (cycle_id, entry_type, id DESC);")
    op.execute("""
        CREATE INDEX idx_ledger_commit
        ON ledger_entries (plan_commit_id, id)
        WHERE plan_commit_id IS NOT NULL;
    """)
    op.execute("""
        CREATE INDEX idx_ledger_participation
        ON ledger_entries (participation_id)
        WHERE participation_id IS NOT NULL;
    """)
    op.execute("""
        CREATE TRIGGER trg_ledger_append_only
        BEFORE UPDATE OR DELETE ON ledger_entries
        FOR EACH ROW EXECUTE FUNCTION fn_reject_mutation();
    """)
    op.execute("COMMENT ON TABLE ledger_entries IS 'Cycle ledger: append-only, never updated or deleted, amounts in ISK cents';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS ledger_entries CASCADE;")
