"""006: create cycle_fee_events and cycle_snapshots tables

Revision ID: 006
Revises: 005
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op

revision: str = "006"
down_revision: Union[str, None] = "005"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE cycle_fee_events (
            id              BIGSERIAL       PRIMARY KEY,
            cycle_id        VARCHAR(64)     NOT NULL REFERENCES cycles (id),
            fee_type        VARCHAR(20)     NOT NULL,
            amount_cents    BIGINT          NOT NULL,
            memo            VARCHAR(500),
            occurred_at     TIMESTAMPTZ     NOT NULL,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_fee_events_type   CHECK (fee_type IN ('transport', 'broker', 'relist')),
            CONSTRAINT ck_fee_events_amount CHECK (amount_cents > 0)
        );
    """)
    op.execute("CREATE INDEX idx_fee_events_cycle ON cycle_fee_events (cycle_id, fee_type);")

    op.execute("""
        CREATE TABLE cycle_snapshots (
            id                  BIGSERIAL       PRIMARY KEY,
            cycle_id            VARCHAR(64)     NOT NULL REFERENCES cycles (id),
            wallet_cash_cents   BIGINT          NOT NULL,
            inventory_cents     BIGINT          NOT NULL,
            cycle_profit_cents  BIGINT          NOT NULL,
            snapshot_at         TIMESTAMPTZ     NOT NULL,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_snapshots_inventory CHECK (inventory_cents >= 0)
        );
    """)
    op.execute("CREATE INDEX idx_snapshots_cycle ON cycle_snapshots (cycle_id, snapshot_at);")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS cycle_snapshots CASCADE;")
    op.execute("DROP TABLE IF EXISTS cycle_fee_events CASCADE;")
