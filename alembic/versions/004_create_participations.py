"""004: create participations and wallet_transfers tables

Revision ID: 004
Revises: 003
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE participations (
            id                              VARCHAR(64)     PRIMARY KEY,
            cycle_id                        VARCHAR(64)     NOT NULL REFERENCES cycles (id),
            user_id                         VARCHAR(64),
            character_name                  VARCHAR(100)    NOT NULL,
            character_id                    BIGINT,
            amount_cents                    BIGINT          NOT NULL,
            profit_share_pct                NUMERIC(5, 4)   NOT NULL,
            status                          VARCHAR(30)     NOT NULL DEFAULT 'AWAITING_INVESTMENT',
            memo                            VARCHAR(200),
            wallet_journal_ref              VARCHAR(128),
            validated_at                    TIMESTAMPTZ,
            rollover_type                   VARCHAR(20),
            rollover_requested_cents        BIGINT,
            rollover_from_participation_id  VARCHAR(64)     REFERENCES participations (id),
            rollover_deducted_cents         BIGINT          NOT NULL DEFAULT 0,
            payout_amount_cents             BIGINT,
            payout_paid_at                  TIMESTAMPTZ,
            refunded_at                     TIMESTAMPTZ,
            opted_out_at                    TIMESTAMPTZ,
            created_at                      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at                      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_participations_journal_ref    UNIQUE (wallet_journal_ref),
            CONSTRAINT ck_participations_amount         CHECK (amount_cents > 0),
            CONSTRAINT ck_participations_pct            CHECK (profit_share_pct >= 0 AND profit_share_pct <= 1),
            CONSTRAINT ck_participations_status         CHECK (
                status IN ('AWAITING_INVESTMENT', 'OPTED_IN', 'OPTED_OUT',
                           'AWAITING_PAYOUT', 'COMPLETED', 'REFUNDED')
            ),
            CONSTRAINT ck_participations_rollover_type  CHECK (
                rollover_type IS NULL OR rollover_type IN ('FULL_PAYOUT', 'INITIAL_ONLY', 'CUSTOM_AMOUNT')
            ),
            CONSTRAINT ck_participations_custom_amount  CHECK (
                rollover_type IS DISTINCT FROM 'CUSTOM_AMOUNT' OR rollover_requested_cents > 0
            ),
            CONSTRAINT ck_participations_deducted       CHECK (rollover_deducted_cents >= 0),
            CONSTRAINT ck_participations_payout         CHECK (payout_amount_cents IS NULL OR payout_amount_cents >= 0),
            CONSTRAINT ck_participations_paid           CHECK (payout_paid_at IS NULL OR payout_amount_cents IS NOT NULL)
        );
    """)
    # One fresh opt-in per user per cycle; a rollover participation may sit beside it
    op.execute("""
        CREATE UNIQUE INDEX uq_participations_user
        ON participations (cycle_id, user_id)
        WHERE user_id IS NOT NULL AND rollover_from_participation_id IS NULL;
    """)
    op.execute("""
        CREATE INDEX idx_participations_awaiting_amount
        ON participations (cycle_id, amount_cents)
        WHERE status = 'AWAITING_INVESTMENT' AND wallet_journal_ref IS NULL;
    """)
    op.execute("CREATE INDEX idx_participations_cycle_status ON participations (cycle_id, status, created_at);")
    op.execute("""
        CREATE TRIGGER trg_participations_updated_at
            BEFORE UPDATE ON participations
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)

    op.execute("""
        CREATE TABLE wallet_transfers (
            ref_id              VARCHAR(128)    PRIMARY KEY,
            amount_cents        BIGINT          NOT NULL,
            occurred_at         TIMESTAMPTZ     NOT NULL,
            character_id        BIGINT,
            character_name      VARCHAR(100),
            is_wallet_journal   BOOLEAN         NOT NULL DEFAULT TRUE,
            participation_id    VARCHAR(64)     REFERENCES participations (id),
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_wallet_transfers_amount CHECK (amount_cents > 0)
        );
    """)
    op.execute("""
        CREATE INDEX idx_wallet_transfers_unlinked
        ON wallet_transfers (occurred_at, ref_id)
        WHERE participation_id IS NULL;
    """)
    op.execute("COMMENT ON TABLE participations IS 'Investor opt-ins per cycle, amounts in ISK cents';")
    op.execute("COMMENT ON TABLE wallet_transfers IS 'Normalized incoming cash transfers staged for matching';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS wallet_transfers CASCADE;")
    op.execute("DROP TABLE IF EXISTS participations CASCADE;")
