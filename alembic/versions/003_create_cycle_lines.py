"""003: create plan_commits, cycle_lines, allocations and fill_events tables

Revision ID: 003
Revises: 002
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE plan_commits (
            id              VARCHAR(64)     PRIMARY KEY,
            cycle_id        VARCHAR(64)     NOT NULL REFERENCES cycles (id),
            memo            VARCHAR(500),
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW()
        );
    """)
    op.execute("CREATE INDEX idx_plan_commits_cycle ON plan_commits (cycle_id, created_at);")

    op.execute("""
        CREATE TABLE cycle_lines (
            id                          VARCHAR(64)     PRIMARY KEY,
            cycle_id                    VARCHAR(64)     NOT NULL REFERENCES cycles (id),
            type_id                     INT             NOT NULL,
            destination_station_id      BIGINT          NOT NULL,
            planned_units               INT             NOT NULL,
            units_bought                INT             NOT NULL DEFAULT 0,
            units_sold                  INT             NOT NULL DEFAULT 0,
            listed_units                INT             NOT NULL DEFAULT 0,
            buy_cost_cents              BIGINT          NOT NULL DEFAULT 0,
            sales_gross_cents           BIGINT          NOT NULL DEFAULT 0,
            sales_tax_cents             BIGINT          NOT NULL DEFAULT 0,
            sales_net_cents             BIGINT          NOT NULL DEFAULT 0,
            broker_fees_cents           BIGINT          NOT NULL DEFAULT 0,
            relist_fees_cents           BIGINT          NOT NULL DEFAULT 0,
            is_rollover                 BOOLEAN         NOT NULL DEFAULT FALSE,
            rollover_from_cycle_id      VARCHAR(64)     REFERENCES cycles (id),
            rollover_from_line_id       VARCHAR(64)     REFERENCES cycle_lines (id),
            plan_commit_id              VARCHAR(64)     REFERENCES plan_commits (id),
            created_at                  TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at                  TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_lines_type_id             CHECK (type_id > 0),
            CONSTRAINT ck_lines_station_id          CHECK (destination_station_id > 0),
            CONSTRAINT ck_lines_planned_gte_0       CHECK (planned_units >= 0),
            CONSTRAINT ck_lines_bought_gte_0        CHECK (units_bought >= 0),
            CONSTRAINT ck_lines_sold_lte_bought     CHECK (units_sold >= 0 AND units_sold <= units_bought),
            CONSTRAINT ck_lines_listed_lte_bought   CHECK (listed_units >= 0 AND listed_units <= units_bought),
            CONSTRAINT ck_lines_cost_gte_0          CHECK (buy_cost_cents >= 0),
            CONSTRAINT ck_lines_sales_consistency   CHECK (sales_net_cents = sales_gross_cents - sales_tax_cents),
            CONSTRAINT ck_lines_fees_gte_0          CHECK (broker_fees_cents >= 0 AND relist_fees_cents >= 0),
            CONSTRAINT ck_lines_rollover_source     CHECK (
                is_rollover OR (rollover_from_cycle_id IS NULL AND rollover_from_line_id IS NULL)
            )
        );
    """)
    # One planned line per (type, station); rollover lines may share the key
    op.execute("""
        CREATE UNIQUE INDEX uq_cycle_lines_key
        ON cycle_lines (cycle_id, type_id, destination_station_id)
        WHERE NOT is_rollover;
    """)
    op.execute("""
        CREATE INDEX idx_cycle_lines_candidates
        ON cycle_lines (cycle_id, type_id, destination_station_id, is_rollover DESC, created_at, id);
    """)
    op.execute("CREATE INDEX idx_cycle_lines_commit ON cycle_lines (plan_commit_id) WHERE plan_commit_id IS NOT NULL;")
    op.execute("""
        CREATE TRIGGER trg_cycle_lines_updated_at
            BEFORE UPDATE ON cycle_lines
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)

    op.execute("""
        CREATE TABLE allocations (
            id                  BIGSERIAL       PRIMARY KEY,
            side                VARCHAR(10)     NOT NULL,
            line_id             VARCHAR(64)     NOT NULL REFERENCES cycle_lines (id),
            external_ref_id     VARCHAR(128)    NOT NULL,
            quantity            INT             NOT NULL,
            unit_price_cents    BIGINT          NOT NULL,
            amount_cents        BIGINT          NOT NULL,
            tax_cents           BIGINT          NOT NULL DEFAULT 0,
            occurred_at         TIMESTAMPTZ     NOT NULL,
            is_rollover         BOOLEAN         NOT NULL DEFAULT FALSE,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_allocations_ref       UNIQUE (side, line_id, external_ref_id),
            CONSTRAINT ck_allocations_side      CHECK (side IN ('BUY', 'SELL')),
            CONSTRAINT ck_allocations_quantity  CHECK (quantity > 0),
            CONSTRAINT ck_allocations_price     CHECK (unit_price_cents >= 0),
            CONSTRAINT ck_allocations_amount    CHECK (amount_cents >= 0),
            CONSTRAINT ck_allocations_tax       CHECK (tax_cents >= 0 AND (side = 'SELL' OR tax_cents = 0))
        );
    """)
    op.execute("CREATE INDEX idx_allocations_ref ON allocations (side, external_ref_id);")
    op.execute("CREATE INDEX idx_allocations_line ON allocations (line_id, side);")

    op.execute("""
        CREATE TABLE fill_events (
            id                  BIGSERIAL       PRIMARY KEY,
            side                VARCHAR(10)     NOT NULL,
            type_id             INT             NOT NULL,
            station_id          BIGINT          NOT NULL,
            quantity            INT             NOT NULL,
            unit_price_cents    BIGINT          NOT NULL,
            external_ref_id     VARCHAR(128)    NOT NULL,
            occurred_at         TIMESTAMPTZ     NOT NULL,
            character_id        BIGINT,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_fill_events_ref       UNIQUE (side, external_ref_id),
            CONSTRAINT ck_fill_events_side      CHECK (side IN ('BUY', 'SELL')),
            CONSTRAINT ck_fill_events_quantity  CHECK (quantity > 0),
            CONSTRAINT ck_fill_events_price     CHECK (unit_price_cents >= 0)
        );
    """)
    op.execute("CREATE INDEX idx_fill_events_time ON fill_events (occurred_at, id);")
    op.execute("COMMENT ON TABLE allocations IS 'Fill slices bound to cycle lines, idempotent per (side, line, external ref)';")
    op.execute("COMMENT ON TABLE fill_events IS 'Normalized market fills staged for reconciliation';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS fill_events CASCADE;")
    op.execute("DROP TABLE IF EXISTS allocations CASCADE;")
    op.execute("DROP TABLE IF EXISTS cycle_lines CASCADE;")
    op.execute("DROP TABLE IF EXISTS plan_commits CASCADE;")
