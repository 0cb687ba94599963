"""change notifications

Revision ID: 2026_10_17_0100
Revises: 2026_10_17_0000
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '2026_10_17_0100'
down_revision: Union[str, None] = '2026_10_17_0000'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """NOTIFY vidgro_changes for every ledger insert and promotion insert/update.

    NOTIFY is delivered only when the writing transaction commits, so a
    listener never sees a rolled-back change and never misses a committed one
    while it stays connected.
    """
    op.execute("""
        CREATE OR REPLACE FUNCTION notify_row_change()
        RETURNS TRIGGER AS $$
        DECLARE
            owner UUID;
        BEGIN
            IF TG_TABLE_NAME = 'promotions' THEN
                owner := NEW.owner_account_id;
            ELSE
                owner := NEW.account_id;
            END IF;
            PERFORM pg_notify(
                'vidgro_changes',
                json_build_object(
                    'table', TG_TABLE_NAME,
                    'operation', lower(TG_OP),
                    'record_id', NEW.id,
                    'account_id', owner,
                    'occurred_at', clock_timestamp(),
                    'record', row_to_json(NEW)
                )::text
            );
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER trg_ledger_transactions_notify
        AFTER INSERT ON ledger_transactions
        FOR EACH ROW EXECUTE FUNCTION notify_row_change();
    """)
    op.execute("""
        CREATE TRIGGER trg_promotions_notify
        AFTER INSERT OR UPDATE ON promotions
        FOR EACH ROW EXECUTE FUNCTION notify_row_change();
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_promotions_notify ON promotions")
    op.execute("DROP TRIGGER IF EXISTS trg_ledger_transactions_notify ON ledger_transactions")
    op.execute("DROP FUNCTION IF EXISTS notify_row_change()")
