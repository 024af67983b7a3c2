from __future__ import annotations
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = "20261012_0002"
down_revision = "20261001_0001"
branch_labels = None
depends_on = None

def upgrade() -> None:
    # One unconsumed sign-in link per address
    op.execute(
        "UPDATE magic_link_tokens t SET used = true, used_at = now() "
        "WHERE t.used = false AND EXISTS ("
        "  SELECT 1 FROM magic_link_tokens n "
        "  WHERE n.email = t.email AND n.used = false AND n.created_at > t.created_at)"
    )
    op.drop_index("ix_magic_link_tokens_email_unused", table_name="magic_link_tokens")
    op.create_index(
        "ix_magic_link_tokens_email_unused", "magic_link_tokens", ["email"], unique=True,
        postgresql_where=sa.text("used = false"),
    )

    # One live witness link per claim
    op.add_column("witness_confirmations", sa.Column("retired_at", sa.TIMESTAMP(timezone=True), nullable=True))
    op.execute(
        "UPDATE witness_confirmations w SET retired_at = now(), expires_at = LEAST(w.expires_at, now()) "
        "WHERE w.confirmed_at IS NULL AND EXISTS ("
        "  SELECT 1 FROM witness_confirmations n "
        "  WHERE n.verification_id = w.verification_id AND n.confirmed_at IS NULL AND n.created_at > w.created_at)"
    )
    op.create_index(
        "uq_witness_confirmations_live", "witness_confirmations", ["verification_id"], unique=True,
        postgresql_where=sa.text("confirmed_at IS NULL AND retired_at IS NULL"),
    )

def downgrade() -> None:
    op.drop_index("uq_witness_confirmations_live", table_name="witness_confirmations")
    op.drop_column("witness_confirmations", "retired_at")
    op.drop_index("ix_magic_link_tokens_email_unused", table_name="magic_link_tokens")
    op.create_index(
        "ix_magic_link_tokens_email_unused", "magic_link_tokens", ["email"],
        postgresql_where=sa.text("used = false"),
    )
