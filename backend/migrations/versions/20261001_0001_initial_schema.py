from __future__ import annotations
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "20261001_0001"
down_revision = None
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=80), nullable=False, server_default="Golfer"),
        sa.Column("last_name", sa.String(length=80), nullable=False, server_default=""),
        sa.Column("phone_e164", sa.String(length=32), nullable=False, server_default=""),
        sa.Column("age_years", sa.Integer(), nullable=True),
        sa.Column("handicap", sa.Float(), nullable=True),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="player"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("role IN ('player','admin','club_admin')", name="ck_users_role"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "magic_link_tokens",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("flow", sa.String(length=16), nullable=False, server_default="branded"),
        sa.Column("first_name", sa.String(length=80), nullable=False),
        sa.Column("last_name", sa.String(length=80), nullable=False, server_default=""),
        sa.Column("phone_e164", sa.String(length=32), nullable=False, server_default=""),
        sa.Column("age_years", sa.Integer(), nullable=False),
        sa.Column("handicap", sa.Float(), nullable=True),
        sa.Column("competition_name", sa.String(length=120), nullable=True),
        sa.Column("club_name", sa.String(length=120), nullable=True),
        sa.Column("redirect_url", sa.Text(), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("expires_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("used_at", sa.TIMESTAMP(timezone=True), nullable=True),
    )
    op.create_index("ix_magic_link_tokens_token_hash", "magic_link_tokens", ["token_hash"], unique=True)
    op.create_index("ix_magic_link_tokens_email", "magic_link_tokens", ["email"])
    # Issuance retires every unconsumed token for an address
    op.create_index(
        "ix_magic_link_tokens_email_unused", "magic_link_tokens", ["email"],
        postgresql_where=sa.text("used = false"),
    )

    op.create_table(
        "competitions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("club_name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("hole_number", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("attempt_window_minutes", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
    )

    op.create_table(
        "entries",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("player_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("competition_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("attempt_window_start", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("attempt_window_end", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("outcome_self", sa.String(length=16), nullable=True),
        sa.Column("outcome_reported_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("auto_miss_applied", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="in_progress"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("outcome_self IS NULL OR outcome_self IN ('win','miss','auto_miss')", name="ck_entries_outcome"),
        sa.CheckConstraint("status IN ('in_progress','verification_pending','completed')", name="ck_entries_status"),
    )
    op.create_index("ix_entries_player_id", "entries", ["player_id"])
    op.create_index("ix_entries_competition_id", "entries", ["competition_id"])
    op.create_index("ix_entries_attempt_window_end", "entries", ["attempt_window_end"])
    # Sweep candidates: elapsed and still unresolved
    op.create_index(
        "ix_entries_unresolved_window_end", "entries", ["attempt_window_end"],
        postgresql_where=sa.text("outcome_self IS NULL"),
    )

    op.create_table(
        "verifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("entry_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("entries.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="initiated"),
        sa.Column("evidence_captured_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("selfie_url", sa.Text(), nullable=True),
        sa.Column("id_document_url", sa.Text(), nullable=True),
        sa.Column("witness_name", sa.String(length=120), nullable=True),
        sa.Column("witness_email", sa.String(length=255), nullable=True),
        sa.Column("witness_confirmed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("verified_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("verified_by", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint(
            "status IN ('initiated','pending','under_review','verified','rejected')", name="ck_verifications_status"
        ),
    )
    op.create_index("ix_verifications_entry_id", "verifications", ["entry_id"], unique=True)
    op.create_index("ix_verifications_status", "verifications", ["status"])

    op.create_table(
        "witness_confirmations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("verification_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("verifications.id", ondelete="CASCADE"), nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column("witness_email", sa.String(length=255), nullable=True),
        sa.Column("expires_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("confirmed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("meta_json", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_unique_constraint("uq_witness_confirmations_token_hash", "witness_confirmations", ["token_hash"])
    op.create_index("ix_witness_confirmations_verification_id", "witness_confirmations", ["verification_id"])

def downgrade() -> None:
    op.drop_index("ix_witness_confirmations_verification_id", table_name="witness_confirmations")
    op.drop_constraint("uq_witness_confirmations_token_hash", "witness_confirmations", type_="unique")
    op.drop_table("witness_confirmations")
    op.drop_index("ix_verifications_status", table_name="verifications")
    op.drop_index("ix_verifications_entry_id", table_name="verifications")
    op.drop_table("verifications")
    op.drop_index("ix_entries_unresolved_window_end", table_name="entries")
    op.drop_index("ix_entries_attempt_window_end", table_name="entries")
    op.drop_index("ix_entries_competition_id", table_name="entries")
    op.drop_index("ix_entries_player_id", table_name="entries")
    op.drop_table("entries")
    op.drop_table("competitions")
    op.drop_index("ix_magic_link_tokens_email_unused", table_name="magic_link_tokens")
    op.drop_index("ix_magic_link_tokens_email", table_name="magic_link_tokens")
    op.drop_index("ix_magic_link_tokens_token_hash", table_name="magic_link_tokens")
    op.drop_table("magic_link_tokens")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
