from alembic import op
import sqlalchemy as sa

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=True),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_deleted_at", "users", ["deleted_at"], unique=False)

    op.create_table(
        "bank_accounts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("bank_name", sa.String(length=128), nullable=True),
        sa.Column("account_number", sa.String(length=64), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="EUR"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=True),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_bank_accounts_account_number", "bank_accounts", ["account_number"], unique=True)
    op.create_index("ix_bank_accounts_deleted_at", "bank_accounts", ["deleted_at"], unique=False)

    op.create_table(
        "areas",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="EUR"),
        sa.Column("budget", sa.BigInteger(), nullable=True),
        sa.Column(
            "bank_account_id",
            sa.String(length=36),
            sa.ForeignKey("bank_accounts.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=True),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_areas_code", "areas", ["code"], unique=True)
    op.create_index("ix_areas_bank_account_id", "areas", ["bank_account_id"], unique=False)
    op.create_index("ix_areas_deleted_at", "areas", ["deleted_at"], unique=False)

    op.create_table(
        "departments",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("area_id", sa.String(length=36), sa.ForeignKey("areas.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=True),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("area_id", "code", name="uq_departments_area_code"),
    )
    op.create_index("ix_departments_area_id", "departments", ["area_id"], unique=False)
    op.create_index("ix_departments_user_id", "departments", ["user_id"], unique=False)
    op.create_index("ix_departments_deleted_at", "departments", ["deleted_at"], unique=False)

    op.create_table(
        "user_areas",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("area_id", sa.String(length=36), sa.ForeignKey("areas.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="VIEWER"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=True),
        sa.UniqueConstraint("user_id", "area_id", name="uq_user_areas_user_area"),
    )
    op.create_index("ix_user_areas_user_id", "user_areas", ["user_id"], unique=False)
    op.create_index("ix_user_areas_area_id", "user_areas", ["area_id"], unique=False)

    op.create_table(
        "movements",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="DRAFT"),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="EUR"),
        sa.Column("description", sa.String(length=500), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("reference", sa.String(length=128), nullable=True),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("area_id", sa.String(length=36), sa.ForeignKey("areas.id", ondelete="RESTRICT"), nullable=False),
        sa.Column(
            "department_id",
            sa.String(length=36),
            sa.ForeignKey("departments.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column(
            "source_bank_account_id",
            sa.String(length=36),
            sa.ForeignKey("bank_accounts.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column(
            "destination_bank_account_id",
            sa.String(length=36),
            sa.ForeignKey("bank_accounts.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("is_internal_transfer", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "parent_id",
            sa.String(length=36),
            sa.ForeignKey("movements.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("is_split_parent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("approved_by", sa.String(length=36), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("rejected_by", sa.String(length=36), nullable=True),
        sa.Column("rejected_at", sa.DateTime(), nullable=True),
        sa.Column("rejection_reason", sa.String(length=500), nullable=True),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_movements_amount_positive"),
        sa.UniqueConstraint("idempotency_key", name="uq_movements_idempotency_key"),
    )
    op.create_index("ix_movements_type", "movements", ["type"], unique=False)
    op.create_index("ix_movements_status", "movements", ["status"], unique=False)
    op.create_index("ix_movements_transaction_date", "movements", ["transaction_date"], unique=False)
    op.create_index("ix_movements_area_id", "movements", ["area_id"], unique=False)
    op.create_index("ix_movements_department_id", "movements", ["department_id"], unique=False)
    op.create_index("ix_movements_user_id", "movements", ["user_id"], unique=False)
    op.create_index("ix_movements_source_bank_account_id", "movements", ["source_bank_account_id"], unique=False)
    op.create_index(
        "ix_movements_destination_bank_account_id", "movements", ["destination_bank_account_id"], unique=False
    )
    op.create_index("ix_movements_parent_id", "movements", ["parent_id"], unique=False)
    op.create_index("ix_movements_deleted_at", "movements", ["deleted_at"], unique=False)
    op.create_index("ix_movements_area_date", "movements", ["area_id", "transaction_date"], unique=False)

    op.create_table(
        "movement_approvals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "movement_id",
            sa.String(length=36),
            sa.ForeignKey("movements.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("action", sa.String(length=16), nullable=False),
        sa.Column("comment", sa.String(length=1000), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_movement_approvals_movement_id", "movement_approvals", ["movement_id"], unique=False)
    op.create_index("ix_movement_approvals_user_id", "movement_approvals", ["user_id"], unique=False)
    op.create_index("ix_movement_approvals_action", "movement_approvals", ["action"], unique=False)
    op.create_index("ix_movement_approvals_created_at", "movement_approvals", ["created_at"], unique=False)
    op.create_index(
        "ix_movement_approvals_movement_created",
        "movement_approvals",
        ["movement_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
    )
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"], unique=False)
    op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"], unique=False)
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"], unique=False)
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"], unique=False)
    op.create_index("ix_audit_logs_entity_id", "audit_logs", ["entity_id"], unique=False)
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"], unique=False)

def downgrade():
    op.drop_table("audit_logs")
    op.drop_table("movement_approvals")
    op.drop_table("movements")
    op.drop_table("user_areas")
    op.drop_table("departments")
    op.drop_table("areas")
    op.drop_table("bank_accounts")
    op.drop_table("users")
