"""initial schema: users/roles/audit and canvas tables

Revision ID: 5a1c0e7d2b3f
Revises:
Create Date: 2026-10-17 09:12:44.118530

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '5a1c0e7d2b3f'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

BMC_BLOCKS = (
    "key_partners",
    "key_activities",
    "key_resources",
    "value_propositions",
    "customer_relationships",
    "channels",
    "customer_segments",
    "cost_structure",
    "revenue_streams",
)


def _canvas_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("slug", sa.String(128), nullable=False, unique=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="draft"),
        sa.Column("tags", JSONType, nullable=True),
        sa.Column("metadata", JSONType, nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("updated_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
    ]


def _block(name: str) -> sa.Column:
    return sa.Column(name, JSONType, nullable=False)


def upgrade() -> None:
    """Create auth, audit and canvas tables."""
    # Check if tables already exist (idempotent)
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = set(inspector.get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(320), nullable=False, unique=True),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "roles" not in existing_tables:
        op.create_table(
            "roles",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(64), nullable=False, unique=True),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "permissions" not in existing_tables:
        op.create_table(
            "permissions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(128), nullable=False, unique=True),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "user_roles" not in existing_tables:
        op.create_table(
            "user_roles",
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
        )

    if "role_permissions" not in existing_tables:
        op.create_table(
            "role_permissions",
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
        )

    if "audit_events" not in existing_tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("actor_user_email", sa.String(320), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("entity_type", sa.String(128), nullable=True),
            sa.Column("entity_id", sa.String(128), nullable=True),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("client_ip", sa.String(64), nullable=True),
            sa.UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
        )
        op.create_index("idx_audit_events_created_at", "audit_events", ["created_at"])
        op.create_index("idx_audit_events_entity", "audit_events", ["entity_type", "entity_id"])

    if "business_model_canvases" not in existing_tables:
        op.create_table(
            "business_model_canvases",
            *_canvas_columns(),
            *[_block(name) for name in BMC_BLOCKS],
        )
        op.create_index("idx_bmc_status", "business_model_canvases", ["status"])

    if "customer_profiles" not in existing_tables:
        op.create_table(
            "customer_profiles",
            *_canvas_columns(),
            sa.Column("profile_type", sa.String(32), nullable=True),
            _block("jobs"),
            _block("pains"),
            _block("gains"),
        )
        op.create_index("idx_customer_profiles_status", "customer_profiles", ["status"])

    if "value_maps" not in existing_tables:
        op.create_table(
            "value_maps",
            *_canvas_columns(),
            _block("products_services"),
            _block("pain_relievers"),
            _block("gain_creators"),
        )
        op.create_index("idx_value_maps_status", "value_maps", ["status"])

    if "value_proposition_canvases" not in existing_tables:
        op.create_table(
            "value_proposition_canvases",
            *_canvas_columns(),
            sa.Column("value_map_id", sa.String(36), sa.ForeignKey("value_maps.id", ondelete="CASCADE"), nullable=False),
            sa.Column(
                "customer_profile_id",
                sa.String(36),
                sa.ForeignKey("customer_profiles.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("fit_score", sa.Float(), nullable=True),
            sa.Column("fit_analysis", JSONType, nullable=True),
            _block("addressed_jobs"),
            _block("addressed_pains"),
            _block("addressed_gains"),
        )
        op.create_index("idx_vpc_value_map", "value_proposition_canvases", ["value_map_id"])
        op.create_index("idx_vpc_customer_profile", "value_proposition_canvases", ["customer_profile_id"])


def downgrade() -> None:
    for table in (
        "value_proposition_canvases",
        "value_maps",
        "customer_profiles",
        "business_model_canvases",
        "audit_events",
        "role_permissions",
        "user_roles",
        "permissions",
        "roles",
        "users",
    ):
        op.drop_table(table)
