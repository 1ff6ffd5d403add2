"""Create report format, access control and alert tables."""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: str | Sequence[str] | None = None
branch_labels = None
depends_on = None

_AUTOINCREMENT = {"sqlite_autoincrement": True}


def _report_format_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("uuid", sa.String(length=36), nullable=False),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("extension", sa.String(), nullable=True),
        sa.Column("content_type", sa.String(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("signature", sa.Text(), nullable=True),
        sa.Column("trust", sa.Integer(), nullable=False),
        sa.Column("trust_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("creation_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("modification_time", sa.DateTime(timezone=True), nullable=True),
    ]


def _param_columns(parent_table: str) -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "report_format_id", sa.Integer(), sa.ForeignKey(f"{parent_table}.id"), nullable=False
        ),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("value", sa.Text(), nullable=True),
        sa.Column("type_min", sa.BigInteger(), nullable=True),
        sa.Column("type_max", sa.BigInteger(), nullable=True),
        sa.Column("type_regex", sa.Text(), nullable=True),
        sa.Column("fallback", sa.Text(), nullable=False),
    ]


def upgrade() -> None:
    """Create all tables used by the report format service."""

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("uuid", sa.String(length=36), nullable=False, unique=True),
        sa.Column("email", sa.String(), nullable=False, unique=True),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("uuid", sa.String(length=36), nullable=False, unique=True),
        sa.Column("name", sa.String(), nullable=False),
    )
    op.create_table(
        "user_roles",
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), primary_key=True),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id"), primary_key=True),
    )
    op.create_table(
        "permissions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("uuid", sa.String(length=36), nullable=False, unique=True),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("resource_type", sa.String(), nullable=True),
        sa.Column("resource", sa.Integer(), nullable=True),
        sa.Column("resource_uuid", sa.String(length=36), nullable=True),
        sa.Column("resource_location", sa.Integer(), nullable=False),
        sa.Column("subject_type", sa.String(), nullable=False),
        sa.Column("subject", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        **_AUTOINCREMENT,
    )
    op.create_table(
        "tags",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("uuid", sa.String(length=36), nullable=False, unique=True),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("value", sa.String(), nullable=True),
    )
    op.create_table(
        "tag_resources",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tag_id", sa.Integer(), sa.ForeignKey("tags.id"), nullable=False),
        sa.Column("resource_type", sa.String(), nullable=False),
        sa.Column("resource", sa.Integer(), nullable=False),
        sa.Column("resource_uuid", sa.String(length=36), nullable=False),
        sa.Column("resource_location", sa.Integer(), nullable=False),
    )
    op.create_table(
        "resources_predefined",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("resource_type", sa.String(), nullable=False),
        sa.Column("resource", sa.Integer(), nullable=False),
        sa.UniqueConstraint("resource_type", "resource"),
    )
    op.create_table(
        "alerts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("uuid", sa.String(length=36), nullable=False, unique=True),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("method", sa.String(), nullable=True),
    )
    op.create_table(
        "alert_method_data",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("alert_id", sa.Integer(), sa.ForeignKey("alerts.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("data", sa.Text(), nullable=True),
    )
    op.create_table(
        "alerts_trash",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("uuid", sa.String(length=36), nullable=False, unique=True),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("method", sa.String(), nullable=True),
        **_AUTOINCREMENT,
    )
    op.create_table(
        "alert_method_data_trash",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("alert_id", sa.Integer(), sa.ForeignKey("alerts_trash.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("data", sa.Text(), nullable=True),
    )

    op.create_table("report_formats", *_report_format_columns(), **_AUTOINCREMENT)
    op.create_index("ix_report_formats_uuid", "report_formats", ["uuid"], unique=True)
    op.create_table(
        "report_format_params",
        *_param_columns("report_formats"),
        sa.UniqueConstraint("report_format_id", "name"),
        **_AUTOINCREMENT,
    )
    op.create_table(
        "report_format_param_options",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("param_id", sa.Integer(), sa.ForeignKey("report_format_params.id"), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
    )

    op.create_table(
        "report_formats_trash",
        *_report_format_columns(),
        sa.Column("original_uuid", sa.String(length=36), nullable=True),
        **_AUTOINCREMENT,
    )
    op.create_index("ix_report_formats_trash_uuid", "report_formats_trash", ["uuid"], unique=True)
    op.create_table(
        "report_format_params_trash",
        *_param_columns("report_formats_trash"),
        **_AUTOINCREMENT,
    )
    op.create_table(
        "report_format_param_options_trash",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "param_id", sa.Integer(), sa.ForeignKey("report_format_params_trash.id"), nullable=False
        ),
        sa.Column("value", sa.Text(), nullable=False),
    )


def downgrade() -> None:
    """Drop all report format service tables."""

    op.drop_table("report_format_param_options_trash")
    op.drop_table("report_format_params_trash")
    op.drop_index("ix_report_formats_trash_uuid", table_name="report_formats_trash")
    op.drop_table("report_formats_trash")
    op.drop_table("report_format_param_options")
    op.drop_table("report_format_params")
    op.drop_index("ix_report_formats_uuid", table_name="report_formats")
    op.drop_table("report_formats")
    op.drop_table("alert_method_data_trash")
    op.drop_table("alerts_trash")
    op.drop_table("alert_method_data")
    op.drop_table("alerts")
    op.drop_table("resources_predefined")
    op.drop_table("tag_resources")
    op.drop_table("tags")
    op.drop_table("permissions")
    op.drop_table("user_roles")
    op.drop_table("roles")
    op.drop_table("users")
