import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from .database import Base

# Resource locations used by permissions and tags.
LOCATION_TABLE = 0
LOCATION_TRASH = 1

# Trust states of a report format.
TRUST_YES = 1
TRUST_NO = 2
TRUST_UNKNOWN = 3


def _uuid_str() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


user_roles = sa.Table(
    "user_roles",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id"), primary_key=True),
)


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, autoincrement=True)
    uuid = Column(String(36), unique=True, nullable=False, default=_uuid_str)
    email = Column(String, unique=True, nullable=False)
    name = Column(String)
    is_admin = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=_now)

    roles = relationship("Role", secondary=user_roles, back_populates="users")


class Role(Base):
    __tablename__ = "roles"
    id = Column(Integer, primary_key=True, autoincrement=True)
    uuid = Column(String(36), unique=True, nullable=False, default=_uuid_str)
    name = Column(String, nullable=False)

    users = relationship("User", secondary=user_roles, back_populates="roles")


class Permission(Base):
    """Grant of a command (resource is null) or of access to one resource."""

    __tablename__ = "permissions"
    id = Column(Integer, primary_key=True, autoincrement=True)
    uuid = Column(String(36), unique=True, nullable=False, default=_uuid_str)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    name = Column(String, nullable=False)
    resource_type = Column(String, nullable=True)
    resource = Column(Integer, nullable=True)
    resource_uuid = Column(String(36), nullable=True)
    resource_location = Column(Integer, default=LOCATION_TABLE, nullable=False)
    subject_type = Column(String, nullable=False)
    subject = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_now)
    __table_args__ = ({"sqlite_autoincrement": True},)


class Tag(Base):
    __tablename__ = "tags"
    id = Column(Integer, primary_key=True, autoincrement=True)
    uuid = Column(String(36), unique=True, nullable=False, default=_uuid_str)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    name = Column(String, nullable=False)
    value = Column(String, default="")

    resources = relationship("TagResource", back_populates="tag", cascade="all, delete-orphan")


class TagResource(Base):
    __tablename__ = "tag_resources"
    id = Column(Integer, primary_key=True, autoincrement=True)
    tag_id = Column(Integer, ForeignKey("tags.id"), nullable=False)
    resource_type = Column(String, nullable=False)
    resource = Column(Integer, nullable=False)
    resource_uuid = Column(String(36), nullable=False)
    resource_location = Column(Integer, default=LOCATION_TABLE, nullable=False)

    tag = relationship("Tag", back_populates="resources")


class ResourcePredefined(Base):
    __tablename__ = "resources_predefined"
    id = Column(Integer, primary_key=True, autoincrement=True)
    resource_type = Column(String, nullable=False)
    resource = Column(Integer, nullable=False)
    __table_args__ = (sa.UniqueConstraint("resource_type", "resource"),)


class Alert(Base):
    __tablename__ = "alerts"
    id = Column(Integer, primary_key=True, autoincrement=True)
    uuid = Column(String(36), unique=True, nullable=False, default=_uuid_str)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    name = Column(String, nullable=False)
    method = Column(String, default="Email")

    method_data = relationship(
        "AlertMethodData", back_populates="alert", cascade="all, delete-orphan"
    )


class AlertMethodData(Base):
    __tablename__ = "alert_method_data"
    id = Column(Integer, primary_key=True, autoincrement=True)
    alert_id = Column(Integer, ForeignKey("alerts.id"), nullable=False)
    name = Column(String, nullable=False)
    data = Column(Text, default="")

    alert = relationship("Alert", back_populates="method_data")


class AlertTrash(Base):
    __tablename__ = "alerts_trash"
    id = Column(Integer, primary_key=True, autoincrement=True)
    uuid = Column(String(36), unique=True, nullable=False, default=_uuid_str)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    name = Column(String, nullable=False)
    method = Column(String, default="Email")
    __table_args__ = ({"sqlite_autoincrement": True},)

    method_data = relationship(
        "AlertMethodDataTrash", back_populates="alert", cascade="all, delete-orphan"
    )


class AlertMethodDataTrash(Base):
    __tablename__ = "alert_method_data_trash"
    id = Column(Integer, primary_key=True, autoincrement=True)
    alert_id = Column(Integer, ForeignKey("alerts_trash.id"), nullable=False)
    name = Column(String, nullable=False)
    data = Column(Text, default="")

    alert = relationship("AlertTrash", back_populates="method_data")


class ReportFormat(Base):
    __tablename__ = "report_formats"
    id = Column(Integer, primary_key=True, autoincrement=True)
    uuid = Column(String(36), unique=True, nullable=False, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    name = Column(String, nullable=False)
    extension = Column(String, default="")
    content_type = Column(String, default="")
    summary = Column(Text, default="")
    description = Column(Text, default="")
    signature = Column(Text, default="")
    trust = Column(Integer, default=TRUST_UNKNOWN, nullable=False)
    trust_time = Column(DateTime(timezone=True), default=_now)
    active = Column(Boolean, default=False, nullable=False)
    creation_time = Column(DateTime(timezone=True), default=_now)
    modification_time = Column(DateTime(timezone=True), default=_now)
    __table_args__ = ({"sqlite_autoincrement": True},)

    owner = relationship("User")
    params = relationship(
        "ReportFormatParam",
        back_populates="report_format",
        cascade="all, delete-orphan",
        order_by="ReportFormatParam.id",
    )


class ReportFormatParam(Base):
    __tablename__ = "report_format_params"
    id = Column(Integer, primary_key=True, autoincrement=True)
    report_format_id = Column(Integer, ForeignKey("report_formats.id"), nullable=False)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False)
    value = Column(Text, default="")
    type_min = Column(BigInteger, nullable=True)
    type_max = Column(BigInteger, nullable=True)
    type_regex = Column(Text, default="")
    fallback = Column(Text, nullable=False)
    __table_args__ = (
        sa.UniqueConstraint("report_format_id", "name"),
        {"sqlite_autoincrement": True},
    )

    report_format = relationship("ReportFormat", back_populates="params")
    options = relationship(
        "ReportFormatParamOption",
        back_populates="param",
        cascade="all, delete-orphan",
        order_by="ReportFormatParamOption.id",
    )


class ReportFormatParamOption(Base):
    __tablename__ = "report_format_param_options"
    id = Column(Integer, primary_key=True, autoincrement=True)
    param_id = Column(Integer, ForeignKey("report_format_params.id"), nullable=False)
    value = Column(Text, nullable=False)

    param = relationship("ReportFormatParam", back_populates="options")


class ReportFormatTrash(Base):
    __tablename__ = "report_formats_trash"
    id = Column(Integer, primary_key=True, autoincrement=True)
    uuid = Column(String(36), unique=True, nullable=False, index=True)
    original_uuid = Column(String(36), nullable=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    name = Column(String, nullable=False)
    extension = Column(String, default="")
    content_type = Column(String, default="")
    summary = Column(Text, default="")
    description = Column(Text, default="")
    signature = Column(Text, default="")
    trust = Column(Integer, default=TRUST_UNKNOWN, nullable=False)
    trust_time = Column(DateTime(timezone=True), default=_now)
    active = Column(Boolean, default=False, nullable=False)
    creation_time = Column(DateTime(timezone=True), default=_now)
    modification_time = Column(DateTime(timezone=True), default=_now)
    __table_args__ = ({"sqlite_autoincrement": True},)

    owner = relationship("User")
    params = relationship(
        "ReportFormatParamTrash",
        back_populates="report_format",
        cascade="all, delete-orphan",
        order_by="ReportFormatParamTrash.id",
    )


class ReportFormatParamTrash(Base):
    __tablename__ = "report_format_params_trash"
    id = Column(Integer, primary_key=True, autoincrement=True)
    report_format_id = Column(Integer, ForeignKey("report_formats_trash.id"), nullable=False)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False)
    value = Column(Text, default="")
    type_min = Column(BigInteger, nullable=True)
    type_max = Column(BigInteger, nullable=True)
    type_regex = Column(Text, default="")
    fallback = Column(Text, nullable=False)
    __table_args__ = ({"sqlite_autoincrement": True},)

    report_format = relationship("ReportFormatTrash", back_populates="params")
    options = relationship(
        "ReportFormatParamOptionTrash",
        back_populates="param",
        cascade="all, delete-orphan",
        order_by="ReportFormatParamOptionTrash.id",
    )


class ReportFormatParamOptionTrash(Base):
    __tablename__ = "report_format_param_options_trash"
    id = Column(Integer, primary_key=True, autoincrement=True)
    param_id = Column(Integer, ForeignKey("report_format_params_trash.id"), nullable=False)
    value = Column(Text, nullable=False)

    param = relationship("ReportFormatParamTrash", back_populates="options")
