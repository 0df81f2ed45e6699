"""LineCodeMapping ORM model."""
from typing import Optional

from sqlalchemy import Boolean, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from partmatch.db.base import Base, TimestampMixin, UUIDMixin


class LineCodeMappingRow(Base, UUIDMixin, TimestampMixin):
    """Client line code → supplier line code, global (NULL project) or per project."""

    __tablename__ = "line_code_mappings"

    project_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    client_line_code: Mapped[str] = mapped_column(String(16), nullable=False)
    supplier_line_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    manufacturer_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true")

    def __repr__(self) -> str:
        return (
            f"<LineCodeMappingRow(id={self.id}, client='{self.client_line_code}', "
            f"supplier='{self.supplier_line_code}')>"
        )


Index(
    "uq_line_code_mappings_client",
    func.coalesce(LineCodeMappingRow.project_id, ""),
    LineCodeMappingRow.client_line_code,
    unique=True,
)
