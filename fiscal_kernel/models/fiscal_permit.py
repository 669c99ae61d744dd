"""
Module: fiscal_kernel.models.fiscal_permit
Responsibility: ORM persistence for the timbrado (fiscal permit) embedded in
    the company profile.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain DTOs only.

Invariants enforced:
    - Permits are never deleted (ORM listener).  Reconfiguration stamps
      ``superseded_at`` on the current row and inserts a new one, so exactly
      one row has ``superseded_at IS NULL``.
"""

from datetime import date, datetime

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from fiscal_kernel.db.base import TrackedBase, UTCDateTime
from fiscal_kernel.domain.dtos import FiscalPermit


class FiscalPermitModel(TrackedBase):
    __tablename__ = "fiscal_permits"

    __table_args__ = (Index("idx_fiscal_permit_current", "superseded_at"),)

    permit_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    valid_from: Mapped[date | None] = mapped_column(nullable=True)
    valid_to: Mapped[date | None] = mapped_column(nullable=True)
    establishment_code: Mapped[str | None] = mapped_column(String(3), nullable=True)
    point_of_sale_code: Mapped[str | None] = mapped_column(String(3), nullable=True)
    ruc: Mapped[str | None] = mapped_column(String(20), nullable=True)

    superseded_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return f"<FiscalPermit {self.permit_number} to {self.valid_to}>"

    def to_dto(self) -> FiscalPermit:
        return FiscalPermit(
            id=self.id,
            permit_number=self.permit_number,
            valid_from=self.valid_from,
            valid_to=self.valid_to,
            establishment_code=self.establishment_code,
            point_of_sale_code=self.point_of_sale_code,
            ruc=self.ruc,
            superseded_at=self.superseded_at,
        )

    @classmethod
    def from_dto(cls, dto: FiscalPermit, created_by_id) -> "FiscalPermitModel":
        return cls(
            permit_number=dto.permit_number,
            valid_from=dto.valid_from,
            valid_to=dto.valid_to,
            establishment_code=dto.establishment_code,
            point_of_sale_code=dto.point_of_sale_code,
            ruc=dto.ruc,
            created_by_id=created_by_id,
        )
