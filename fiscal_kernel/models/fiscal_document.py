"""
Module: fiscal_kernel.models.fiscal_document
Responsibility: ORM persistence for issued sales / invoices.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain DTOs only.

Invariants enforced:
    - document_number is unique (uq constraint).
    - (establishment_code, point_of_sale_code, sequence) is unique.
    - Identity fields never change after INSERT (ORM listener); only
      ``details`` and ``updated_at`` move, through the modification window.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fiscal_kernel.db.base import Base, UTCDateTime, UUIDString
from fiscal_kernel.domain.dtos import FiscalDocument


class FiscalDocumentModel(Base):
    __tablename__ = "fiscal_documents"

    __table_args__ = (
        UniqueConstraint("document_number", name="uq_fiscal_document_number"),
        UniqueConstraint(
            "establishment_code",
            "point_of_sale_code",
            "sequence",
            name="uq_fiscal_document_sequence",
        ),
        Index("idx_fiscal_document_issuer", "issued_by"),
    )

    document_number: Mapped[str] = mapped_column(String(15), nullable=False)
    establishment_code: Mapped[str] = mapped_column(String(3), nullable=False)
    point_of_sale_code: Mapped[str] = mapped_column(String(3), nullable=False)
    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False)
    permit_number_used: Mapped[str] = mapped_column(String(20), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    # Null on rows written before creator attribution existed.
    issued_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return f"<FiscalDocument {self.document_number}>"

    def to_dto(self) -> FiscalDocument:
        return FiscalDocument(
            id=self.id,
            document_number=self.document_number,
            establishment_code=self.establishment_code,
            point_of_sale_code=self.point_of_sale_code,
            sequence=self.sequence,
            permit_number_used=self.permit_number_used,
            issued_at=self.issued_at,
            issued_by=self.issued_by,
            details=dict(self.details or {}),
            updated_at=self.updated_at,
        )

    @classmethod
    def from_dto(cls, dto: FiscalDocument) -> "FiscalDocumentModel":
        return cls(
            id=dto.id,
            document_number=dto.document_number,
            establishment_code=dto.establishment_code,
            point_of_sale_code=dto.point_of_sale_code,
            sequence=dto.sequence,
            permit_number_used=dto.permit_number_used,
            issued_at=dto.issued_at,
            issued_by=dto.issued_by,
            details=dto.details,
            updated_at=dto.updated_at,
        )
