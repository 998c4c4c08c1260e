from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from shared.database import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class KeyPairRecord(Base):
    """Stored key/certificate pair.

    The auto-increment id records insertion order, which defines "most
    recently stored" for a common name.
    """

    __tablename__ = "key_pairs"

    pair_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    common_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    # Decimal text keeps full precision for serials beyond 64 bits
    serial_number: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    certificate_pem: Mapped[str] = mapped_column(Text, nullable=False)
    private_key_pem_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


class SerialAllocation(Base):
    __tablename__ = "serial_allocations"

    serial: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    allocated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


class RevocationListRecord(Base):
    """Single-row holder of the current signed CRL."""

    __tablename__ = "revocation_lists"

    SINGLETON_ID = 1

    crl_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    crl_pem: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )
