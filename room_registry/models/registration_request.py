"""Modele Demande d'appairage / Pairing request model."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from room_registry.database import Base

_OPEN = text("NOT is_completed")


class RegistrationRequest(Base):
    """Demande en cours avec code a 6 chiffres / In-flight request holding a 6-digit code.

    Active = non terminee et non expiree. L'expiration est un predicat de lecture,
    les lignes expirees peuvent subsister jusqu'a la purge.
    Active = not completed and not expired. Expiry is a read predicate,
    expired rows may linger until purged.
    """
    __tablename__ = "registration_requests"
    __table_args__ = (
        # Un code ouvert est unique / An open code is unique
        Index(
            "uq_registration_requests_open_code", "code", unique=True,
            sqlite_where=_OPEN, postgresql_where=_OPEN,
        ),
        # Une seule demande ouverte par appareil / One open request per device
        Index(
            "uq_registration_requests_open_device", "device_id", unique=True,
            sqlite_where=_OPEN, postgresql_where=_OPEN,
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    device_id: Mapped[str] = mapped_column(ForeignKey("devices.id", ondelete="CASCADE"), nullable=False, index=True)
    code: Mapped[str] = mapped_column(String(6), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    # Relations
    device: Mapped["Device"] = relationship(back_populates="registration_requests")

    def __repr__(self) -> str:
        return f"<RegistrationRequest {self.code} device={self.device_id}>"
