"""Modele Affectation tablette-salle / Device-room assignment model."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from room_registry.database import Base


class DeviceAssignment(Base):
    """Appairage durable tablette-salle / Durable tablet-room pairing.

    Au plus une affectation par tablette (device_id unique). La secret_key est emise
    une seule fois et conservee lors d'un changement de salle.
    At most one assignment per tablet (unique device_id). The secret_key is issued
    once and kept across room changes.
    """
    __tablename__ = "device_assignments"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    device_id: Mapped[str] = mapped_column(
        ForeignKey("devices.id", ondelete="CASCADE"), unique=True, nullable=False,
    )
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False, index=True)
    secret_key: Mapped[str] = mapped_column(String(64), nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    # Relations
    device: Mapped["Device"] = relationship(back_populates="assignment")
    room: Mapped["Room"] = relationship(back_populates="assignments")

    def __repr__(self) -> str:
        return f"<DeviceAssignment device={self.device_id} room={self.room_id}>"
