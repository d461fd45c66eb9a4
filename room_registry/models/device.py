"""Modele Tablette / Display tablet model."""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from room_registry.database import Base


class Device(Base):
    """Tablette identifiee par un UUID genere cote client / Tablet identified by a client-generated UUID.

    Jamais supprimee par le registre : le desappairage retire l'affectation, pas l'appareil.
    """
    __tablename__ = "devices"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    manufacturer: Mapped[str | None] = mapped_column(String(100))
    model: Mapped[str | None] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    # Relations
    registration_requests: Mapped[list["RegistrationRequest"]] = relationship(
        back_populates="device", cascade="all, delete-orphan", passive_deletes=True,
    )
    assignment: Mapped["DeviceAssignment | None"] = relationship(
        back_populates="device", cascade="all, delete-orphan", passive_deletes=True,
    )

    @property
    def display_name(self) -> str:
        return f"{self.manufacturer or ''} {self.model or ''}".strip()

    def __repr__(self) -> str:
        return f"<Device {self.id}>"
