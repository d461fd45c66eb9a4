"""Modele Salle / Room model."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from room_registry.database import Base


class Room(Base):
    """Salle physique, nom identique au planning (ex. "WI WI1-308") / Physical room named as in the timetable."""
    __tablename__ = "rooms"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)  # Comparaison exacte, sensible a la casse

    # Relations
    assignments: Mapped[list["DeviceAssignment"]] = relationship(back_populates="room", passive_deletes=True)

    def __repr__(self) -> str:
        return f"<Room {self.name}>"
