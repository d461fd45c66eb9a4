"""Modele historique DeviceList / Legacy DeviceList model.

Table plate anterieure au modele Device/Room/Assignment, conservee pour la
validation des tablettes appairees a l'ancienne.
Flat table predating the Device/Room/Assignment model, kept to validate
tablets paired under the old scheme.
"""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from room_registry.database import Base


class DeviceList(Base):
    __tablename__ = "device_lists"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    device_name: Mapped[str | None] = mapped_column(String(100))
    device_classroom: Mapped[str | None] = mapped_column(String(100), index=True)
    device_url: Mapped[str | None] = mapped_column(String(255))  # base64("{name}_{CLASSROOM}")

    def __repr__(self) -> str:
        return f"<DeviceList {self.device_name} {self.device_classroom}>"
