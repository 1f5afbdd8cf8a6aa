from sqlalchemy import Boolean, Column, Integer, String, Text, ForeignKey, DateTime, JSON, func
from carchat.core.db import Base
from carchat.models.ids import new_id


class Car(Base):
    __tablename__ = "cars"

    id = Column(String(36), primary_key=True, default=new_id)

    # seller
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)

    brand = Column(String(100), nullable=False)
    model = Column(String(100), nullable=False)
    year = Column(Integer, nullable=False)
    price = Column(Integer, nullable=False)
    location = Column(String(200), nullable=True)
    description = Column(Text, nullable=True)
    images = Column(JSON, nullable=False, default=list)
    is_sold = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
