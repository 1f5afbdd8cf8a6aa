from sqlalchemy import Column, String, DateTime, func
from carchat.core.db import Base
from carchat.models.ids import new_id


class Profile(Base):
    __tablename__ = "profiles"

    # same id as the auth provider's user id
    id = Column(String(36), primary_key=True, default=new_id)

    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(100), nullable=False)
    phone = Column(String(30), nullable=True)
    avatar_url = Column(String(1024), nullable=True)
    city = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
