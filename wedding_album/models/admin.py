import uuid
from datetime import datetime
from sqlalchemy import Boolean, Column, String, DateTime
from wedding_album.db import Base


class AdminAccount(Base):
    __tablename__ = "admin_account"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, nullable=False, unique=True)
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    # Always True; the unique index allows exactly one row.
    singleton = Column(Boolean, default=True, nullable=False, unique=True)


class RevokedToken(Base):
    __tablename__ = "revoked_token"
    jti = Column(String(64), primary_key=True)
    admin_id = Column(String(36), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime, default=datetime.utcnow, nullable=False)
