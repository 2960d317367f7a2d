import enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from KoriBackend.database import Base
from KoriBackend.models.columns import new_id, utcnow


class UserRole(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"


class AuthProvider(str, enum.Enum):
    LOCAL = "local"
    GOOGLE = "google"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    full_name = Column(String(100), nullable=False)
    # Always stored lower-cased, so uniqueness is case-insensitive
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=True)
    role = Column(String(16), nullable=False, default=UserRole.USER.value)
    is_verified = Column(Boolean, nullable=False, default=False)
    auth_provider = Column(String(16), nullable=False, default=AuthProvider.LOCAL.value)
    google_id = Column(String(255), unique=True, nullable=True)
    avatar = Column(Text, nullable=True)
    login_attempts = Column(Integer, nullable=False, default=0)
    lock_until = Column(DateTime, nullable=True)
    reset_password_token = Column(String(128), index=True, nullable=True)
    reset_password_expire = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    refresh_tokens = relationship(
        "RefreshToken",
        back_populates="user",
        order_by="RefreshToken.id",
        cascade="all, delete-orphan",
    )
    generated_images = relationship(
        "GeneratedImage",
        back_populates="user",
        order_by="GeneratedImage.id",
        cascade="all, delete-orphan",
    )

    def is_locked(self, now=None) -> bool:
        now = now or utcnow()
        return bool(self.lock_until and self.lock_until > now)


# One row per issued refresh token; the list is the revocation check
class RefreshToken(Base):
    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    token = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="refresh_tokens")


class GeneratedImage(Base):
    __tablename__ = "generated_images"

    __table_args__ = (
        Index("ix_generated_images_user_id_created_at", "user_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    image_url = Column(Text, nullable=False)
    s3_key = Column(String(512), nullable=True)
    prompt = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="generated_images")
