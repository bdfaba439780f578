from datetime import datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import String, DateTime, Text, Boolean, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class MarketplaceApp(Base):
    """Marketplace listing. Only the cached preview fields are written here."""
    __tablename__ = "apps"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    is_draft: Mapped[bool] = mapped_column(Boolean, default=True)
    preview_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    screenshot: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class DeploymentStatus(str, Enum):
    PREVIEW = "PREVIEW"
    DEPLOYING = "DEPLOYING"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"
    FAILED = "FAILED"


class OrgDeployment(Base):
    """An organization's deployment of a marketplace app."""
    __tablename__ = "org_apps"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    app_id: Mapped[str] = mapped_column(String(36), ForeignKey("apps.id"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default=DeploymentStatus.PREVIEW.value)
    instance_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    url: Mapped[str | None] = mapped_column(Text, nullable=True)
    subdomain: Mapped[str | None] = mapped_column(String(63), nullable=True)
    deployed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
