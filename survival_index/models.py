from __future__ import annotations

from datetime import datetime, UTC
from enum import Enum

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ProjectType(str, Enum):
    OPEN_SOURCE = "open-source"
    SAAS = "saas"
    HYBRID = "hybrid"


class Category(str, Enum):
    DATABASES = "Databases & Data Storage"
    WEB_FRAMEWORKS = "Web Frameworks & Libraries"
    BACKEND_FRAMEWORKS = "Backend & API Frameworks"
    DEVOPS = "DevOps & Infrastructure"
    AI_ML = "AI & Machine Learning"
    COLLABORATION = "Collaboration & Productivity"
    DEVELOPER_TOOLS = "Developer Tools"
    SECURITY = "Security & Authentication"
    CONTENT_MANAGEMENT = "Content Management"
    COMMUNICATION = "Communication & Messaging"
    DESIGN = "Design & Creative Tools"
    MONITORING = "Analytics & Monitoring"
    ECOMMERCE = "E-commerce & Payments"
    MOBILE = "Mobile Development"
    TESTING = "Testing & QA"
    CLOUD = "Cloud & Hosting"
    NETWORKING = "Networking & Protocols"
    DATA_SCIENCE = "Data Science & Analytics"
    IOT = "IoT & Embedded Systems"
    GAMING = "Gaming & Graphics"
    AUDIO_VIDEO = "Audio & Video"
    BLOCKCHAIN = "Blockchain & Web3"
    EDUCATION = "Education & Learning"
    HEALTHCARE = "Healthcare & Medical"
    FINANCE = "Finance & Accounting"


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Base(DeclarativeBase):
    pass


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # ProjectType value
    category: Mapped[str] = mapped_column(String(100), nullable=False)  # Category value
    description: Mapped[str] = mapped_column(Text, nullable=False)
    url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    github_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    logo: Mapped[str | None] = mapped_column(String(500), nullable=True)
    tags: Mapped[str | None] = mapped_column(Text, nullable=True)  # comma-separated
    year_created: Mapped[int | None] = mapped_column(Integer, nullable=True)
    self_hostable: Mapped[bool] = mapped_column(Boolean, default=False)
    license: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tech_stack: Mapped[str | None] = mapped_column(Text, nullable=True)
    alternative_to: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    ai_rating: Mapped[AIRating | None] = relationship(
        "AIRating", back_populates="project", uselist=False, cascade="all, delete-orphan",
    )
    user_ratings: Mapped[list[UserRating]] = relationship(
        "UserRating", back_populates="project", cascade="all, delete-orphan",
    )


class AIRating(Base):
    __tablename__ = "ai_ratings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(Integer, ForeignKey("projects.id"), nullable=False, unique=True)
    insight_compression: Mapped[float] = mapped_column(Float, nullable=False)
    substrate_efficiency: Mapped[float] = mapped_column(Float, nullable=False)
    broad_utility: Mapped[float] = mapped_column(Float, nullable=False)
    awareness: Mapped[float] = mapped_column(Float, nullable=False)
    agent_friction: Mapped[float] = mapped_column(Float, nullable=False)
    human_coefficient: Mapped[float] = mapped_column(Float, nullable=False)
    survival_score: Mapped[float] = mapped_column(Float, nullable=False)
    tier: Mapped[str] = mapped_column(String(1), nullable=False)  # S | A | B | C | D | F
    confidence: Mapped[float] = mapped_column(Float, default=0.0)
    reasoning_json: Mapped[str] = mapped_column(Text, default="{}")
    suggestions_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    model: Mapped[str] = mapped_column(String(100), default="")
    github_stars: Mapped[int | None] = mapped_column(Integer, nullable=True)
    github_forks: Mapped[int | None] = mapped_column(Integer, nullable=True)
    github_issues: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_analyzed_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    project: Mapped[Project] = relationship("Project", back_populates="ai_rating")


class UserRating(Base):
    __tablename__ = "user_ratings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(Integer, ForeignKey("projects.id"), nullable=False)
    insight_compression: Mapped[float] = mapped_column(Float, nullable=False)
    substrate_efficiency: Mapped[float] = mapped_column(Float, nullable=False)
    broad_utility: Mapped[float] = mapped_column(Float, nullable=False)
    awareness: Mapped[float] = mapped_column(Float, nullable=False)
    agent_friction: Mapped[float] = mapped_column(Float, nullable=False)
    human_coefficient: Mapped[float] = mapped_column(Float, nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    project: Mapped[Project] = relationship("Project", back_populates="user_ratings")


class ProjectSubmission(Base):
    __tablename__ = "project_submissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    github_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    logo: Mapped[str | None] = mapped_column(String(500), nullable=True)
    tags: Mapped[str | None] = mapped_column(Text, nullable=True)
    year_created: Mapped[int | None] = mapped_column(Integer, nullable=True)
    self_hostable: Mapped[bool] = mapped_column(Boolean, default=False)
    license: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tech_stack: Mapped[str | None] = mapped_column(Text, nullable=True)
    alternative_to: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    submitter_email: Mapped[str | None] = mapped_column(String(300), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=SubmissionStatus.PENDING.value)
    reviewed_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    project_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("projects.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)
