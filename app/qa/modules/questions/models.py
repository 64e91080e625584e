from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.qa.models import Base, User
from app.qa.modules.tags.models import question_tags

if TYPE_CHECKING:
    from app.qa.modules.tags.models import Tag


STATUS_DRAFT = "Draft"
STATUS_PUBLISHED = "Published"
STATUS_RESOLVED = "Resolved"

# Statuses an author may pick on the question form; Resolved is set by accepting an answer.
EDITABLE_STATUSES = (STATUS_DRAFT, STATUS_PUBLISHED)
STATUSES = (STATUS_DRAFT, STATUS_PUBLISHED, STATUS_RESOLVED)

VOTE_TARGET_QUESTION = "question"
VOTE_TARGET_ANSWER = "answer"


class Question(Base):
    __tablename__ = "questions"
    __table_args__ = (
        Index("idx_questions_status_created", "status", "created_at"),
        Index("idx_questions_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    # Derived from title on insert only.
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)

    answer_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    vote_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Draft -> Published -> Resolved
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_PUBLISHED)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped[User] = relationship("User", lazy="selectin")
    tags: Mapped[list["Tag"]] = relationship(
        "Tag",
        secondary=question_tags,
        lazy="selectin",
        order_by="Tag.name",
    )
    answers: Mapped[list["Answer"]] = relationship(
        "Answer",
        back_populates="question",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="select",
    )
    favorites: Mapped[list["Favorite"]] = relationship(
        "Favorite",
        back_populates="question",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="select",
    )

    @property
    def is_draft(self) -> bool:
        return self.status == STATUS_DRAFT

    @property
    def is_resolved(self) -> bool:
        return self.status == STATUS_RESOLVED

    @property
    def tag_values(self) -> str:
        return ", ".join(t.name for t in self.tags)


class Answer(Base):
    __tablename__ = "answers"
    __table_args__ = (
        Index("idx_answers_question_supports", "question_id", "supports"),
        Index("idx_answers_question_created", "question_id", "created_at"),
        # At most one adopted answer per question.
        Index(
            "uq_answers_one_adopted",
            "question_id",
            unique=True,
            sqlite_where=text("adopted_at IS NOT NULL"),
            postgresql_where=text("adopted_at IS NOT NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    question_id: Mapped[int] = mapped_column(ForeignKey("questions.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)

    content: Mapped[str] = mapped_column(Text, nullable=False)
    supports: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Non-null on the single accepted answer of a question.
    adopted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    question: Mapped[Question] = relationship("Question", back_populates="answers", lazy="selectin")
    user: Mapped[User] = relationship("User", lazy="selectin")

    @property
    def is_adopted(self) -> bool:
        return self.adopted_at is not None


class Favorite(Base):
    __tablename__ = "question_favorites"
    __table_args__ = (
        UniqueConstraint("user_id", "question_id", name="uq_favorite_user_question"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    question_id: Mapped[int] = mapped_column(ForeignKey("questions.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    question: Mapped[Question] = relationship("Question", back_populates="favorites")


class Vote(Base):
    """One active vote per (user, target); target is a question or an answer."""

    __tablename__ = "votes"
    __table_args__ = (
        UniqueConstraint("user_id", "target_type", "target_id", name="uq_vote_user_target"),
        Index("idx_votes_target", "target_type", "target_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    target_type: Mapped[str] = mapped_column(String(16), nullable=False)  # question | answer
    target_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
