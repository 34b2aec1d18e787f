"""
Round-scoped stage content: documents and discussion notes.

The lifecycle engine only relies on ``(stage_id, round_number)``; every
other column belongs to the content modules that own these tables.
"""

from datetime import datetime, timezone

from stage_engine.models import db, new_id


class Document(db.Model):
    """File attached to a stage round."""

    __tablename__ = "documents"

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    stage_id = db.Column(
        db.String(32),
        db.ForeignKey("stages.id", ondelete="CASCADE"),
        nullable=False,
    )
    round_number = db.Column(db.Integer, nullable=False, default=1)

    name = db.Column(db.String(255), nullable=False)
    url = db.Column(db.String(1024), nullable=True)
    uploaded_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_documents_stage_round", "stage_id", "round_number"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stage_id": self.stage_id,
            "round_number": self.round_number,
            "name": self.name,
            "url": self.url,
            "uploaded_by": self.uploaded_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class DiscussionNote(db.Model):
    """Discussion note posted against a stage round."""

    __tablename__ = "discussion_notes"

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    stage_id = db.Column(
        db.String(32),
        db.ForeignKey("stages.id", ondelete="CASCADE"),
        nullable=False,
    )
    round_number = db.Column(db.Integer, nullable=False, default=1)

    content = db.Column(db.Text, nullable=False)
    is_pinned = db.Column(db.Boolean, nullable=False, default=False)
    author_id = db.Column(db.String(64), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_discussion_notes_stage_round", "stage_id", "round_number"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stage_id": self.stage_id,
            "round_number": self.round_number,
            "content": self.content,
            "is_pinned": self.is_pinned,
            "author_id": self.author_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
