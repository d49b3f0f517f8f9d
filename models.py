from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from datetime import datetime, timezone

db = SQLAlchemy()


def utcnow():
    """Naive UTC timestamp, the form DateTime columns are stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(UserMixin, db.Model):
    __tablename__ = 'users'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    is_team = db.Column(db.Boolean, default=False, nullable=False)
    email = db.Column(db.String(200), unique=True, nullable=False)
    password = db.Column(db.String(200), nullable=False)
    confirmed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)

    # Relationships
    team = db.relationship('Team', backref='owner', uselist=False, lazy=True)
    submissions = db.relationship('Submission', backref='user', lazy=True)
    progress = db.relationship('UserProgress', backref='user', uselist=False, lazy=True)


class Team(db.Model):
    __tablename__ = 'teams'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)


class Admin(db.Model):
    __tablename__ = 'admins'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)


class Riddle(db.Model):
    __tablename__ = 'riddles'
    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.Integer, unique=True, nullable=False)
    question = db.Column(db.Text, nullable=False)
    answer = db.Column(db.String(200), nullable=False)
    hint1 = db.Column(db.Text, nullable=False)
    hint2 = db.Column(db.Text, nullable=False)
    riddle_type = db.Column(db.String(50))
    reference_image_url = db.Column(db.String(500))
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    submissions = db.relationship('Submission', backref='riddle', lazy=True)

    def to_dict(self, include_answer=False):
        data = {
            'id': self.id,
            'order_number': self.order_number,
            'question': self.question,
            'riddle_type': self.riddle_type,
            'reference_image_url': self.reference_image_url,
            'is_active': self.is_active,
        }
        if include_answer:
            data.update(answer=self.answer, hint1=self.hint1, hint2=self.hint2)
        return data


class UserProgress(db.Model):
    __tablename__ = 'user_progress'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), unique=True, nullable=False)
    current_riddle_id = db.Column(db.Integer, db.ForeignKey('riddles.id'), nullable=False)
    hint1_visible = db.Column(db.Boolean, default=False, nullable=False)
    hint2_visible = db.Column(db.Boolean, default=False, nullable=False)
    start_time = db.Column(db.DateTime, default=utcnow)
    completed_at = db.Column(db.DateTime)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)


class Submission(db.Model):
    __tablename__ = 'submissions'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    riddle_id = db.Column(db.Integer, db.ForeignKey('riddles.id'), nullable=False)
    answer = db.Column(db.String(200), nullable=False)
    image_path = db.Column(db.String(300))
    # None = pending review
    is_approved = db.Column(db.Boolean, nullable=True)
    submitted_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.UniqueConstraint('user_id', 'riddle_id', name='unique_user_riddle'),
        db.Index('ix_submission_is_approved', 'is_approved'),
        db.Index('ix_submission_submitted_at', 'submitted_at'),
    )


class AppSettings(db.Model):
    __tablename__ = 'app_settings'
    id = db.Column(db.Integer, primary_key=True)
    riddles_visible = db.Column(db.Boolean, default=False, nullable=False)


class LeaderboardEntry(db.Model):
    __tablename__ = 'leaderboard'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), unique=True, nullable=False)
    score = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        db.Index('ix_leaderboard_score', 'score'),
    )
