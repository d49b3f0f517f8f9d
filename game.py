"""Riddle progression: the visibility gate, each player's current riddle with
its time-released hints, and answer intake.

A player's position lives in exactly one ``UserProgress`` row. The only
transition that moves it is ``advance``, called by ``submit_answer`` inside the
same commit as the accepted ``Submission``.
"""
import logging
import math
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from errors import AlreadySubmitted, BackendUnavailable, NotFound, WrongAnswer
from models import db, utcnow, AppSettings, Riddle, Submission, UserProgress
from storage import SUBMISSIONS_BUCKET, build_object_path, storage

logger = logging.getLogger(__name__)

SETTINGS_ID = 1

ACTIVE = 'active'
HIDDEN = 'hidden'
COMPLETE = 'complete'


# ==================== VISIBILITY GATE ====================

def get_settings():
    settings = db.session.get(AppSettings, SETTINGS_ID)
    if settings is None:
        settings = AppSettings(id=SETTINGS_ID, riddles_visible=False)
        db.session.add(settings)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            settings = db.session.get(AppSettings, SETTINGS_ID)
    return settings


def riddles_visible():
    return get_settings().riddles_visible


def set_riddles_visible(visible):
    settings = get_settings()
    settings.riddles_visible = bool(visible)
    db.session.commit()
    logger.info(f"Riddles are now {'visible' if settings.riddles_visible else 'hidden'}")
    return settings.riddles_visible


# ==================== HINTS ====================

@dataclass(frozen=True)
class HintState:
    hint1: bool
    hint2: bool
    seconds_until_next: Optional[int] = None


def hints_visible(now, start_time, hint1_delay, hint2_delay):
    """Which hints have been earned ``now`` for a riddle started at ``start_time``."""
    elapsed = (now - start_time).total_seconds()
    hint1 = elapsed >= hint1_delay
    hint2 = elapsed >= hint2_delay
    if not hint1:
        remaining = math.ceil(hint1_delay - elapsed)
    elif not hint2:
        remaining = math.ceil(hint2_delay - elapsed)
    else:
        remaining = None
    return HintState(hint1, hint2, remaining)


def hint_delays():
    return current_app.config['HINT1_DELAY_SECONDS'], current_app.config['HINT2_DELAY_SECONDS']


def _sync_hints(progress, now):
    """Persist hints that crossed their threshold and return what may be shown."""
    earned = hints_visible(now, progress.start_time, *hint_delays())
    changed = False
    if earned.hint1 and not progress.hint1_visible:
        progress.hint1_visible = True
        changed = True
    if earned.hint2 and not progress.hint2_visible:
        progress.hint2_visible = True
        changed = True
    if changed:
        db.session.commit()
    return HintState(progress.hint1_visible, progress.hint2_visible, earned.seconds_until_next)


# ==================== RIDDLE SEQUENCE ====================

def _sequence():
    return Riddle.query.filter_by(is_active=True)


def first_riddle():
    return _sequence().order_by(Riddle.order_number.asc()).first()


def next_riddle(riddle):
    return (
        _sequence()
        .filter(Riddle.order_number > riddle.order_number)
        .order_by(Riddle.order_number.asc())
        .first()
    )


def riddle_position(riddle):
    """1-based position of ``riddle`` among the active riddles."""
    return _sequence().filter(Riddle.order_number < riddle.order_number).count() + 1


@dataclass
class RiddleView:
    status: str
    riddle: Optional[Riddle] = None
    position: Optional[int] = None
    total: Optional[int] = None
    hints: Optional[HintState] = None

    def to_dict(self):
        data = {'status': self.status, 'riddle': None}
        if self.riddle is not None:
            riddle = self.riddle.to_dict()
            riddle.update(
                position=self.position,
                total=self.total,
                hint1=self.riddle.hint1 if self.hints.hint1 else None,
                hint2=self.riddle.hint2 if self.hints.hint2 else None,
                seconds_until_next_hint=self.hints.seconds_until_next,
            )
            data['riddle'] = riddle
        return data


def get_or_create_progress(user, now=None):
    progress = UserProgress.query.filter_by(user_id=user.id).first()
    if progress is not None:
        return progress

    first = first_riddle()
    if first is None:
        raise NotFound('No riddle found.')

    progress = UserProgress(
        user_id=user.id,
        current_riddle_id=first.id,
        hint1_visible=False,
        hint2_visible=False,
        start_time=now or utcnow(),
    )
    db.session.add(progress)
    try:
        db.session.commit()
    except IntegrityError:
        # created by a concurrent request
        db.session.rollback()
        return UserProgress.query.filter_by(user_id=user.id).one()
    logger.info(f"Started progress for user {user.id} at riddle {first.id}")
    return progress


def current_riddle(user, admin=False, now=None):
    """The riddle ``user`` should be working on right now."""
    now = now or utcnow()
    if not admin and not riddles_visible():
        return RiddleView(HIDDEN)

    progress = get_or_create_progress(user, now)
    if progress.completed_at is not None:
        return RiddleView(COMPLETE)

    riddle = db.session.get(Riddle, progress.current_riddle_id)
    if riddle is None:
        return RiddleView(COMPLETE)

    if not riddle.is_active:
        # deactivated while the user was on it
        inactive_id = riddle.id
        riddle = advance(progress, now)
        db.session.commit()
        logger.info(f"Moved user {user.id} past inactive riddle {inactive_id}")
        if riddle is None:
            return RiddleView(COMPLETE)

    if progress.start_time is None:
        progress.start_time = now
        db.session.commit()

    return RiddleView(
        ACTIVE,
        riddle=riddle,
        position=riddle_position(riddle),
        total=_sequence().count(),
        hints=_sync_hints(progress, now),
    )


def advance(progress, now=None):
    """Move ``progress`` past its current riddle. Does not commit.

    Returns the new current riddle, or None when the sequence is exhausted, in
    which case ``current_riddle_id`` is kept and ``completed_at`` is set.
    """
    now = now or utcnow()
    current = db.session.get(Riddle, progress.current_riddle_id)
    following = next_riddle(current) if current is not None else None
    if following is None:
        progress.completed_at = now
        return None

    progress.current_riddle_id = following.id
    progress.hint1_visible = False
    progress.hint2_visible = False
    progress.start_time = now
    return following


# ==================== SUBMISSION INTAKE ====================

def answer_matches(given, expected, strip_whitespace=True):
    if strip_whitespace:
        given, expected = given.strip(), expected.strip()
    return given.casefold() == expected.casefold()


def has_submitted(user_id, riddle_id):
    return Submission.query.filter_by(user_id=user_id, riddle_id=riddle_id).first() is not None


@dataclass
class SubmissionResult:
    submission: Submission
    next_riddle: Optional[Riddle]

    @property
    def completed(self):
        return self.next_riddle is None


def _discard_upload(image_path):
    if image_path:
        storage.remove(SUBMISSIONS_BUCKET, image_path)


def submit_answer(user, riddle_id, answer_text, image=None, admin=False, now=None):
    """Check ``answer_text`` for the user's current riddle and record it.

    The existence check before the insert is best-effort; the
    ``unique_user_riddle`` constraint decides concurrent attempts.
    """
    now = now or utcnow()
    if not admin and not riddles_visible():
        raise NotFound('Riddles are currently not available. Please check back later.')

    riddle = db.session.get(Riddle, riddle_id)
    if riddle is None or not riddle.is_active:
        raise NotFound('No riddle found.')

    if has_submitted(user.id, riddle.id):
        raise AlreadySubmitted()

    progress = UserProgress.query.filter_by(user_id=user.id).first()
    if progress is None or progress.completed_at is not None or progress.current_riddle_id != riddle.id:
        raise NotFound('This is not your current riddle.')

    answer_text = answer_text or ''
    if not answer_matches(answer_text, riddle.answer, current_app.config['ANSWER_STRIP_WHITESPACE']):
        logger.info(f"Wrong answer from user {user.id} for riddle {riddle.id}")
        raise WrongAnswer()

    image_path = None
    if image is not None and image.filename:
        image_path = build_object_path(user.id, image.filename)
        storage.upload(SUBMISSIONS_BUCKET, image_path, image)

    submission = Submission(
        user_id=user.id,
        riddle_id=riddle.id,
        answer=answer_text,
        image_path=image_path,
        is_approved=None,
        submitted_at=now,
    )
    try:
        db.session.add(submission)
        following = advance(progress, now)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        _discard_upload(image_path)
        raise AlreadySubmitted()
    except SQLAlchemyError as e:
        db.session.rollback()
        _discard_upload(image_path)
        logger.error(f"Could not record submission of user {user.id} for riddle {riddle.id}: {e}")
        raise BackendUnavailable() from e

    if following is None:
        logger.info(f"User {user.id} solved riddle {riddle.id} and completed the hunt")
    else:
        logger.info(f"User {user.id} solved riddle {riddle.id}, advanced to riddle {following.id}")
    return SubmissionResult(submission, following)


# ==================== COUNTDOWN ====================

def parse_countdown_target(value):
    """Naive UTC datetime for an ISO-8601 ``value``; None when unset."""
    if not value:
        return None
    target = datetime.fromisoformat(value)
    if target.tzinfo is not None:
        target = target.astimezone(timezone.utc).replace(tzinfo=None)
    return target


def time_left(target, now=None):
    """Hours, minutes and seconds until ``target``; all zero once it has passed.

    Display only: reaching the target does not open the visibility gate.
    """
    now = now or utcnow()
    remaining = 0
    if target is not None:
        remaining = max(0, int((target - now).total_seconds()))
    return {
        'hours': remaining // 3600,
        'minutes': remaining // 60 % 60,
        'seconds': remaining % 60,
    }
