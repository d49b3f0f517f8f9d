"""Admin review of submitted answers."""
import logging

from flask import current_app

from auth import resolve_display_name
from errors import NotFound, ValidationFailed
from models import db, Submission
from storage import SUBMISSIONS_BUCKET, storage

logger = logging.getLogger(__name__)


def _format_submission(submission):
    display = resolve_display_name(submission.user)
    signed_image_url = None
    if submission.image_path:
        signed_image_url = storage.create_signed_url(
            SUBMISSIONS_BUCKET,
            submission.image_path,
            current_app.config['SIGNED_URL_EXPIRY_SECONDS'],
        )
    return {
        'id': submission.id,
        'user_id': submission.user_id,
        'user_name': display.name,
        'is_team': display.is_team,
        'riddle_id': submission.riddle_id,
        'riddle_question': submission.riddle.question if submission.riddle else None,
        'answer': submission.answer,
        'image_path': submission.image_path,
        'signed_image_url': signed_image_url,
        'submitted_at': submission.submitted_at.isoformat() if submission.submitted_at else None,
    }


def pending_submissions(page=1, page_size=None):
    """One page (1-based) of undecided submissions, newest first."""
    page_size = page_size or current_app.config['SUBMISSIONS_PAGE_SIZE']
    if page < 1:
        raise ValidationFailed('Page must be 1 or greater.')

    submissions = (
        Submission.query.filter(Submission.is_approved.is_(None))
        .order_by(Submission.submitted_at.desc(), Submission.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size + 1)
        .all()
    )
    return {
        'submissions': [_format_submission(s) for s in submissions[:page_size]],
        'page': page,
        'has_more': len(submissions) > page_size,
    }


def pending_count():
    return Submission.query.filter(Submission.is_approved.is_(None)).count()


def review_submission(submission_id, approved):
    submission = db.session.get(Submission, submission_id)
    if submission is None:
        raise NotFound('Submission not found.')
    if submission.is_approved is not None:
        raise ValidationFailed('Submission has already been reviewed.')

    submission.is_approved = bool(approved)
    db.session.commit()
    logger.info(f"Submission {submission.id} {'approved' if submission.is_approved else 'rejected'}")
    return submission
