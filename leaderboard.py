import logging

from flask import current_app

from auth import resolve_display_name
from models import db, LeaderboardEntry, User

logger = logging.getLogger(__name__)


def get_leaderboard_data(limit=None):
    """Top entries by score; equal scores are ordered by user id."""
    limit = limit or current_app.config['LEADERBOARD_LIMIT']
    rows = (
        db.session.query(LeaderboardEntry, User)
        .outerjoin(User, User.id == LeaderboardEntry.user_id)
        .order_by(LeaderboardEntry.score.desc(), LeaderboardEntry.user_id.asc())
        .limit(limit)
        .all()
    )

    leaderboard = []
    for entry, user in rows:
        if user is None:
            logger.info(f"Leaderboard entry {entry.id} has no user {entry.user_id}")
        display = resolve_display_name(user)
        leaderboard.append({
            'user_id': entry.user_id,
            'name': display.name,
            'is_team': display.is_team,
            'score': entry.score,
        })

    return leaderboard


def set_score(user, score):
    """Operator helper; the game itself never writes scores."""
    entry = LeaderboardEntry.query.filter_by(user_id=user.id).first()
    if entry is None:
        entry = LeaderboardEntry(user_id=user.id, score=score)
        db.session.add(entry)
    else:
        entry.score = score
    db.session.commit()
    logger.info(f"Score for user {user.id} set to {score}")
    return entry
