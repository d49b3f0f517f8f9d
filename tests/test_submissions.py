import os
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

import game
from conftest import create_riddles, create_user, image_file
from errors import AlreadySubmitted, BackendUnavailable, NotFound, UploadFailed, WrongAnswer
from models import db, utcnow, Submission, UserProgress
from storage import SUBMISSIONS_BUCKET, storage


@pytest.fixture
def player(ctx):
    game.set_riddles_visible(True)
    user = create_user('p@example.com')
    riddles = create_riddles()
    game.current_riddle(user)
    return user, riddles


def progress_of(user):
    return UserProgress.query.filter_by(user_id=user.id).one()


def stored_files(app, user):
    folder = os.path.join(app.config['STORAGE_ROOT'], SUBMISSIONS_BUCKET, str(user.id))
    if not os.path.isdir(folder):
        return []
    return os.listdir(folder)


def test_correct_answer_is_case_insensitive_and_advances(player):
    user, riddles = player
    later = utcnow() + timedelta(minutes=5)

    result = game.submit_answer(user, riddles[0].id, 'Gnome', now=later)

    assert Submission.query.count() == 1
    submission = Submission.query.one()
    assert submission.user_id == user.id
    assert submission.riddle_id == riddles[0].id
    assert submission.answer == 'Gnome'
    assert submission.is_approved is None
    assert submission.image_path is None
    assert result.next_riddle.id == riddles[1].id
    assert result.completed is False

    progress = progress_of(user)
    assert progress.current_riddle_id == riddles[1].id
    assert progress.hint1_visible is False
    assert progress.hint2_visible is False
    assert progress.start_time == later


def test_wrong_answer_changes_nothing(player):
    user, riddles = player
    before = progress_of(user).start_time

    for attempt in ('troll', 'gnomes', 'g nome', ''):
        with pytest.raises(WrongAnswer):
            game.submit_answer(user, riddles[0].id, attempt)

    assert Submission.query.count() == 0
    progress = progress_of(user)
    assert progress.current_riddle_id == riddles[0].id
    assert progress.start_time == before


def test_second_submission_for_same_riddle_is_rejected(player):
    user, riddles = player
    game.submit_answer(user, riddles[0].id, 'gnome')

    with pytest.raises(AlreadySubmitted):
        game.submit_answer(user, riddles[0].id, 'gnome')

    assert Submission.query.count() == 1
    assert progress_of(user).current_riddle_id == riddles[1].id


def test_trailing_space_accepted_when_stripping(player, app):
    user, riddles = player
    app.config['ANSWER_STRIP_WHITESPACE'] = True
    game.submit_answer(user, riddles[0].id, 'Gnome')

    result = game.submit_answer(user, riddles[1].id, 'troll ')

    assert result.next_riddle.id == riddles[2].id


def test_trailing_space_rejected_without_stripping(player, app):
    user, riddles = player
    app.config['ANSWER_STRIP_WHITESPACE'] = False
    game.submit_answer(user, riddles[0].id, 'Gnome')

    with pytest.raises(WrongAnswer):
        game.submit_answer(user, riddles[1].id, 'troll ')

    assert progress_of(user).current_riddle_id == riddles[1].id


def test_answer_matches():
    assert game.answer_matches('MURLOC', 'murloc')
    assert game.answer_matches(' murloc\t', 'murloc')
    assert not game.answer_matches(' murloc', 'murloc', strip_whitespace=False)
    assert game.answer_matches('STRASSE', 'straße')


def test_solving_last_riddle_completes_hunt(player):
    user, riddles = player
    for riddle in riddles[:2]:
        game.submit_answer(user, riddle.id, riddle.answer)

    result = game.submit_answer(user, riddles[2].id, 'murloc')

    assert result.completed is True
    progress = progress_of(user)
    assert progress.current_riddle_id == riddles[2].id
    assert progress.completed_at is not None
    assert game.current_riddle(user).status == game.COMPLETE


def test_only_current_riddle_can_be_answered(player):
    user, riddles = player

    with pytest.raises(NotFound):
        game.submit_answer(user, riddles[1].id, 'troll')

    assert Submission.query.count() == 0


def test_unknown_riddle_is_not_found(player):
    user, _ = player

    with pytest.raises(NotFound):
        game.submit_answer(user, 9999, 'anything')


def test_closed_gate_blocks_submission(player):
    user, riddles = player
    game.set_riddles_visible(False)

    with pytest.raises(NotFound):
        game.submit_answer(user, riddles[0].id, 'gnome')

    assert Submission.query.count() == 0


def test_image_is_stored_under_user_path(player, app):
    user, riddles = player

    result = game.submit_answer(user, riddles[0].id, 'gnome', image=image_file('Proof Photo.JPG'))

    path = result.submission.image_path
    folder, filename = path.split('/')
    assert folder == str(user.id)
    assert filename.endswith('.jpg')
    assert storage.exists(SUBMISSIONS_BUCKET, path)
    assert stored_files(app, user) == [filename]


def test_wrong_answer_does_not_upload(player, app):
    user, riddles = player

    with pytest.raises(WrongAnswer):
        game.submit_answer(user, riddles[0].id, 'elf', image=image_file())

    assert stored_files(app, user) == []


def test_unsupported_image_aborts_submission(player):
    user, riddles = player

    with pytest.raises(UploadFailed):
        game.submit_answer(user, riddles[0].id, 'gnome', image=image_file('notes.exe'))

    assert Submission.query.count() == 0
    assert progress_of(user).current_riddle_id == riddles[0].id


def test_failed_storage_write_aborts_submission(player, monkeypatch):
    user, riddles = player

    def broken_save(path):
        raise OSError('disk full')

    upload = image_file()
    monkeypatch.setattr(upload, 'save', broken_save)

    with pytest.raises(UploadFailed):
        game.submit_answer(user, riddles[0].id, 'gnome', image=upload)

    assert Submission.query.count() == 0
    assert progress_of(user).current_riddle_id == riddles[0].id


def test_lost_race_removes_uploaded_image(player, app, monkeypatch):
    user, riddles = player
    db.session.add(Submission(user_id=user.id, riddle_id=riddles[0].id, answer='gnome'))
    db.session.commit()
    # both requests passed the existence check before either inserted
    monkeypatch.setattr(game, 'has_submitted', lambda user_id, riddle_id: False)

    with pytest.raises(AlreadySubmitted):
        game.submit_answer(user, riddles[0].id, 'gnome', image=image_file())

    assert Submission.query.count() == 1
    assert stored_files(app, user) == []
    assert progress_of(user).current_riddle_id == riddles[0].id


def test_database_failure_removes_uploaded_image(player, app, monkeypatch):
    user, riddles = player

    def broken_commit():
        raise OperationalError('INSERT', {}, Exception('database is locked'))

    monkeypatch.setattr(db.session, 'commit', broken_commit)

    with pytest.raises(BackendUnavailable):
        game.submit_answer(user, riddles[0].id, 'gnome', image=image_file())

    monkeypatch.undo()
    assert Submission.query.count() == 0
    assert stored_files(app, user) == []


def test_deactivated_riddle_cannot_be_answered(player):
    user, riddles = player
    riddles[0].is_active = False
    db.session.commit()

    with pytest.raises(NotFound):
        game.submit_answer(user, riddles[0].id, 'gnome')

    assert Submission.query.count() == 0
