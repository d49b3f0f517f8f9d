"""Failures surfaced to the player or administrator as an inline message."""


class HuntError(Exception):
    status_code = 400
    default_message = 'Something went wrong. Please try again.'

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def code(self):
        return type(self).__name__

    def to_dict(self):
        return {'success': False, 'error': self.code, 'message': self.message}


class NotAuthenticated(HuntError):
    status_code = 401
    default_message = 'Please log in first.'


class NotAuthorized(HuntError):
    status_code = 403
    default_message = 'You are not authorized to do that.'


class NotFound(HuntError):
    status_code = 404
    default_message = 'Not found.'


class AlreadySubmitted(HuntError):
    status_code = 409
    default_message = 'You have already submitted an answer for this riddle.'


class WrongAnswer(HuntError):
    status_code = 422
    default_message = 'Incorrect answer. Try again!'


class UploadFailed(HuntError):
    status_code = 400
    default_message = 'Image upload failed. Please try again.'


class ValidationFailed(HuntError):
    status_code = 400
    default_message = 'Invalid input.'


class BackendUnavailable(HuntError):
    status_code = 503
    default_message = 'The service is temporarily unavailable. Please try again.'
