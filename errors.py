"""Error types raised by the WorkLog core and rendered by the API."""


class WorkLogError(Exception):
    status = 400

    def __init__(self, message, field=None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self):
        body = {'error': self.message}
        if self.field:
            body['field'] = self.field
        return body


class InvalidInterval(WorkLogError):
    """Bad or missing input fields; nothing has been written."""
    status = 400


class Forbidden(WorkLogError):
    status = 403


class NotFound(WorkLogError):
    status = 404


class MergeConflict(WorkLogError):
    """A merge lost a race: the write lock timed out or the entry changed meanwhile."""
    status = 409


class IncompleteBalanceInput(WorkLogError):
    status = 422


class ZeroBaseDurationForProportion(WorkLogError):
    status = 422
