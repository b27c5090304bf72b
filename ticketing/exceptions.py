class BookingError(Exception):
    """Base class for errors that are reported back to the API caller."""

    status_code = 400

    def __init__(self, message, status_code=None, **details):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details
        super().__init__(message)

    def to_dict(self):
        payload = {"message": self.message}
        payload.update(self.details)
        return payload


class NotFound(BookingError):
    status_code = 404


class SeatConflict(BookingError):
    status_code = 409

    def __init__(self, seats, message="Some seats are no longer available"):
        self.seats = list(seats)
        super().__init__(message, unavailableSeats=self.seats)


class ShowInactive(BookingError):
    status_code = 409


class CancellationWindowClosed(BookingError):
    status_code = 400


class ValidationError(BookingError):
    status_code = 400

    def __init__(self, message, errors=None):
        self.errors = errors or {}
        if errors:
            super().__init__(message, errors=self.errors)
        else:
            super().__init__(message)


class PersistenceError(BookingError):
    # Never carries storage details; those go to the log.
    status_code = 500

    def __init__(self, message="Something went wrong, please try again"):
        super().__init__(message)


class Unauthorized(BookingError):
    status_code = 401


class Forbidden(BookingError):
    status_code = 403
