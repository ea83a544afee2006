class RentalError(RuntimeError):
    status_code = 400


class NotFoundError(RentalError):
    status_code = 404


class ForbiddenError(RentalError):
    status_code = 403


class InvalidTransitionError(RentalError):
    status_code = 400


class RentalValidationError(RentalError):
    status_code = 400
