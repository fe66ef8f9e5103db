class AppError(Exception):
    status_code = 500
    message = "Internal server error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.message
        super().__init__(self.detail)


class NotFound(AppError):
    status_code = 404
    message = "Not found"


class Forbidden(AppError):
    status_code = 403
    message = "Forbidden"


class ValidationFailed(AppError):
    status_code = 400
    message = "Validation error"


class DeadlinePassed(AppError):
    status_code = 400
    message = "Prediction deadline has passed"


class PredictionsAlreadySubmitted(AppError):
    status_code = 400
    message = "Predictions already submitted for this gameweek"


class InvalidPrediction(AppError):
    status_code = 400
    message = "Invalid prediction data"
