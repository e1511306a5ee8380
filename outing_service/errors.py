class OutingServiceError(Exception):
  """Base class for errors raised by planner operations."""

  status_code = 400
  code = "ERROR"

  def __init__(self, message: str) -> None:
    super().__init__(message)
    self.message = message


class NotFoundError(OutingServiceError):
  status_code = 404
  code = "NOT_FOUND"


class UnauthorizedError(OutingServiceError):
  status_code = 403
  code = "UNAUTHORIZED"


class InvalidStateError(OutingServiceError):
  status_code = 409
  code = "INVALID_STATE"


class BusinessRuleViolation(OutingServiceError):
  """Validation failure carrying a machine-readable rule code."""

  status_code = 422

  def __init__(self, message: str, code: str) -> None:
    super().__init__(message)
    self.code = code
