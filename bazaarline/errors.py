class DomainError(Exception):
    """Base class for domain/service errors."""


class NotFoundError(DomainError):
    def __init__(self, detail="Not found"):
        super().__init__("Not found")
        self.detail = detail


class UnauthorizedError(DomainError):
    pass


class ConflictError(DomainError):
    def __init__(self, detail):
        super().__init__("Conflict")
        self.detail = detail


class ValidationError(DomainError):
    def __init__(self, detail):
        super().__init__("Validation error")
        self.detail = detail


class InvalidTransitionError(ValidationError):
    def __init__(self, order_number, current, requested):
        super().__init__(f"Cannot change order {order_number} from {current} to {requested}")
        self.order_number = order_number
        self.current = current
        self.requested = requested
