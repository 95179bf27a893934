"""Custom exceptions raised by the plan engine, signature protocol and vault ledger."""


class PlanEngineError(Exception):
    """Base class for plan engine failures."""


class ModelValidationError(PlanEngineError):
    """Raised when model data fails custom business validation."""


class InvalidTermsError(ModelValidationError):
    """Raised when plan terms are malformed; no state is mutated."""


class AuthorizationError(PlanEngineError):
    """Base class for signature authorization failures."""


class UnauthorizedSignerError(AuthorizationError):
    """Raised when a signature was not produced by the registered authority."""


class ExpiredAuthorizationError(AuthorizationError):
    """Raised when an authorization is used after its expiry timestamp."""


class UnauthorizedCallerError(PlanEngineError):
    """Raised when the caller lacks the role an operation requires."""


class PreconditionViolation(PlanEngineError):
    """Raised when a transition is attempted from a state that does not allow it."""


class InsufficientLiquidityError(PlanEngineError):
    """Raised when a vault cannot fund a request net of its safety fund."""


class CustodyError(PlanEngineError):
    """Raised when the custody service fails to move collateral."""


class PlanNotFoundError(PlanEngineError):
    """Raised when a requested plan does not exist."""


class VaultNotFoundError(PlanEngineError):
    """Raised when a requested vault account does not exist."""


class TransactionError(PlanEngineError):
    """Raised when store transactions are misused (commit without begin, unknown snapshot)."""


class InsufficientPaymentError(PreconditionViolation):
    """Raised when a payment or down payment is below the amount due."""
