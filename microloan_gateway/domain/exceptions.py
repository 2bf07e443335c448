"""Domain-specific exceptions"""

from decimal import Decimal


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class NotFoundError(DomainException):
    """Referenced user, loan or transaction does not exist"""

    def __init__(self, entity: str, identifier: str):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier} not found")


class ValidationError(DomainException):
    """Input rejected before any state mutation (bad amount, unknown status)"""

    pass


class InvalidLoanTransition(DomainException):
    """Loan status change not allowed from its current state"""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move loan from {current} to {target}")


class CreditLimitExceeded(DomainException):
    """Requested principal exceeds the user's available credit"""

    def __init__(self, requested: Decimal, available: Decimal):
        self.requested = requested
        self.available = available
        super().__init__(f"Requested {requested} exceeds available credit {available}")


class OverRepayment(DomainException):
    """Repayment larger than the loan's outstanding amount"""

    def __init__(self, attempted: Decimal, outstanding: Decimal):
        self.attempted = attempted
        self.outstanding = outstanding
        super().__init__(f"Repayment {attempted} exceeds outstanding amount {outstanding}")


class InvalidPolicyError(DomainException):
    """Scoring or credit policy document is malformed"""

    pass


class TransientStoreError(DomainException):
    """Database unit of work kept failing after bounded retries"""

    pass


class LedgerImmutableError(DomainException):
    """Attempt to rewrite credit score history"""

    pass


class ConcurrentAwardError(DomainException):
    """Another delivery of the same transaction already wrote its score award"""

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} already has a score award")
