"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ImportValidationError(DomainException):
    """Import request rejected before any database work"""

    pass


class AccountNotFoundError(ImportValidationError):
    """Target account does not exist or belongs to another user"""

    pass


class CategoryNotFoundError(ImportValidationError):
    """Referenced category does not exist or belongs to another user"""

    pass


class ImportCommitError(DomainException):
    """Reconciliation transaction failed and was rolled back"""

    pass


class RefundMatcherError(DomainException):
    """Refund matcher service returned an error or is unavailable"""

    pass
