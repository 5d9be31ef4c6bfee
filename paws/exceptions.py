"""
Exception hierarchy for PAWS

    PawsError
    ├── SessionError          no usable AWS session, raised before any collection
    ├── CollectorOrderError   a collector ran before the subtree it reads
    └── ServiceError          an IAM/KMS call failed
        └── MalformedPolicyError

Every error raised from a collector aborts the whole audit. The CLI is the
only place that catches them.
"""


class PawsError(Exception):
    """
    Base class for all PAWS errors.

    Args:
        message: Human readable description
        cause: Underlying exception, if any
    """

    def __init__(self, message, cause=None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self):
        if self.cause:
            return f"{self.message}: {self.cause}"
        return self.message


class SessionError(PawsError):
    """Raised when no valid AWS session can be established"""


class CollectorOrderError(PawsError):
    """Raised when a collector needs a subtree that has not been collected yet"""


class ServiceError(PawsError):
    """
    Raised when an AWS API call fails.

    Args:
        service: AWS service name (iam, kms)
        operation: API operation that failed, e.g. ListUsers
        entity: Identifier of the user, key or policy being processed
        cause: Underlying botocore exception
    """

    def __init__(self, service, operation, entity=None, cause=None, message=None):
        if message is None:
            message = f"{service}:{operation} failed"
            if entity:
                message += f" for {entity}"
        super().__init__(message, cause)
        self.service = service
        self.operation = operation
        self.entity = entity


class MalformedPolicyError(ServiceError):
    """Raised when a policy document returned by AWS is not valid policy JSON"""

    def __init__(self, reason, service='kms', operation='GetKeyPolicy', entity=None, cause=None):
        message = f"Malformed policy document ({reason})"
        if entity:
            message += f" for {entity}"
        super().__init__(service, operation, entity=entity, cause=cause, message=message)
