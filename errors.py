# errors.py


class BatchError(Exception):
    """Base class for every error raised by the batch submitter."""


class SourceUnreadable(BatchError):
    pass


class MalformedRecord(BatchError):
    def __init__(self, row: int, reason: str) -> None:
        super().__init__(f"Row {row}: {reason}")
        self.row = row
        self.reason = reason


class InvalidAddress(BatchError, ValueError):
    pass


class InvalidAmount(BatchError, ValueError):
    pass


class FeeQuoteUnavailable(BatchError):
    pass


class SubmissionRejected(BatchError):
    pass


class GatewayUnavailable(BatchError):
    pass
