class LedgerError(ValueError):
    kind = "LedgerError"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"error": self.kind, "message": self.message}


class NotFoundError(LedgerError):
    kind = "NotFound"
    status_code = 404


class InvalidInputError(LedgerError):
    kind = "InvalidInput"
    status_code = 400


class InsufficientFundsError(LedgerError):
    kind = "InsufficientFunds"
    status_code = 400


class ConflictError(LedgerError):
    kind = "Conflict"
    status_code = 409
