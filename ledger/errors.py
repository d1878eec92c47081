class LedgerServiceError(Exception):
    pass


class ValidationError(LedgerServiceError):
    pass


class InvalidAmountError(ValidationError):
    pass


class InvalidDepositAmountError(ValidationError):
    pass


class BelowMinimumError(ValidationError):
    pass


class ReasonRequiredError(ValidationError):
    pass


class InvalidSettingError(ValidationError):
    pass


class InvalidReferralCodeError(ValidationError):
    pass


class DuplicateEmailError(ValidationError):
    pass


class NotFoundError(LedgerServiceError):
    pass


class AccountNotFoundError(NotFoundError):
    pass


class RequestNotFoundError(NotFoundError):
    pass


class AlreadyProcessedError(LedgerServiceError):
    pass


class InsufficientBalanceError(LedgerServiceError):
    pass


class AuthError(LedgerServiceError):
    pass


class InvalidCredentialsError(AuthError):
    pass


class PermissionDeniedError(AuthError):
    pass


class AccountBlockedError(AuthError):
    pass
