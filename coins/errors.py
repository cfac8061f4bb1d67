class CoinServiceError(Exception):
    pass


class SignatureError(CoinServiceError):
    """Callback could not be authenticated; nothing is credited."""


class MissingSignatureParamsError(SignatureError):
    pass


class UnknownAppKeyError(SignatureError):
    pass


class ExpiredTimestampError(SignatureError):
    pass


class SignatureMismatchError(SignatureError):
    pass


class InsufficientBalanceError(CoinServiceError):
    pass


class AlreadyCheckedInTodayError(CoinServiceError):
    pass


class InvalidUserIdentifierError(CoinServiceError):
    pass


class PersistenceError(CoinServiceError):
    pass
