"""Exception types raised by the compositing pipeline."""


class QRCardError(Exception):
    """Base class for every qrcard failure."""


class InvalidInput(QRCardError, ValueError):
    """A render request was built from unusable input (e.g. empty text)."""


class LogoDecodeFailure(QRCardError):
    """The supplied logo bytes could not be decoded into a bitmap."""
