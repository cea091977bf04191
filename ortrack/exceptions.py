"""Exceptions raised by the ORT-Track core."""


class OrtTrackError(Exception):
    """Base ORT-Track exception."""


class ConfigurationError(OrtTrackError, ValueError):
    """Raised for invalid shape, stride, row layout or an empty batch."""


class DecodeIndexError(OrtTrackError, IndexError):
    """Raised when a row's batch_id or class_id has no matching entry."""


class NumericalError(OrtTrackError, ArithmeticError):
    """Raised when a covariance is not positive definite at a Cholesky step."""
