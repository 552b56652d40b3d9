class AppPreviewsError(Exception):
    """Base class for errors that stop a run."""


class ConfigurationError(AppPreviewsError):
    pass


class InvalidTimestampError(AppPreviewsError, ValueError):
    def __init__(self, timestamp):
        self.timestamp = timestamp
        super().__init__(
            f"Invalid timestamp {timestamp!r}, expected mm.ss as minutes.seconds "
            "('00.05' is 5 seconds in, '01.00' is one minute in, not one second)"
        )


class UnknownDeviceError(AppPreviewsError, ValueError):
    def __init__(self, device_type):
        self.device_type = device_type
        super().__init__(f"Unknown device type {device_type!r}")


class PosterGenerationError(AppPreviewsError):
    pass


class StoreError(AppPreviewsError):
    """A call to the remote store failed."""

    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status


class AuthenticationError(StoreError):
    pass


class AppNotFoundError(StoreError):
    pass


class EditVersionNotFoundError(StoreError):
    pass
