"""Exceptions raised by the Windows Update workflow."""


class WindowsUpdateError(Exception):
    pass


class CatalogUnavailable(WindowsUpdateError):
    """The update provider could not be reached or initialised. Fatal for the run."""


class ProviderCallFailed(WindowsUpdateError):
    """An update provider call failed unexpectedly."""

    def __init__(self, operation: str, message: str, exit_code=None, stderr: str = ""):
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation
        self.exit_code = exit_code
        self.stderr = stderr
