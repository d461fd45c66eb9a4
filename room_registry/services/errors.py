"""
Erreurs du registre / Registry errors.
Chaque erreur porte son code HTTP, traduit par le handler de main.py.
Each error carries its HTTP status, translated by the handler in main.py.
"""


class RegistryError(Exception):
    """Base des erreurs metier / Base for registry errors."""

    status_code: int = 500
    error: str = "RegistryError"
    retryable: bool = False

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.__doc__.strip()
        super().__init__(self.detail)


class NotFound(RegistryError):
    """Entity not found."""
    status_code = 404
    error = "NotFound"


class InvalidCode(RegistryError):
    """Invalid or expired code."""
    status_code = 400
    error = "InvalidCode"


class NotAssigned(RegistryError):
    """Device has no room assignment."""
    status_code = 404
    error = "NotAssigned"


class CodeGenerationExhausted(RegistryError):
    """Could not allocate a free pairing code, retry later."""
    status_code = 503
    error = "CodeGenerationExhausted"
    retryable = True


class StoreUnavailable(RegistryError):
    """Storage is unavailable, retry later."""
    status_code = 503
    error = "StoreUnavailable"
    retryable = True


class StoreTimeout(StoreUnavailable):
    """Storage did not answer in time, retry later."""
    error = "Timeout"
