from __future__ import annotations

from flexkids.core.errors import ExternalServiceError, TransientExternalError


class SheetsConfigError(ExternalServiceError):
    pass


class SheetsApiDisabledError(SheetsConfigError):
    pass


class SheetsPermissionError(SheetsConfigError):
    pass


class SheetsNotFoundError(SheetsConfigError):
    pass


class SheetsCredentialsError(SheetsConfigError):
    pass


class SheetsNotConfiguredError(SheetsConfigError):
    """No hay spreadsheet/credenciales guardados para el almacén remoto."""


class SheetsRateLimitError(TransientExternalError):
    pass
