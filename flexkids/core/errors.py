from __future__ import annotations


class AppError(Exception):
    pass


class BusinessError(AppError):
    pass


class ValidationError(BusinessError):
    pass


class StaleIdentityError(BusinessError):
    """Operación remota sobre un registro cuyo id sigue siendo local."""

    def __init__(self, collection: str, record_id: str) -> None:
        super().__init__(f"El registro {collection}/{record_id} aún no tiene id remoto.")
        self.collection = collection
        self.record_id = record_id


class InfraError(AppError):
    pass


class PersistenceError(InfraError):
    pass


class NotInitializedError(PersistenceError):
    def __init__(self, component: str = "LocalStore") -> None:
        super().__init__(f"{component} no inicializado. Llama a init() primero.")


class DuplicateKeyError(PersistenceError):
    def __init__(self, collection: str, record_id: str) -> None:
        super().__init__(f"Ya existe un registro con id '{record_id}' en '{collection}'.")
        self.collection = collection
        self.record_id = record_id


class UnknownCollectionError(PersistenceError):
    pass


class ExternalServiceError(InfraError):
    pass


class RemoteWriteFailedError(ExternalServiceError):
    """Fallo (o timeout) de una llamada al almacén remoto."""


class TransientExternalError(ExternalServiceError):
    pass
