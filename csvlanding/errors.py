class LoadError(RuntimeError):
    pass


class StoreConnectionError(LoadError):
    pass


class SchemaError(LoadError):
    pass


class CsvImportError(LoadError):
    pass


class ClassificationError(LoadError):
    pass


class FileRelocationWarning(LoadError):
    pass


class LogWriteError(LoadError):
    pass
