class PipelineError(Exception):
    pass


class ConfigurationError(PipelineError):
    """Mandatory credentials are missing; the run fails before any work starts."""


class FetchError(PipelineError):
    def __init__(self, source_key: str, message: str):
        super().__init__(f"{source_key}: {message}")
        self.source_key = source_key


class ExistenceCheckError(PipelineError):
    pass


class EnrichmentError(PipelineError):
    pass


class WriteError(PipelineError):
    pass


class MalformedRecordError(PipelineError):
    def __init__(self, table: str, row_id: str | None, message: str):
        super().__init__(f"malformed {table} row id={row_id}: {message}")
        self.table = table
        self.row_id = row_id
