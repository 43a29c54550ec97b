"""
Graph Builder Errors
Error taxonomy shared by the readers, tokenizers, merge engine and writers
"""


class GraphBuilderError(Exception):
    """Base class for all graph construction errors"""


class ConfigurationError(GraphBuilderError):
    """Raised before any record is processed when the job is misconfigured"""


class ParseError(GraphBuilderError):
    """Raised for a malformed record payload; callers skip the record"""


class WriteError(GraphBuilderError):
    """Raised when partition output cannot be persisted"""

    def __init__(self, message: str, partition_id: int = None):
        super().__init__(message)
        self.partition_id = partition_id


class RecordReaderError(GraphBuilderError):
    """Raised in strict mode when the reader loses track of its byte position"""
