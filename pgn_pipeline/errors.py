"""Fatal pipeline errors. Any of these aborts the whole invocation."""


class PipelineError(Exception):
    pass


class NoInputFoundError(PipelineError):
    """No matching source files under the input root."""


class MissingCatalogueError(PipelineError):
    """The opening catalogue cannot be located or opened."""


class StoreAccessError(PipelineError):
    """A game store cannot be opened for read/write."""


class StoreSchemaError(StoreAccessError):
    """A game store is missing columns the step requires."""


class ExportWriteError(PipelineError):
    """The partitioned export could not be written to the target path."""
