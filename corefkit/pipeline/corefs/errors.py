from contextlib import contextmanager
from typing import Literal


#: stage of a resolution run in which a failure happened
ResolutionStage = Literal["encode", "score", "cluster"]


class CoreferenceError(Exception):
    """A non-recoverable failure during coreference resolution.

    .. note::

        Documents without any coreference are *not* failures:
        resolvers return empty chains for them.

    :ivar stage: the stage in which the failure happened
    """

    def __init__(self, stage: ResolutionStage, message: str) -> None:
        self.stage = stage
        super().__init__(f"[{stage}] {message}")


class ConfigurationError(ValueError):
    """An invalid configuration value"""

    pass


class ModelLoadError(Exception):
    """Base class of errors raised when loading a model bundle"""

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        super().__init__(f"{path}: {message}")


class ModelNotFoundError(ModelLoadError):
    """The bundle directory, or one of its files, does not exist"""

    pass


class CorruptModelError(ModelLoadError):
    """A bundle file exists but can't be read back into a model"""

    pass


@contextmanager
def resolution_stage(stage: ResolutionStage):
    """Re-raise numeric backend failures happening in the managed block
    as :class:`CoreferenceError` tagged with ``stage``."""
    try:
        yield
    except CoreferenceError:
        raise
    except RuntimeError as e:
        raise CoreferenceError(stage, str(e)) from e
