"""Exception taxonomy shared by the engine, the renderer and the API layer."""

from __future__ import annotations


class LymphoscopeError(Exception):
    """Base class for every error raised on purpose by this package."""


class ModelLoadError(LymphoscopeError):
    """The model resource was unreachable or could not be parsed.

    The gateway stays re-loadable: calling ``load()`` again retries the fetch.
    """


class InferenceError(LymphoscopeError):
    """The forward pass failed or produced an unusable score vector."""


class AnalysisError(LymphoscopeError):
    """A fatal failure during preprocessing or classification aborted the run."""


class InvalidArtifactError(LymphoscopeError, ValueError):
    """An artifact is empty, non-square or holds non-finite values."""


class RunInProgressError(LymphoscopeError):
    """A second run was started while another one still owns the buffers."""
