"""
Engine exceptions.

Structural errors abort an invocation before any scanning starts. Errors
raised by individual template/target work items never surface here; they
are delivered through the output channel as result records.
"""


class RampartError(Exception):
    """Base exception for engine errors"""
    pass


class ConfigurationError(RampartError):
    """Raised when an option function fails or options are invalid"""
    pass


class OptionNotSupportedError(ConfigurationError):
    """Raised when an invocation tries to change a shared-handle option"""
    pass


class EngineFrozenError(RampartError):
    """Raised when setup methods are called on a builder after build()"""
    pass


class EngineClosedError(RampartError):
    """Raised when an engine is used after close()"""
    pass


class TemplateLoadError(RampartError):
    """Raised when templates or workflows cannot be resolved"""
    pass


class NoTemplatesAvailableError(RampartError):
    """Raised when no templates or workflows are left after loading"""

    def __init__(self, message: str = "no templates available"):
        super().__init__(message)


class NoTargetsAvailableError(RampartError):
    """Raised when the input provider holds no targets"""

    def __init__(self, message: str = "no targets available"):
        super().__init__(message)
