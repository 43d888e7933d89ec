class RaceFuzzError(Exception):
    """Base class for every error the harness raises or records."""


class GenerationFault(RaceFuzzError):
    """A drawn or mutated value was invalid for the operator consuming it."""


class AdapterFault(RaceFuzzError):
    """A target rejected a mutating call."""


class TraversalFault(RaceFuzzError):
    """A target's children changed shape between enumeration and use."""


class ConfigError(RaceFuzzError):
    """A configuration file could not be read or parsed."""
