from __future__ import annotations


class InspiralError(Exception):
    """Base class for every error raised by pn_inspiral."""


class InvalidParameters(InspiralError, ValueError):
    """Unphysical masses, spins, tidal deformabilities or velocity."""


class ConfigurationError(InspiralError, ValueError):
    """Inconsistent evolution request (frequency ordering, unknown names)."""


class BeyondPNValidity(InspiralError, ValueError):
    """Initial velocity parameter at or beyond the speed of light."""


class NonInvertibleSeries(InspiralError, ArithmeticError):
    """Series whose leading term is zero or carries a logarithm."""


class SeriesMismatchError(InspiralError, ValueError):
    """Arithmetic between series in different expansion variables."""


class HorizonExhausted(InspiralError, RuntimeError):
    """Integration reached its time bound without any criterion firing."""

    def __init__(self, message: str, event=None):
        super().__init__(message)
        self.event = event
