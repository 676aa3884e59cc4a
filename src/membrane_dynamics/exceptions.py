class ConfigurationError(Exception):
    """Invalid or incomplete parameter combination.

    Carries every violated constraint, not just the first one found.
    """
    def __init__(self, errors=None, message="Invalid configuration."):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors) if errors else []
        if self.errors:
            message = f"{message} " + "; ".join(self.errors)
        super().__init__(message)


class GeometryError(Exception):
    """Degenerate or non-finite mesh quantity encountered."""
    def __init__(self, message="Degenerate mesh geometry."):
        super().__init__(message)


class ConvergenceError(Exception):
    """Backtracking line search exhausted its minimum step.

    ``breakdown`` maps each term to (energy change along its own force,
    first-order expected change) at the failing step size, when available.
    """
    def __init__(self, message="Line search failed to find a sufficient decrease.",
                 alpha=None, kind="chemical", breakdown=None):
        self.alpha = alpha
        self.kind = kind
        self.breakdown = dict(breakdown) if breakdown else {}
        super().__init__(message)


class StateTransitionError(Exception):
    """Invalid integrator state transition."""
    def __init__(self, message="Invalid state transition attempted."):
        super().__init__(message)
