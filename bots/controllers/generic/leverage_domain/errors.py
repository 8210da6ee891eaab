class LeverageControllerError(Exception):
    """Base class for rejected controller operations.

    The message is the human-readable reason surfaced to the caller.
    """

    @property
    def reason(self) -> str:
        return str(self.args[0]) if self.args else ""


class ConfigurationInvalid(LeverageControllerError, ValueError):
    pass


class PreconditionFailed(LeverageControllerError):
    pass


class AuthorizationFailed(LeverageControllerError):
    pass


class CooldownNotElapsed(LeverageControllerError):
    pass
