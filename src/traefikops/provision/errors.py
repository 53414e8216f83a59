class ProvisionError(RuntimeError):
    pass


class PreconditionError(ProvisionError):
    """A required tool is missing or the container engine is unreachable."""


class ReconcileError(ProvisionError):
    """A target file could not be written or its permissions could not be set."""


class SecretsValidationError(ProvisionError):
    pass


class RenderError(ProvisionError):
    pass


class DeployError(ProvisionError):
    pass
