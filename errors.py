class PasswordGenError(Exception):
    """Base error for the password generation pipeline.

    ``retryable`` tells the retry loop whether another attempt with fresh
    randomness can succeed for the same input.
    """

    retryable = False


class ValidationError(PasswordGenError):
    """Restrictions are inconsistent; rejected before any generation."""


class ModelLoadError(PasswordGenError):
    """Persisted sequence model is missing or corrupt."""


class TrainingError(PasswordGenError):
    """Sequence model could not be built from the dataset."""


class GenerationError(PasswordGenError):
    retryable = True


class CapacityError(PasswordGenError):
    """A required character could not be placed within maxLength."""

    retryable = True
