"""
Exception types for circuit orchestration
"""
from typing import List, Optional


class ZKWeatherError(Exception):
    """Base exception for all circuit orchestration errors"""
    pass


class EngineInitializationError(ZKWeatherError):
    """Proving engine could not be initialized"""
    pass


class CompilationError(ZKWeatherError):
    pass


class SetupError(ZKWeatherError):
    pass


class ProofGenerationError(ZKWeatherError):
    pass


class ProofTimeoutError(ProofGenerationError):
    """Proof generation did not finish within the allotted time"""

    def __init__(self, timeout_ms: int):
        self.timeout_ms = timeout_ms
        super().__init__(f"Proof generation timeout after {timeout_ms}ms")


class VerifierExportError(ZKWeatherError):
    pass


class InputValidationError(ZKWeatherError):
    """Feature map violates the circuit input contract"""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(f"Invalid weather inputs: {', '.join(self.errors)}")


class CircuitNotReadyError(ZKWeatherError):
    """A circuit could not be brought to the ready state"""
    pass


class ArtifactNotFoundError(ZKWeatherError):
    """A persisted circuit artifact does not exist"""
    pass


class ArtifactIOError(ZKWeatherError):
    """Reading or writing a circuit artifact failed"""
    pass


class PredictionDecodeError(ZKWeatherError):
    """Public output could not be parsed as an integer prediction"""
    pass


class RetryExhaustedError(ZKWeatherError):
    """All attempts of a retried operation failed"""

    def __init__(self, operation: str, attempts: int, last_error: Optional[BaseException] = None):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        last_message = str(last_error) if last_error is not None else "unknown error"
        super().__init__(
            f"{operation} failed after {attempts} attempts. Last error: {last_message}"
        )
