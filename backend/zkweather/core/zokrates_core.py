"""
Proving engine adapter

Wraps the proving backend behind compile / setup / prove / export-verifier.
The backend handle is created lazily on first use and kept for the lifetime
of the adapter; concurrent first callers share one initialization.
"""
import asyncio
import time
from typing import (Any, Awaitable, Callable, Dict, Optional, Sequence, Set,
                    Union)

from zkweather.core.config import (COMPILE, EXPORT_VERIFIER, GENERATE_PROOF,
                                   SETUP, Settings, get_settings)
from zkweather.core.error_handler import (ErrorHandler,
                                          create_user_friendly_message,
                                          handle_environment_error,
                                          handle_memory_error)
from zkweather.core.exceptions import (EngineInitializationError,
                                       InputValidationError,
                                       ProofGenerationError, ProofTimeoutError,
                                       RetryExhaustedError,
                                       VerifierExportError)
from zkweather.core.logging_config import LoggingConfig
from zkweather.core.metrics import (zk_operation_duration_seconds,
                                    zk_operations_total,
                                    zk_weather_proofs_total)
from zkweather.core.performance import PerformanceMonitor
from zkweather.core.proving_backend import ProvingBackend, ZoKratesCliBackend
from zkweather.models.circuit import (CompilationResult, ProofResult,
                                     SetupResult)
from zkweather.models.proof import (ProofArtifact, ProofMetadata,
                                    WeatherModelInfo, WeatherModelInputs)
from zkweather.services.weather_features import WeatherFeatureEncoder

logger = LoggingConfig.get_logger(__name__)

BackendFactory = Callable[[Settings], Awaitable[ProvingBackend]]


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


def _failure_message(error: BaseException) -> str:
    """Final error string for a failed operation, memory exhaustion made actionable"""
    if isinstance(error, RetryExhaustedError) and error.last_error is not None:
        rewritten = handle_memory_error(error.last_error)
        if rewritten is not error.last_error:
            return (
                f"{error.operation} failed after {error.attempts} attempts. "
                f"Last error: {rewritten}"
            )
        return str(error)
    return str(handle_memory_error(error))


class ZoKratesCore:
    """
    Proving engine adapter

    compile_circuit, setup_keys and generate_proof are retried and return
    result models with success/error instead of raising on backend failure.
    export_verifier is a one-shot action and raises VerifierExportError.
    Engine initialization failures raise EngineInitializationError.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        backend_factory: Optional[BackendFactory] = None,
        performance_monitor: Optional[PerformanceMonitor] = None,
        error_handler: Optional[ErrorHandler] = None,
        encoder: Optional[WeatherFeatureEncoder] = None
    ):
        self._settings = settings
        self._backend_factory = backend_factory
        self._backend: Optional[ProvingBackend] = None
        self._initialization: Optional[asyncio.Task] = None
        self._abandoned: Set[asyncio.Task] = set()
        self.performance_monitor = performance_monitor or PerformanceMonitor(settings)
        self.error_handler = error_handler or ErrorHandler(settings)
        self._encoder = encoder

    @property
    def settings(self) -> Settings:
        """Lazy load settings"""
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def encoder(self) -> WeatherFeatureEncoder:
        if self._encoder is None:
            self._encoder = WeatherFeatureEncoder(self.settings)
        return self._encoder

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def is_initialized(self) -> bool:
        return self._backend is not None

    async def get_backend(self) -> ProvingBackend:
        """
        Get the backend handle, initializing it on first use

        Concurrent callers await the same in-flight initialization. A failed
        initialization leaves the handle unset so the next call tries again.

        Raises:
            EngineInitializationError: backend could not be created
        """
        if self._backend is not None:
            return self._backend
        if self._initialization is None:
            self._initialization = asyncio.ensure_future(self._initialize())
        return await asyncio.shield(self._initialization)

    async def _initialize(self) -> ProvingBackend:
        factory = self._backend_factory or ZoKratesCliBackend.create
        logger.info("Initializing ZoKrates proving backend...")
        try:
            backend = await factory(self.settings)
        except Exception as e:
            self._initialization = None
            error = handle_environment_error(e)
            logger.error(f"Failed to initialize ZoKrates: {error}")
            raise EngineInitializationError(f"Failed to initialize ZoKrates: {error}") from e

        self._backend = backend
        logger.info(f"ZoKrates proving backend initialized ({backend.name})")
        return backend

    # ------------------------------------------------------------------
    # Engine operations
    # ------------------------------------------------------------------

    def _record_outcome(self, operation: str, status: str, elapsed_ms: float):
        zk_operations_total.labels(operation=operation, status=status).inc()
        zk_operation_duration_seconds.labels(operation=operation).observe(elapsed_ms / 1000)

    def _sample_memory(self):
        if self.settings.performance_monitoring_enabled:
            self.performance_monitor.record_memory_usage()

    async def compile_circuit(self, source: str) -> CompilationResult:
        """Compile circuit source (retried as "compile")"""
        backend = await self.get_backend()
        LoggingConfig.set_context(operation=COMPILE)
        start = time.perf_counter()
        logger.info("Compiling ZoKrates circuit...")

        try:
            output = await self.error_handler.with_retry(lambda: backend.compile(source), COMPILE)
        except RetryExhaustedError as e:
            elapsed = _elapsed_ms(start)
            self.performance_monitor.record_error("compilation")
            self._record_outcome(COMPILE, "failed", elapsed)
            logger.error(create_user_friendly_message(e.last_error or e, COMPILE))
            return CompilationResult(success=False, error=_failure_message(e), compilation_time=elapsed)

        elapsed = _elapsed_ms(start)
        self.performance_monitor.record_compilation(elapsed)
        self._record_outcome(COMPILE, "success", elapsed)
        self._sample_memory()
        logger.info(f"Circuit compiled successfully in {elapsed:.2f}ms")
        return CompilationResult(
            program=bytes(output["program"]),
            abi=output.get("abi"),
            success=True,
            compilation_time=elapsed
        )

    async def setup_keys(self, program: bytes) -> SetupResult:
        """Generate proving and verification keys (retried as "setup")"""
        backend = await self.get_backend()
        LoggingConfig.set_context(operation=SETUP)
        start = time.perf_counter()
        logger.info("Setting up proving and verification keys...")

        try:
            keys = await self.error_handler.with_retry(lambda: backend.setup(program), SETUP)
        except RetryExhaustedError as e:
            elapsed = _elapsed_ms(start)
            self.performance_monitor.record_error("setup")
            self._record_outcome(SETUP, "failed", elapsed)
            logger.error(create_user_friendly_message(e.last_error or e, SETUP))
            return SetupResult(success=False, error=_failure_message(e), setup_time=elapsed)

        elapsed = _elapsed_ms(start)
        self._record_outcome(SETUP, "success", elapsed)
        self._sample_memory()
        logger.info(f"Keys generated successfully in {elapsed:.2f}ms")
        return SetupResult(
            proving_key=bytes(keys["proving_key"]),
            verification_key=bytes(keys["verification_key"]),
            success=True,
            setup_time=elapsed
        )

    async def generate_proof(
        self,
        program: bytes,
        proving_key: bytes,
        inputs: Sequence[str],
        timeout_ms: Optional[int] = None
    ) -> ProofResult:
        """
        Generate a proof (retried as "generateProof")

        With timeout_ms the retried proving call races a timer. The timeout
        abandons the result, not the work: the backend call is not cancelled
        and keeps running until it completes or fails on its own; its outcome
        is only logged.
        """
        backend = await self.get_backend()
        LoggingConfig.set_context(operation=GENERATE_PROOF)
        start = time.perf_counter()
        inputs = [str(value) for value in inputs]
        logger.info(f"Generating proof for {len(inputs)} inputs...")

        task = asyncio.ensure_future(self.error_handler.with_retry(
            lambda: backend.generate_proof(program, proving_key, inputs), GENERATE_PROOF
        ))

        try:
            if timeout_ms is None:
                output = await task
            else:
                done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
                if not done:
                    self._abandon(task)
                    raise ProofTimeoutError(timeout_ms)
                output = task.result()
        except ProofTimeoutError as e:
            elapsed = _elapsed_ms(start)
            self.performance_monitor.record_error("proofGeneration")
            self._record_outcome(GENERATE_PROOF, "timeout", elapsed)
            logger.error(create_user_friendly_message(e, GENERATE_PROOF))
            return ProofResult(success=False, error=str(e), proof_generation_time=elapsed, timed_out=True)
        except RetryExhaustedError as e:
            elapsed = _elapsed_ms(start)
            self.performance_monitor.record_error("proofGeneration")
            self._record_outcome(GENERATE_PROOF, "failed", elapsed)
            logger.error(create_user_friendly_message(e.last_error or e, GENERATE_PROOF))
            return ProofResult(success=False, error=_failure_message(e), proof_generation_time=elapsed)

        elapsed = _elapsed_ms(start)
        self.performance_monitor.record_proof_generation(elapsed)
        self._record_outcome(GENERATE_PROOF, "success", elapsed)
        self._sample_memory()
        logger.info(f"Proof generated successfully in {elapsed:.2f}ms")
        return ProofResult(
            proof=output["proof"],
            inputs=[str(value) for value in output.get("inputs", [])],
            success=True,
            proof_generation_time=elapsed
        )

    def _abandon(self, task: asyncio.Task):
        self._abandoned.add(task)
        task.add_done_callback(self._on_abandoned_done)

    def _on_abandoned_done(self, task: asyncio.Task):
        self._abandoned.discard(task)
        if task.cancelled():
            logger.warning("Abandoned proof generation was cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Abandoned proof generation failed after timeout: {error}")
        else:
            logger.info("Abandoned proof generation completed after timeout; result discarded")

    async def export_verifier(self, verification_key: bytes) -> str:
        """
        Export verifier contract source

        Not retried.

        Raises:
            VerifierExportError: backend failed to export
        """
        backend = await self.get_backend()
        LoggingConfig.set_context(operation=EXPORT_VERIFIER)
        start = time.perf_counter()

        try:
            verifier = await backend.export_verifier(verification_key)
        except Exception as e:
            elapsed = _elapsed_ms(start)
            self.error_handler.log_error(e, EXPORT_VERIFIER, 1)
            self._record_outcome(EXPORT_VERIFIER, "failed", elapsed)
            raise VerifierExportError(
                f"{create_user_friendly_message(e, EXPORT_VERIFIER)} ({handle_memory_error(e)})"
            ) from e

        self._record_outcome(EXPORT_VERIFIER, "success", _elapsed_ms(start))
        logger.info("Verifier contract exported")
        return verifier

    # ------------------------------------------------------------------
    # Weather model
    # ------------------------------------------------------------------

    async def generate_weather_proof(
        self,
        inputs: Union[WeatherModelInputs, Dict[str, Any]],
        program: bytes,
        proving_key: bytes,
        timeout_ms: Optional[int] = None
    ) -> ProofArtifact:
        """
        Validate, encode and prove a radar feature map

        Raises:
            InputValidationError: feature map violates the input contract (all problems listed)
            ProofTimeoutError: proving did not finish within timeout_ms
            ProofGenerationError: proving failed after retries
        """
        start = time.perf_counter()
        features = inputs.features if isinstance(inputs, WeatherModelInputs) else inputs

        validation = self.encoder.validate(features)
        if not validation.valid:
            zk_weather_proofs_total.labels(status="invalid_input").inc()
            raise InputValidationError(validation.errors)
        if validation.warnings:
            logger.warning(f"Weather input warnings: {'; '.join(validation.warnings)}")

        encoded = self.encoder.encode(features)
        result = await self.generate_proof(program, proving_key, encoded, timeout_ms=timeout_ms)
        if not result.success:
            zk_weather_proofs_total.labels(status="failed").inc()
            if result.timed_out:
                raise ProofTimeoutError(timeout_ms)
            raise ProofGenerationError(f"Proof generation failed: {result.error}")

        prediction = self.encoder.decode_prediction(result.inputs)
        zk_weather_proofs_total.labels(status="success").inc()

        return ProofArtifact(
            proof=result.proof or {},
            inputs=result.inputs,
            metadata=ProofMetadata(
                timestamp=time.time() * 1000,
                feature_count=self.settings.features_count,
                prediction=prediction,
                proof_generation_time=_elapsed_ms(start)
            )
        )

    @staticmethod
    def check_weather_proof_structure(artifact: Union[ProofArtifact, Dict[str, Any]]) -> bool:
        """True when the artifact carries a proof and at least one public input"""
        if isinstance(artifact, ProofArtifact):
            proof, inputs = artifact.proof, artifact.inputs
        else:
            proof, inputs = artifact.get("proof"), artifact.get("inputs")
        return bool(proof) and bool(inputs)

    async def verify_weather_proof(self, artifact: Union[ProofArtifact, Dict[str, Any]]) -> bool:
        """
        Structural check only, NOT cryptographic verification

        Real verification happens at the verifier contract; this only
        confirms the artifact has a proof and public inputs.
        """
        logger.debug("verify_weather_proof performs a structural check only, no cryptographic verification")
        return self.check_weather_proof_structure(artifact)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_performance_metrics(self) -> Dict[str, Any]:
        return self.performance_monitor.get_metrics()

    def reset_performance_metrics(self):
        self.performance_monitor.reset()

    def get_weather_model_info(self) -> WeatherModelInfo:
        return WeatherModelInfo(
            name=self.settings.weather_model_name,
            features_count=self.settings.features_count,
            input_size=self.settings.input_size,
            output_size=self.settings.output_size,
            features=list(self.encoder.features),
            value_ranges={"min": self.settings.value_range_min, "max": self.settings.value_range_max},
            description="Weather prediction model over radar-derived features"
        )
