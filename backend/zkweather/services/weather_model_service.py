"""
Weather model service: entry point tying the proving engine adapter,
the artifact manager and the feature contract together
"""
import asyncio
import time
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from zkweather.core.config import Settings, get_settings
from zkweather.core.exceptions import (CircuitNotReadyError, CompilationError,
                                       SetupError, ZKWeatherError)
from zkweather.core.logging_config import LoggingConfig
from zkweather.core.zokrates_core import ZoKratesCore
from zkweather.models.circuit import (CircuitArtifacts, CircuitStatus,
                                     InitializationResult)
from zkweather.models.proof import (BatchFailure, BatchProofResult,
                                    ProofArtifact, ValidationResult,
                                    WeatherModelInfo, WeatherModelInputs)
from zkweather.services.circuit_manager import CircuitManager
from zkweather.utils.proof_format import to_verifier_proof

logger = LoggingConfig.get_logger(__name__)

FeatureMap = Union[WeatherModelInputs, Mapping[str, Any]]


class WeatherModelService:
    """Weather model lifecycle and proving"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        core: Optional[ZoKratesCore] = None,
        circuit_manager: Optional[CircuitManager] = None
    ):
        self._settings = settings
        self._core = core
        self._circuit_manager = circuit_manager

    @property
    def settings(self) -> Settings:
        """Lazy load settings"""
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def core(self) -> ZoKratesCore:
        if self._core is None:
            self._core = ZoKratesCore(self.settings)
        return self._core

    @property
    def circuit_manager(self) -> CircuitManager:
        if self._circuit_manager is None:
            self._circuit_manager = CircuitManager(self.settings, core=self.core)
        return self._circuit_manager

    @property
    def model_name(self) -> str:
        return self.settings.weather_model_name

    async def initialize(self) -> InitializationResult:
        """Compile and set up the weather model if needed"""
        return await self.circuit_manager.initialize_weather_model()

    async def _load_proving_material(self):
        result = await self.initialize()
        if not result.success:
            raise CircuitNotReadyError(f"Failed to initialize weather model: {result.error}")
        program = await self.circuit_manager.load_compiled_circuit(self.model_name)
        proving_key = await self.circuit_manager.load_proving_key(self.model_name)
        return program, proving_key

    async def generate_proof(self, inputs: FeatureMap, timeout_ms: Optional[int] = None) -> ProofArtifact:
        """
        Generate a weather proof, initializing the model first if needed

        Args:
            inputs: Radar feature map
            timeout_ms: Proof generation timeout (default: proof_generation_timeout_ms)

        Raises:
            CircuitNotReadyError: model could not be initialized
            InputValidationError: feature map rejected
            ProofGenerationError: proving failed or timed out
        """
        program, proving_key = await self._load_proving_material()
        timeout = timeout_ms if timeout_ms is not None else self.settings.proof_generation_timeout_ms
        return await self.core.generate_weather_proof(inputs, program, proving_key, timeout_ms=timeout)

    async def generate_proofs(
        self,
        batch: Sequence[FeatureMap],
        stop_on_error: bool = False,
        timeout_ms: Optional[int] = None
    ) -> BatchProofResult:
        """
        Generate proofs for several feature maps, one after another

        Per-item failures are collected with their index; with stop_on_error
        the first failure ends the batch.
        """
        start = time.perf_counter()
        program, proving_key = await self._load_proving_material()
        timeout = timeout_ms if timeout_ms is not None else self.settings.proof_generation_timeout_ms

        result = BatchProofResult()
        for index, inputs in enumerate(batch):
            try:
                artifact = await self.core.generate_weather_proof(
                    inputs, program, proving_key, timeout_ms=timeout
                )
            except ZKWeatherError as e:
                logger.error(f"Batch item {index} failed: {e}")
                result.failures.append(BatchFailure(index=index, error=str(e)))
                if stop_on_error:
                    result.stopped_early = index < len(batch) - 1
                    break
                continue
            result.artifacts.append(artifact)

        result.total_time = (time.perf_counter() - start) * 1000
        logger.info(
            f"Batch finished: {len(result.artifacts)} proofs, {len(result.failures)} failures "
            f"in {result.total_time:.2f}ms"
        )
        return result

    def validate_batch(self, batch: Sequence[FeatureMap]) -> List[ValidationResult]:
        results = []
        for inputs in batch:
            features = inputs.features if isinstance(inputs, WeatherModelInputs) else inputs
            results.append(self.core.encoder.validate(features))
        return results

    def check_proof_structure(self, artifact: Union[ProofArtifact, Dict[str, Any]]) -> bool:
        return self.core.check_weather_proof_structure(artifact)

    async def verify_proof(self, artifact: Union[ProofArtifact, Dict[str, Any]]) -> bool:
        """
        Structural check of a proof against a set-up model

        Requires the verification key to exist; performs no cryptographic
        verification (that happens at the verifier contract).
        """
        await self.circuit_manager.load_verification_key(self.model_name)
        return await self.core.verify_weather_proof(artifact)

    async def export_verifier(self, output_path: Optional[Union[str, Path]] = None) -> str:
        """
        Export the verifier contract for the persisted verification key

        Raises:
            ArtifactNotFoundError: model keys are not set up
            VerifierExportError: export failed
        """
        verification_key = await self.circuit_manager.load_verification_key(self.model_name)
        source = await self.core.export_verifier(verification_key)

        if output_path is not None:
            path = Path(output_path)

            def _write():
                path.parent.mkdir(parents=True, exist_ok=True)
                with open(path, "w", encoding="utf-8") as f:
                    f.write(source)

            await asyncio.get_running_loop().run_in_executor(None, _write)
            logger.info(f"Verifier contract written to {path}")
        return source

    async def setup_circuit_from_source(self, source: str) -> CircuitArtifacts:
        """
        Compile a circuit and generate its keys in memory, persisting nothing

        Raises:
            CompilationError: compilation failed
            SetupError: key setup failed
        """
        logger.info("Setting up circuit from source...")
        compiled = await self.core.compile_circuit(source)
        if not compiled.success:
            raise CompilationError(f"Circuit compilation failed: {compiled.error}")

        keys = await self.core.setup_keys(compiled.program)
        if not keys.success:
            raise SetupError(f"Key setup failed: {keys.error}")

        logger.info("Circuit setup from source completed")
        return CircuitArtifacts(
            program=compiled.program,
            abi=compiled.abi,
            proving_key=keys.proving_key,
            verification_key=keys.verification_key,
            compilation_time=compiled.compilation_time,
            setup_time=keys.setup_time
        )

    def format_for_verifier(self, artifact: ProofArtifact) -> Dict[str, Any]:
        """Proof in the verifier contract shape plus its public inputs"""
        return {"proof": to_verifier_proof(artifact).to_dict(), "inputs": list(artifact.inputs)}

    async def get_status(self) -> CircuitStatus:
        return await self.circuit_manager.get_circuit_status(self.model_name)

    def get_model_info(self) -> WeatherModelInfo:
        return self.core.get_weather_model_info()

    def get_metrics(self) -> Dict[str, Any]:
        return self.core.get_performance_metrics()

    def reset_metrics(self):
        self.core.reset_performance_metrics()

    def is_ready(self) -> bool:
        """True once the proving backend has been initialized"""
        return self.core.is_initialized()

    async def get_report(self) -> str:
        """Circuit status, performance report and error report as text"""
        status = await self.get_status()
        lines = [
            f"Weather Model: {self.model_name}",
            f"  Compiled: {status.compiled}",
            f"  Keys Setup: {status.keys_setup}",
            f"  Ready: {status.ready}",
            f"  Backend Initialized: {self.core.is_initialized()}",
            "",
        ]
        return (
            "\n".join(lines) + "\n"
            + self.core.performance_monitor.get_report() + "\n"
            + self.core.error_handler.get_error_report()
        )
