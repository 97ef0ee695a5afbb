"""
Circuit artifact manager

Owns the persisted compiled program and key pair of each named circuit and
derives the circuit readiness state from their presence on disk:

    {compiled_path}/{name}.json   JSON array of program byte values
    {proving_key_path}/{name}.key proving key, raw bytes
    {proving_key_path}/{name}.vk  verification key, raw bytes
"""
import asyncio
import json
import os
from pathlib import Path
from typing import Any, Callable, Optional

from zkweather.core.config import Settings, get_settings
from zkweather.core.exceptions import (ArtifactIOError, ArtifactNotFoundError,
                                       ZKWeatherError)
from zkweather.core.logging_config import LoggingConfig
from zkweather.core.metrics import zk_circuit_ready
from zkweather.core.zokrates_core import ZoKratesCore
from zkweather.models.circuit import (CircuitStatus, CompilationResult,
                                     InitializationResult, SetupResult)

logger = LoggingConfig.get_logger(__name__)


def _read_bytes(path: Path) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def _read_text(path: Path) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def _read_program(path: Path) -> bytes:
    with open(path, "r", encoding="utf-8") as f:
        return bytes(json.load(f))


def _write_atomic(path: Path, data: bytes):
    """Write through a temp file so a partial write never looks like an artifact"""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "wb") as f:
        f.write(data)
    os.replace(tmp_path, path)


def _exists(path: Path) -> bool:
    try:
        return path.is_file()
    except OSError:
        return False


class CircuitManager:
    """
    Persisted artifacts and readiness per circuit name

    Public compile / setup / initialize entry points return result models
    carrying success and error instead of raising.
    """

    def __init__(self, settings: Optional[Settings] = None, core: Optional[ZoKratesCore] = None):
        self._settings = settings
        self._core = core

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

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def source_file(self, name: str) -> Path:
        return self.settings.circuit_dir / f"{name}{self.settings.circuit_file_suffix}"

    def program_file(self, name: str) -> Path:
        return self.settings.compiled_dir / f"{name}{self.settings.compiled_file_suffix}"

    def proving_key_file(self, name: str) -> Path:
        return self.settings.key_dir / f"{name}{self.settings.proving_key_file_suffix}"

    def verification_key_file(self, name: str) -> Path:
        return self.settings.key_dir / f"{name}{self.settings.verification_key_file_suffix}"

    # ------------------------------------------------------------------
    # Artifact I/O
    # ------------------------------------------------------------------

    async def _run_io(self, func: Callable[..., Any], *args) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: func(*args))

    async def _load(self, func: Callable[[Path], Any], path: Path, what: str) -> Any:
        try:
            return await self._run_io(func, path)
        except FileNotFoundError as e:
            logger.error(f"Failed to load {what}: {path} does not exist")
            raise ArtifactNotFoundError(f"Failed to load {what}: {path} does not exist") from e
        except (OSError, ValueError, TypeError) as e:
            logger.error(f"Failed to load {what}: {path}: {e}")
            raise ArtifactIOError(f"Failed to load {what}: {e}") from e

    async def _save(self, path: Path, data: bytes, what: str):
        try:
            await self._run_io(_write_atomic, path, data)
        except OSError as e:
            logger.error(f"Failed to save {what}: {path}: {e}")
            raise ArtifactIOError(f"Failed to save {what}: {e}") from e
        logger.info(f"{what.capitalize()} saved: {path}")

    async def load_circuit_source(self, name: str) -> str:
        source = await self._load(_read_text, self.source_file(name), "circuit source")
        logger.info(f"Circuit source loaded: {name}")
        return source

    async def load_compiled_circuit(self, name: str) -> bytes:
        return await self._load(_read_program, self.program_file(name), "compiled circuit")

    async def load_proving_key(self, name: str) -> bytes:
        return await self._load(_read_bytes, self.proving_key_file(name), "proving key")

    async def load_verification_key(self, name: str) -> bytes:
        return await self._load(_read_bytes, self.verification_key_file(name), "verification key")

    async def save_compiled_circuit(self, name: str, program: bytes):
        payload = json.dumps(list(program)).encode("utf-8")
        await self._save(self.program_file(name), payload, "compiled circuit")

    async def save_keys(self, name: str, proving_key: bytes, verification_key: bytes):
        await self._save(self.proving_key_file(name), proving_key, "proving key")
        await self._save(self.verification_key_file(name), verification_key, "verification key")

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    async def is_circuit_compiled(self, name: str) -> bool:
        return await self._run_io(_exists, self.program_file(name))

    async def are_keys_setup(self, name: str) -> bool:
        proving = await self._run_io(_exists, self.proving_key_file(name))
        verification = await self._run_io(_exists, self.verification_key_file(name))
        return proving and verification

    async def get_circuit_status(self, name: Optional[str] = None) -> CircuitStatus:
        """Probe artifact presence; an unreadable artifact counts as absent"""
        name = name or self.settings.weather_model_name
        status = CircuitStatus(
            compiled=await self.is_circuit_compiled(name),
            keys_setup=await self.are_keys_setup(name)
        )
        zk_circuit_ready.labels(circuit=name).set(1 if status.ready else 0)
        return status

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def compile_circuit(self, name: str) -> CompilationResult:
        """Compile the named circuit source and persist the program"""
        LoggingConfig.set_context(circuit=name)
        logger.info(f"Compiling circuit {name}...")
        try:
            source = await self.load_circuit_source(name)
            result = await self.core.compile_circuit(source)
            if result.success:
                await self.save_compiled_circuit(name, result.program)
        except ZKWeatherError as e:
            logger.error(f"Circuit {name} compilation failed: {e}")
            return CompilationResult(success=False, error=str(e))

        if result.success:
            logger.info(f"Circuit {name} compiled successfully")
        else:
            logger.error(f"Circuit {name} compilation failed: {result.error}")
        return result

    async def setup_circuit(self, name: str, program: bytes) -> SetupResult:
        """Generate and persist the key pair of the named circuit"""
        LoggingConfig.set_context(circuit=name)
        logger.info(f"Setting up keys for circuit {name}...")
        try:
            result = await self.core.setup_keys(program)
            if result.success:
                await self.save_keys(name, result.proving_key, result.verification_key)
        except ZKWeatherError as e:
            logger.error(f"Circuit {name} key setup failed: {e}")
            return SetupResult(success=False, error=str(e))

        if result.success:
            logger.info(f"Circuit {name} keys setup successfully")
        else:
            logger.error(f"Circuit {name} key setup failed: {result.error}")
        return result

    async def compile_weather_model(self) -> CompilationResult:
        return await self.compile_circuit(self.settings.weather_model_name)

    async def setup_weather_model(self, program: bytes) -> SetupResult:
        return await self.setup_circuit(self.settings.weather_model_name, program)

    async def initialize(self, name: Optional[str] = None) -> InitializationResult:
        """
        Bring a circuit to the ready state, performing only the missing steps

        A ready circuit is left untouched. The program is compiled and
        persisted before key setup starts. Existing keys are kept even when the
        program is recompiled; delete them to force a new key pair.
        The first failing step ends the sequence.
        """
        name = name or self.settings.weather_model_name
        LoggingConfig.set_context(circuit=name)
        logger.info(f"Initializing circuit {name}...")

        status = await self.get_circuit_status(name)
        if status.ready:
            logger.info(f"Circuit {name} already initialized")
            return InitializationResult(success=True, status=status)

        if not status.compiled:
            compiled = await self.compile_circuit(name)
            if not compiled.success:
                return await self._initialization_failed(name, compiled.error)
            program = compiled.program
            if status.keys_setup:
                logger.warning(
                    f"Circuit {name} was recompiled but keeps its existing keys; "
                    f"they may not match the new program"
                )
        else:
            try:
                program = await self.load_compiled_circuit(name)
            except ZKWeatherError as e:
                return await self._initialization_failed(name, str(e))

        if not status.keys_setup:
            setup = await self.setup_circuit(name, program)
            if not setup.success:
                return await self._initialization_failed(name, setup.error)

        status = await self.get_circuit_status(name)
        if not status.ready:
            return await self._initialization_failed(name, f"Circuit {name} artifacts incomplete after initialization")
        logger.info(f"Circuit {name} initialized successfully")
        return InitializationResult(success=True, status=status)

    async def _initialization_failed(self, name: str, error: Optional[str]) -> InitializationResult:
        logger.error(f"Circuit {name} initialization failed: {error}")
        return InitializationResult(success=False, error=error, status=await self.get_circuit_status(name))

    async def initialize_weather_model(self) -> InitializationResult:
        return await self.initialize(self.settings.weather_model_name)
