"""
Proving backend capability and its ZoKrates CLI implementation
"""
import asyncio
import json
import shutil
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from zkweather.core.config import Settings, get_settings
from zkweather.core.exceptions import ZKWeatherError
from zkweather.core.logging_config import LoggingConfig

logger = LoggingConfig.get_logger(__name__)

# Keep the tail of noisy CLI output in error messages
MAX_ERROR_OUTPUT = 2000


class ZoKratesCommandError(ZKWeatherError):
    """A ZoKrates CLI invocation exited with a non-zero status"""

    def __init__(self, command: str, returncode: int, output: str):
        self.command = command
        self.returncode = returncode
        self.output = output
        super().__init__(
            f"zokrates {command} failed with code {returncode}: {output[-MAX_ERROR_OUTPUT:].strip()}"
        )


class ProvingBackend(ABC):
    """
    Opaque proving capability: compile, setup, prove, export-verifier

    Implementations raise on failure; orchestration, retries and result
    normalization live in ZoKratesCore.
    """

    name: str = "unknown"

    @abstractmethod
    async def compile(self, source: str) -> Dict[str, Any]:
        """Compile circuit source into {"program": bytes, "abi": Any}"""

    @abstractmethod
    async def setup(self, program: bytes) -> Dict[str, bytes]:
        """Derive {"proving_key": bytes, "verification_key": bytes} from a program"""

    @abstractmethod
    async def generate_proof(self, program: bytes, proving_key: bytes, inputs: List[str]) -> Dict[str, Any]:
        """Prove a witness for inputs, returning {"proof": Any, "inputs": [str]}"""

    @abstractmethod
    async def export_verifier(self, verification_key: bytes) -> str:
        """Render verifier contract source for a verification key"""


class ZoKratesCliBackend(ProvingBackend):
    """Drives the `zokrates` executable, one temporary workspace per call"""

    name = "zokrates-cli"

    def __init__(self, binary: str, settings: Optional[Settings] = None, version: Optional[str] = None):
        self.binary = binary
        self._settings = settings
        self.version = version

    @property
    def settings(self) -> Settings:
        """Lazy load settings"""
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @classmethod
    async def create(cls, settings: Optional[Settings] = None) -> "ZoKratesCliBackend":
        """
        Locate the ZoKrates executable and check that it runs

        Raises:
            FileNotFoundError: executable missing
            ZoKratesCommandError: executable present but not runnable
        """
        settings = settings or get_settings()
        binary = shutil.which(settings.zokrates_binary)
        if binary is None:
            raise FileNotFoundError(f"ZoKrates executable not found: {settings.zokrates_binary}")

        backend = cls(binary, settings=settings)
        output = await backend._run("--version")
        backend.version = output.strip()
        logger.info(f"Using {backend.version or 'zokrates'} at {binary}")
        return backend

    async def _run(self, *args: str, cwd: Optional[Path] = None) -> str:
        process = await asyncio.create_subprocess_exec(
            self.binary,
            *args,
            cwd=str(cwd) if cwd else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT
        )
        stdout, _ = await process.communicate()
        output = stdout.decode(errors="replace") if stdout else ""
        if process.returncode != 0:
            raise ZoKratesCommandError(args[0], process.returncode, output)
        return output

    async def compile(self, source: str) -> Dict[str, Any]:
        with tempfile.TemporaryDirectory(prefix="zkw-compile-") as tmp:
            workdir = Path(tmp)
            (workdir / "main.zok").write_text(source, encoding="utf-8")

            args = ["compile", "-i", "main.zok", "-o", "out", "-s", "abi.json",
                    "--curve", self.settings.proving_curve]
            if self.settings.zokrates_stdlib_path:
                args += ["--stdlib-path", self.settings.zokrates_stdlib_path]
            await self._run(*args, cwd=workdir)

            program = (workdir / "out").read_bytes()
            abi = json.loads((workdir / "abi.json").read_text(encoding="utf-8"))
        return {"program": program, "abi": abi}

    async def setup(self, program: bytes) -> Dict[str, bytes]:
        with tempfile.TemporaryDirectory(prefix="zkw-setup-") as tmp:
            workdir = Path(tmp)
            (workdir / "out").write_bytes(program)

            await self._run(
                "setup", "-i", "out", "-p", "proving.key", "-v", "verification.key",
                "-s", self.settings.proving_scheme,
                cwd=workdir
            )
            return {
                "proving_key": (workdir / "proving.key").read_bytes(),
                "verification_key": (workdir / "verification.key").read_bytes(),
            }

    async def generate_proof(self, program: bytes, proving_key: bytes, inputs: List[str]) -> Dict[str, Any]:
        with tempfile.TemporaryDirectory(prefix="zkw-prove-") as tmp:
            workdir = Path(tmp)
            (workdir / "out").write_bytes(program)
            (workdir / "proving.key").write_bytes(proving_key)

            await self._run("compute-witness", "-i", "out", "-o", "witness", "-a", *inputs, cwd=workdir)
            await self._run(
                "generate-proof", "-i", "out", "-p", "proving.key", "-w", "witness",
                "-j", "proof.json", "-s", self.settings.proving_scheme,
                cwd=workdir
            )
            data = json.loads((workdir / "proof.json").read_text(encoding="utf-8"))
        return {"proof": data["proof"], "inputs": list(data.get("inputs", []))}

    async def export_verifier(self, verification_key: bytes) -> str:
        with tempfile.TemporaryDirectory(prefix="zkw-export-") as tmp:
            workdir = Path(tmp)
            (workdir / "verification.key").write_bytes(verification_key)

            await self._run("export-verifier", "-i", "verification.key", "-o", "verifier.sol", cwd=workdir)
            return (workdir / "verifier.sol").read_text(encoding="utf-8")
