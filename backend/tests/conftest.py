"""
Pytest configuration and fixtures
"""
import asyncio
import hashlib
import os
import sys
from pathlib import Path
from typing import Dict, List

import pytest

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

# Ensure default: do not run real ZoKrates tests unless explicitly enabled
os.environ.setdefault("RUN_REAL_ZOKRATES_TESTS", "0")

from zkweather.core.config import Settings  # noqa: E402
from zkweather.core.proving_backend import ProvingBackend  # noqa: E402
from zkweather.core.zokrates_core import ZoKratesCore  # noqa: E402
from zkweather.services.circuit_manager import CircuitManager  # noqa: E402
from zkweather.services.weather_features import RADAR_FEATURES  # noqa: E402

CIRCUITS_DIR = backend_dir / "circuits"

ADD_CIRCUIT = "def main(private field a, field b) -> field { return a + b; }"


def _field_hex(value: int) -> str:
    return "0x" + format(value, "064x")


class FakeProvingBackend(ProvingBackend):
    """
    Deterministic in-memory proving backend

    fail_times[operation] makes the next N calls of that operation raise
    RuntimeError(error_message). Proofs echo the last input and the sum of
    all inputs as the two public inputs.
    """

    name = "fake"

    def __init__(self):
        self.calls: Dict[str, int] = {"compile": 0, "setup": 0, "generate_proof": 0, "export_verifier": 0}
        self.fail_times: Dict[str, int] = {}
        self.error_message = "backend failure"
        self.proof_delay = 0.0
        self.received_inputs: List[List[str]] = []

    def _maybe_fail(self, operation: str):
        self.calls[operation] += 1
        remaining = self.fail_times.get(operation, 0)
        if remaining:
            self.fail_times[operation] = remaining - 1
            raise RuntimeError(self.error_message)

    async def compile(self, source: str):
        self._maybe_fail("compile")
        return {"program": b"program:" + source.encode("utf-8"), "abi": {"source_length": len(source)}}

    async def setup(self, program: bytes):
        self._maybe_fail("setup")
        digest = hashlib.sha256(program).digest()
        return {"proving_key": b"pk:" + digest, "verification_key": b"vk:" + digest}

    async def generate_proof(self, program: bytes, proving_key: bytes, inputs: List[str]):
        if self.proof_delay:
            await asyncio.sleep(self.proof_delay)
        self._maybe_fail("generate_proof")
        self.received_inputs.append(list(inputs))

        values = [int(value) for value in inputs]
        seed = hashlib.sha256(program + proving_key + ",".join(inputs).encode("utf-8")).hexdigest()
        point = lambda offset: _field_hex(int(seed[offset:offset + 16], 16))  # noqa: E731
        return {
            "proof": {
                "a": [point(0), point(16)],
                "b": [[point(32), point(48)], [point(8), point(24)]],
                "c": [point(40), point(4)],
            },
            "inputs": [_field_hex(values[-1]), _field_hex(sum(values))],
        }

    async def export_verifier(self, verification_key: bytes) -> str:
        self._maybe_fail("export_verifier")
        return f"// SPDX-License-Identifier: MIT\ncontract Verifier {{ /* {verification_key.hex()} */ }}\n"


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings with storage under tmp_path and millisecond retry delays"""
    return Settings(
        _env_file=None,
        circuit_path=str(tmp_path / "circuits"),
        compiled_path=str(tmp_path / "compiled"),
        proving_key_path=str(tmp_path / "keys"),
        max_retries=3,
        retry_delays_ms=[1, 1, 1],
        heavy_retry_delays_ms=[1, 1, 1],
        log_memory_usage=False,
        proof_generation_timeout_ms=5000,
    )


@pytest.fixture
def fake_backend() -> FakeProvingBackend:
    return FakeProvingBackend()


@pytest.fixture
def backend_factory(fake_backend):
    async def factory(settings):
        return fake_backend
    return factory


@pytest.fixture
def core(settings, backend_factory) -> ZoKratesCore:
    return ZoKratesCore(settings, backend_factory=backend_factory)


@pytest.fixture
def circuit_manager(settings, core) -> CircuitManager:
    return CircuitManager(settings, core=core)


@pytest.fixture
def weather_source(settings) -> str:
    """Install the weather model circuit source under the configured circuit path"""
    source = (CIRCUITS_DIR / "weather-model.zok").read_text(encoding="utf-8")
    settings.circuit_dir.mkdir(parents=True, exist_ok=True)
    (settings.circuit_dir / "weather-model.zok").write_text(source, encoding="utf-8")
    return source


@pytest.fixture
def valid_features() -> Dict[str, int]:
    return {feature: index for index, feature in enumerate(RADAR_FEATURES)}


# ---------------------------------------------------------------------------
# Test-run safety: skip `real_zokrates` marked tests by default unless explicit flag
# ---------------------------------------------------------------------------
def pytest_collection_modifyitems(config, items):
    """Skip real ZoKrates tests unless RUN_REAL_ZOKRATES_TESTS=1 is set in env."""
    run_real = os.environ.get("RUN_REAL_ZOKRATES_TESTS", "0") == "1"
    if run_real:
        return
    skip_marker = pytest.mark.skip(reason="Real ZoKrates tests disabled. Set RUN_REAL_ZOKRATES_TESTS=1 to enable.")
    for item in items:
        if "real_zokrates" in getattr(item, "keywords", {}):
            item.add_marker(skip_marker)
