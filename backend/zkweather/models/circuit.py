"""
Result models for proving engine operations and circuit readiness
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class CompilationResult(BaseModel):
    """Outcome of compiling a circuit source"""
    program: bytes = b""
    abi: Optional[Any] = None
    success: bool
    error: Optional[str] = None
    compilation_time: Optional[float] = None


class SetupResult(BaseModel):
    """Outcome of generating a proving/verification key pair"""
    proving_key: bytes = b""
    verification_key: bytes = b""
    success: bool
    error: Optional[str] = None
    setup_time: Optional[float] = None


class ProofResult(BaseModel):
    """Outcome of a proof generation call"""
    proof: Optional[Dict[str, Any]] = None
    inputs: List[str] = Field(default_factory=list)
    success: bool
    error: Optional[str] = None
    proof_generation_time: Optional[float] = None
    timed_out: bool = False


class CircuitStatus(BaseModel):
    """Readiness of a named circuit, derived from persisted artifacts"""
    model_config = ConfigDict(frozen=True)

    compiled: bool = False
    keys_setup: bool = False

    @computed_field
    @property
    def ready(self) -> bool:
        return self.compiled and self.keys_setup

    def to_dict(self) -> Dict[str, bool]:
        return {"compiled": self.compiled, "keys_setup": self.keys_setup, "ready": self.ready}


class InitializationResult(BaseModel):
    """Outcome of converging a circuit to the ready state"""
    success: bool
    error: Optional[str] = None
    status: CircuitStatus


class CircuitArtifacts(BaseModel):
    """Program and key pair of a circuit set up in memory"""
    program: bytes
    abi: Optional[Any] = None
    proving_key: bytes
    verification_key: bytes
    compilation_time: Optional[float] = None
    setup_time: Optional[float] = None
