"""
Weather model input and proof artifact models
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class WeatherModelInputs(BaseModel):
    """Named radar feature map fed into the weather model circuit"""
    # Values are checked by the feature validator, not coerced here
    features: Dict[str, Any]


class ValidationResult(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class ProofMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: float  # ms since epoch
    feature_count: int
    prediction: int
    proof_generation_time: float  # ms, validation through decoding


class ProofArtifact(BaseModel):
    """
    A generated weather proof

    proof is the engine-defined structure (g16: points a, b, c) passed
    through unmodified; inputs are the public inputs with the prediction last.
    """
    model_config = ConfigDict(frozen=True)

    proof: Dict[str, Any]
    inputs: List[str]
    metadata: ProofMetadata


class BatchFailure(BaseModel):
    index: int
    error: str


class BatchProofResult(BaseModel):
    """Outcome of generating proofs for several feature maps"""
    artifacts: List[ProofArtifact] = Field(default_factory=list)
    failures: List[BatchFailure] = Field(default_factory=list)
    total_time: float = 0.0  # ms
    stopped_early: bool = False

    @property
    def success(self) -> bool:
        return not self.failures


class G1Point(BaseModel):
    X: str
    Y: str


class G2Point(BaseModel):
    X: List[str] = Field(min_length=2, max_length=2)
    Y: List[str] = Field(min_length=2, max_length=2)


class VerifierProof(BaseModel):
    """Proof shape expected by a pairing-based verifier contract"""
    a: G1Point
    b: G2Point
    c: G1Point

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()


class WeatherModelInfo(BaseModel):
    name: str
    features_count: int
    input_size: int
    output_size: int
    features: List[str]
    value_ranges: Dict[str, float]
    description: Optional[str] = None
