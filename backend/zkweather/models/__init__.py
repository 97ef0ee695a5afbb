"""
Pydantic models
"""
from zkweather.models.circuit import (CircuitArtifacts,  # noqa: F401
                                     CircuitStatus, CompilationResult,
                                     InitializationResult, ProofResult,
                                     SetupResult)
from zkweather.models.proof import (BatchFailure,  # noqa: F401
                                    BatchProofResult, G1Point, G2Point,
                                    ProofArtifact, ProofMetadata,
                                    ValidationResult, VerifierProof,
                                    WeatherModelInfo, WeatherModelInputs)
