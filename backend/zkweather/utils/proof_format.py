"""
Proof format helpers for the verifier boundary

Engine proofs come as {"a": [x, y], "b": [[x0, x1], [y0, y1]], "c": [x, y]}
with hex coordinates. A pairing-based verifier contract takes
{"a": {"X", "Y"}, "b": {"X": [..], "Y": [..]}, "c": {"X", "Y"}} plus two
public inputs.
"""
import json
from typing import Any, Dict, List, Mapping, Sequence, Union

from pydantic import BaseModel

from zkweather.core.logging_config import LoggingConfig
from zkweather.models.proof import (G1Point, G2Point, ProofArtifact,
                                    ValidationResult, VerifierProof)

logger = LoggingConfig.get_logger(__name__)

PUBLIC_INPUT_COUNT = 2
DEBUG_PREFIX_LENGTH = 10

# Largest integer a JSON consumer with double precision numbers keeps exactly
MAX_SAFE_INTEGER = 2 ** 53 - 1

ProofLike = Union[ProofArtifact, Mapping[str, Any]]


def _engine_proof(artifact: ProofLike) -> Mapping[str, Any]:
    """The engine proof of an artifact, or the mapping itself when it already is one"""
    if isinstance(artifact, ProofArtifact):
        return artifact.proof
    if "proof" in artifact and isinstance(artifact["proof"], Mapping):
        return artifact["proof"]
    return artifact


def _inputs(artifact: ProofLike) -> List[str]:
    if isinstance(artifact, ProofArtifact):
        return list(artifact.inputs)
    return list(artifact.get("inputs", []))


def has_engine_proof_shape(artifact: ProofLike) -> bool:
    """True when a, b, c and inputs are all present as sequences"""
    if isinstance(artifact, ProofArtifact):
        artifact = artifact.model_dump()
    proof = artifact.get("proof")
    if not isinstance(proof, Mapping):
        return False
    return all(isinstance(proof.get(key), (list, tuple)) for key in ("a", "b", "c")) and \
        isinstance(artifact.get("inputs"), (list, tuple))


def to_verifier_proof(artifact: ProofLike) -> VerifierProof:
    """
    Convert an engine proof into the verifier contract shape

    Raises:
        ValueError: a, b or c is missing or has the wrong arity
    """
    proof = _engine_proof(artifact)
    try:
        a, b, c = proof["a"], proof["b"], proof["c"]
        return VerifierProof(
            a=G1Point(X=str(a[0]), Y=str(a[1])),
            b=G2Point(X=[str(b[0][0]), str(b[0][1])], Y=[str(b[1][0]), str(b[1][1])]),
            c=G1Point(X=str(c[0]), Y=str(c[1]))
        )
    except (KeyError, IndexError, TypeError) as e:
        raise ValueError(f"Malformed engine proof: {e}") from e


def format_proof_for_blockchain(artifact: ProofLike) -> Dict[str, Any]:
    """Array form for contract calls: a, b, c as nested pairs plus the public inputs"""
    proof = _engine_proof(artifact)
    return {
        "a": [proof["a"][0], proof["a"][1]],
        "b": [
            [proof["b"][0][0], proof["b"][0][1]],
            [proof["b"][1][0], proof["b"][1][1]],
        ],
        "c": [proof["c"][0], proof["c"][1]],
        "inputs": _inputs(artifact),
    }


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return _jsonable(value.model_dump())
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, int):
        return str(value) if abs(value) > MAX_SAFE_INTEGER else value
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def serialize_proof(proof: Any) -> str:
    """JSON text of a proof; integers beyond double precision become decimal strings"""
    return json.dumps(_jsonable(proof))


def deserialize_proof(proof_json: str) -> Any:
    return json.loads(proof_json)


def validate_proof_format(proof: Mapping[str, Any]) -> ValidationResult:
    """Check a verifier-shaped proof has string points a, c and two-element b coordinates"""
    errors: List[str] = []

    for field in ("a", "b", "c"):
        value = proof.get(field)
        if not value:
            errors.append(f"Missing '{field}' field")
            continue
        if not isinstance(value, Mapping):
            errors.append(f"Invalid '{field}' field")
            continue
        for coordinate in ("X", "Y"):
            item = value.get(coordinate)
            if field == "b":
                if not isinstance(item, (list, tuple)) or len(item) != 2:
                    errors.append(f"Invalid 'b.{coordinate}' field - must be array of 2 strings")
            elif not item or not isinstance(item, str):
                errors.append(f"Invalid '{field}.{coordinate}' field")

    return ValidationResult(valid=not errors, errors=errors)


def validate_public_inputs(inputs: Sequence[Any]) -> ValidationResult:
    """Public inputs must be exactly two 0x-prefixed strings"""
    errors: List[str] = []
    if not isinstance(inputs, (list, tuple)) or len(inputs) != PUBLIC_INPUT_COUNT:
        errors.append(f"Public inputs must be array of {PUBLIC_INPUT_COUNT} strings")
    else:
        for index, value in enumerate(inputs):
            if not isinstance(value, str):
                errors.append(f"Input {index} must be string")
            elif not value.startswith("0x"):
                errors.append(f"Input {index} must start with '0x'")
    return ValidationResult(valid=not errors, errors=errors)


def is_valid_hex_bigint(value: Any) -> bool:
    if not isinstance(value, str) or not value.startswith("0x"):
        return False
    try:
        int(value, 16)
    except ValueError:
        return False
    return True


def _shorten(value: str) -> str:
    return value[:DEBUG_PREFIX_LENGTH] + "..."


def format_proof_for_debug(proof: Union[VerifierProof, Mapping[str, Any]]) -> str:
    """Pretty JSON of a verifier-shaped proof with coordinates cut to a short prefix"""
    if isinstance(proof, VerifierProof):
        proof = proof.to_dict()
    return json.dumps(
        {
            "a": {"X": _shorten(proof["a"]["X"]), "Y": _shorten(proof["a"]["Y"])},
            "b": {
                "X": [_shorten(x) for x in proof["b"]["X"]],
                "Y": [_shorten(y) for y in proof["b"]["Y"]],
            },
            "c": {"X": _shorten(proof["c"]["X"]), "Y": _shorten(proof["c"]["Y"])},
        },
        indent=2
    )


def debug_proof_validation(proof: Union[VerifierProof, Mapping[str, Any]], inputs: Sequence[Any]) -> bool:
    """Log format and hex checks of a proof and its public inputs; True when all pass"""
    if isinstance(proof, VerifierProof):
        proof = proof.to_dict()

    proof_check = validate_proof_format(proof)
    inputs_check = validate_public_inputs(inputs)
    logger.info(f"Proof format validation: valid={proof_check.valid} errors={proof_check.errors}")
    logger.info(f"Public input validation: valid={inputs_check.valid} errors={inputs_check.errors}")
    if not proof_check.valid:
        return False

    logger.info(f"Proof summary: {format_proof_for_debug(proof)}")
    values = {
        "a.X": proof["a"]["X"], "a.Y": proof["a"]["Y"],
        "b.X[0]": proof["b"]["X"][0], "b.X[1]": proof["b"]["X"][1],
        "b.Y[0]": proof["b"]["Y"][0], "b.Y[1]": proof["b"]["Y"][1],
        "c.X": proof["c"]["X"], "c.Y": proof["c"]["Y"],
    }
    values.update({f"input[{i}]": value for i, value in enumerate(inputs)})

    hex_ok = True
    for label, value in values.items():
        valid = is_valid_hex_bigint(value)
        hex_ok = hex_ok and valid
        logger.info(f"  {label}: {valid}")
    return inputs_check.valid and hex_ok
