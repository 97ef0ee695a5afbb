"""
Tests for WeatherModelService
"""
import pytest
from zkweather.core.exceptions import (ArtifactNotFoundError,
                                       CircuitNotReadyError, CompilationError,
                                       InputValidationError,
                                       ProofTimeoutError, SetupError)
from zkweather.models.proof import ProofArtifact, WeatherModelInputs
from zkweather.services.weather_model_service import WeatherModelService

from tests.conftest import ADD_CIRCUIT

EXPECTED_PREDICTION = sum(range(113))


@pytest.fixture
def service(settings, core):
    return WeatherModelService(settings, core=core)


@pytest.mark.asyncio
async def test_generate_proof_initializes_model(service, fake_backend, weather_source, valid_features):
    """Test a first proof request compiles and sets up the model"""
    artifact = await service.generate_proof(valid_features)

    assert isinstance(artifact, ProofArtifact)
    assert artifact.metadata.prediction == EXPECTED_PREDICTION
    assert artifact.metadata.feature_count == 113
    assert artifact.metadata.proof_generation_time >= 0
    assert fake_backend.calls["compile"] == 1
    assert fake_backend.calls["setup"] == 1
    assert service.is_ready()

    status = await service.get_status()
    assert status.ready


@pytest.mark.asyncio
async def test_generate_proof_reuses_artifacts(service, fake_backend, weather_source, valid_features):
    await service.generate_proof(valid_features)
    await service.generate_proof(WeatherModelInputs(features=valid_features))

    assert fake_backend.calls["compile"] == 1
    assert fake_backend.calls["setup"] == 1
    assert fake_backend.calls["generate_proof"] == 2


@pytest.mark.asyncio
async def test_generate_proof_without_source(service, valid_features):
    with pytest.raises(CircuitNotReadyError) as exc_info:
        await service.generate_proof(valid_features)
    assert "Failed to initialize weather model" in str(exc_info.value)


@pytest.mark.asyncio
async def test_generate_proof_invalid_inputs(service, fake_backend, weather_source, valid_features):
    del valid_features["RR1_mean"]
    with pytest.raises(InputValidationError) as exc_info:
        await service.generate_proof(valid_features)
    assert exc_info.value.errors == ["Missing required feature: RR1_mean"]
    assert fake_backend.calls["generate_proof"] == 0


@pytest.mark.asyncio
async def test_generate_proof_timeout(service, fake_backend, weather_source, valid_features):
    await service.initialize()
    fake_backend.proof_delay = 0.2

    with pytest.raises(ProofTimeoutError) as exc_info:
        await service.generate_proof(valid_features, timeout_ms=20)
    assert str(exc_info.value) == "Proof generation timeout after 20ms"


@pytest.mark.asyncio
async def test_batch_collects_failures(service, weather_source, valid_features):
    """Test a bad item does not stop the batch by default"""
    bad = dict(valid_features)
    bad["Unknown_thing"] = 1
    result = await service.generate_proofs([valid_features, bad, valid_features])

    assert len(result.artifacts) == 2
    assert [failure.index for failure in result.failures] == [1]
    assert "Unknown feature: Unknown_thing" in result.failures[0].error
    assert not result.success
    assert not result.stopped_early
    assert result.total_time >= 0


@pytest.mark.asyncio
async def test_batch_stop_on_error(service, weather_source, valid_features):
    bad = {"RR1_mean": float("nan")}
    result = await service.generate_proofs([valid_features, bad, valid_features], stop_on_error=True)

    assert len(result.artifacts) == 1
    assert len(result.failures) == 1
    assert result.stopped_early


@pytest.mark.asyncio
async def test_batch_all_succeed(service, weather_source, valid_features):
    result = await service.generate_proofs([valid_features, valid_features])
    assert result.success
    assert len(result.artifacts) == 2


def test_validate_batch(service, valid_features):
    results = service.validate_batch([valid_features, {"RR1_mean": 1}])
    assert results[0].valid
    assert not results[1].valid
    assert len(results[1].errors) == 112


@pytest.mark.asyncio
async def test_verify_proof(service, weather_source, valid_features):
    artifact = await service.generate_proof(valid_features)

    assert await service.verify_proof(artifact)
    assert service.check_proof_structure(artifact)
    assert not service.check_proof_structure({"proof": {}, "inputs": ["0x1"]})


@pytest.mark.asyncio
async def test_verify_proof_requires_keys(service, valid_features):
    with pytest.raises(ArtifactNotFoundError):
        await service.verify_proof({"proof": {"a": []}, "inputs": ["0x1"]})


@pytest.mark.asyncio
async def test_export_verifier_to_file(service, weather_source, tmp_path):
    await service.initialize()
    output = tmp_path / "contracts" / "Verifier.sol"

    source = await service.export_verifier(output)

    assert "contract Verifier" in source
    assert output.read_text(encoding="utf-8") == source


@pytest.mark.asyncio
async def test_export_verifier_without_keys(service):
    with pytest.raises(ArtifactNotFoundError):
        await service.export_verifier()


@pytest.mark.asyncio
async def test_setup_circuit_from_source(service, fake_backend, settings):
    """Test in-memory setup persists nothing"""
    artifacts = await service.setup_circuit_from_source(ADD_CIRCUIT)

    assert artifacts.program == b"program:" + ADD_CIRCUIT.encode("utf-8")
    assert artifacts.proving_key.startswith(b"pk:")
    assert artifacts.verification_key.startswith(b"vk:")
    assert not settings.compiled_dir.exists()
    assert not settings.key_dir.exists()


@pytest.mark.asyncio
async def test_setup_circuit_from_source_compile_failure(service, fake_backend):
    fake_backend.fail_times["compile"] = 3
    with pytest.raises(CompilationError):
        await service.setup_circuit_from_source(ADD_CIRCUIT)
    assert fake_backend.calls["setup"] == 0


@pytest.mark.asyncio
async def test_setup_circuit_from_source_setup_failure(service, fake_backend):
    fake_backend.fail_times["setup"] = 3
    with pytest.raises(SetupError):
        await service.setup_circuit_from_source(ADD_CIRCUIT)


@pytest.mark.asyncio
async def test_format_for_verifier(service, weather_source, valid_features):
    artifact = await service.generate_proof(valid_features)
    formatted = service.format_for_verifier(artifact)

    assert set(formatted["proof"]) == {"a", "b", "c"}
    assert formatted["proof"]["a"]["X"] == artifact.proof["a"][0]
    assert formatted["proof"]["b"]["X"] == artifact.proof["b"][0]
    assert formatted["inputs"] == artifact.inputs


@pytest.mark.asyncio
async def test_report_and_metrics(service, weather_source, valid_features):
    await service.generate_proof(valid_features)

    report = await service.get_report()
    assert "Weather Model: weather-model" in report
    assert "Ready: True" in report

    metrics = service.get_metrics()
    assert metrics["proof_generations"]["count"] == 1
    service.reset_metrics()
    assert service.get_metrics()["proof_generations"]["count"] == 0


def test_model_info(service):
    info = service.get_model_info()
    assert info.name == "weather-model"
    assert info.features_count == 113
    assert info.input_size == 116
    assert len(info.features) == 113


@pytest.mark.asyncio
async def test_batch_keeps_proofs_when_item_is_not_a_mapping(service, weather_source, valid_features):
    """Test a malformed batch entry is recorded as a failure"""
    result = await service.generate_proofs([valid_features, None, valid_features])

    assert len(result.artifacts) == 2
    assert [failure.index for failure in result.failures] == [1]
    assert "must be a mapping" in result.failures[0].error


@pytest.mark.asyncio
async def test_generate_proof_rejects_non_mapping(service, fake_backend, weather_source):
    with pytest.raises(InputValidationError):
        await service.generate_proof(None)
    assert fake_backend.calls["generate_proof"] == 0
