"""
Weather feature contract for the weather model circuit

Validates a named radar feature map, encodes it into the fixed-width
decimal string vector the circuit takes, and decodes the prediction
from the public inputs returned with a proof.
"""
import math
import random
import re
from numbers import Real
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from zkweather.core.config import Settings, get_settings
from zkweather.core.exceptions import PredictionDecodeError
from zkweather.core.logging_config import LoggingConfig
from zkweather.models.proof import ValidationResult

logger = LoggingConfig.get_logger(__name__)

_STATS = ("mean", "min", "max", "med", "sum")

_COUNT_DESCRIPTIONS = {
    "num_00": "Number of zero values",
    "num_01": "Number of special values (type 1)",
    "num_03": "Number of special values",
    "num_non_null": "Number of non-null values",
}

_STAT_DESCRIPTIONS = {
    "mean": "Average value",
    "min": "Minimum value",
    "max": "Maximum value",
    "med": "Median value",
    "sum": "Sum of values",
}

# (prefix, label, count columns) in canonical circuit order
_FAMILIES: List[Tuple[str, str, Tuple[str, ...]]] = [
    ("MassWeightedMean", "Mass Weighted Mean", ("num_non_null",)),
    ("MassWeightedSD", "Mass Weighted Standard Deviation", ("num_non_null",)),
    ("RR1", "Rain Rate 1", ("num_00", "num_non_null")),
    ("ReflectivityQC", "Reflectivity QC", ("num_00", "num_03", "num_non_null")),
    ("LogWaterVolume", "Log Water Volume", ("num_non_null",)),
    ("Reflectivity", "Reflectivity", ("num_non_null",)),
    ("Composite", "Composite", ("num_00", "num_non_null")),
    ("RR3", "Rain Rate 3", ("num_00", "num_non_null")),
    ("Zdr", "Differential Reflectivity", ("num_00", "num_03", "num_non_null")),
    ("Velocity", "Velocity", ("num_00", "num_01", "num_03", "num_non_null")),
    ("HybridScan", "Hybrid Scan", ("num_non_null",)),
    ("TimeToEnd", "Time to End", ("num_non_null",)),
    ("RhoHV", "Correlation Coefficient", ("num_00", "num_03", "num_non_null")),
    ("RR2", "Rain Rate 2", ("num_00", "num_non_null")),
    ("RadarQualityIndex", "Radar Quality Index", ("num_non_null",)),
]

HYDRO_PREFIX = "Hydro"
HYDRO_LABEL = "Hydrometeor Classification"
FEATURES_COUNT = 113

# Group name -> family prefixes, in display order
_GROUP_LAYOUT = [
    ("Mass Weighted Statistics", ["MassWeightedMean", "MassWeightedSD"]),
    ("Rain Rates", ["RR1", "RR2", "RR3"]),
    ("Reflectivity", ["ReflectivityQC", "Reflectivity"]),
    ("Volume and Composite", ["LogWaterVolume", "Composite"]),
    ("Polarimetric Data", ["Zdr", "RhoHV"]),
    ("Velocity", ["Velocity"]),
    ("Scan Data", ["HybridScan", "TimeToEnd"]),
    ("Quality Metrics", ["RadarQualityIndex"]),
    (HYDRO_LABEL, [HYDRO_PREFIX]),
]


def _build_catalog() -> Tuple[List[str], Dict[str, str], Dict[str, List[str]]]:
    names: List[str] = []
    descriptions: Dict[str, str] = {}
    by_prefix: Dict[str, List[str]] = {}

    for prefix, label, counts in _FAMILIES:
        for column in counts + _STATS:
            name = f"{prefix}_{column}"
            if prefix == "Velocity" and column == "num_03":
                text = "Number of special values (type 3)"
            else:
                text = _COUNT_DESCRIPTIONS.get(column) or _STAT_DESCRIPTIONS[column]
            names.append(name)
            descriptions[name] = f"{label} - {text}"
            by_prefix.setdefault(prefix, []).append(name)

    # Hydrometeor classes fill the remaining slots
    hydro_class = 0
    while len(names) < FEATURES_COUNT:
        name = f"{HYDRO_PREFIX}_{hydro_class}"
        names.append(name)
        descriptions[name] = f"{HYDRO_LABEL} - Type {hydro_class}"
        by_prefix.setdefault(HYDRO_PREFIX, []).append(name)
        hydro_class += 1

    groups = {
        group: [name for prefix in prefixes for name in by_prefix.get(prefix, [])]
        for group, prefixes in _GROUP_LAYOUT
    }
    return names, descriptions, groups


_names, FEATURE_DESCRIPTIONS, FEATURE_GROUPS = _build_catalog()

# Canonical feature order; position i feeds circuit input i
RADAR_FEATURES: Tuple[str, ...] = tuple(_names)
_FEATURE_SET = frozenset(RADAR_FEATURES)

# parseInt-style prefix: optional sign, then hex (0x...) or decimal digits
_INTEGER_PREFIX = re.compile(r"^\s*([+-]?)(0[xX][0-9a-fA-F]+|\d+)")


def _is_finite_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, Real):
        return False
    return math.isfinite(value)


def validate_radar_data(data: Mapping[str, Any]) -> ValidationResult:
    """
    Check a feature map against the canonical feature set

    All problems are collected: missing features, unknown features and
    values that are not finite numbers.
    """
    if not isinstance(data, Mapping):
        return ValidationResult(
            valid=False,
            errors=[f"Feature data must be a mapping of feature names to values, got {type(data).__name__}"]
        )
    errors = [f"Missing required feature: {feature}" for feature in RADAR_FEATURES if feature not in data]
    errors.extend(f"Unknown feature: {key}" for key in data if key not in _FEATURE_SET)
    errors.extend(
        f"Invalid value for {key}: {value}" for key, value in data.items() if not _is_finite_number(value)
    )
    return ValidationResult(valid=not errors, errors=errors)


def format_radar_data(data: Mapping[str, Any]) -> List[Any]:
    """Feature values in canonical order; missing or empty values become 0"""
    return [data.get(feature) or 0 for feature in RADAR_FEATURES]


def encode_value(value: Any) -> str:
    """Decimal string form of a feature value (3.0 -> "3")"""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def parse_prediction(raw: Any) -> Optional[int]:
    """Lenient integer parse of a public input, None when nothing parses"""
    match = _INTEGER_PREFIX.match(str(raw))
    if match is None:
        return None
    sign, digits = match.groups()
    value = int(digits, 16) if digits[:2].lower() == "0x" else int(digits)
    return -value if sign == "-" else value


def decode_prediction(public_inputs: Sequence[Any], strict: bool = False) -> int:
    """
    Decode the model prediction from the last public input

    An unparseable (or missing) value decodes to 0 with a warning, or raises
    PredictionDecodeError when strict is set.
    """
    raw = public_inputs[-1] if public_inputs else None
    prediction = parse_prediction(raw) if raw is not None else None
    if prediction is not None:
        return prediction

    if strict:
        raise PredictionDecodeError(f"Cannot decode prediction from public input: {raw!r}")
    logger.warning(f"Could not decode prediction from public input {raw!r}, using 0")
    return 0


class WeatherFeatureEncoder:
    """Feature map validation and encoding bound to the configured circuit shape"""

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings

    @property
    def settings(self) -> Settings:
        """Lazy load settings"""
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def features(self) -> Tuple[str, ...]:
        return RADAR_FEATURES

    def validate(self, features: Mapping[str, Any]) -> ValidationResult:
        """
        Validate a feature map

        Out-of-range, fractional and negative values are reported as
        warnings: the circuit takes non-negative integer field elements.
        """
        result = validate_radar_data(features)
        if not isinstance(features, Mapping):
            return result

        low, high = self.settings.value_range_min, self.settings.value_range_max
        warnings = []
        for feature, value in features.items():
            if feature not in _FEATURE_SET or not _is_finite_number(value):
                continue
            if not low <= value <= high:
                warnings.append(f"Value for {feature} ({value}) is outside expected range")
            if value != int(value):
                warnings.append(f"Value for {feature} ({value}) is not an integer")
            if value < 0:
                warnings.append(f"Value for {feature} ({value}) is negative")
        result.warnings = warnings
        return result

    def encode(self, features: Mapping[str, Any]) -> List[str]:
        """
        Encode a feature map into circuit inputs

        Canonical feature order followed by zero padding up to input_size,
        each value as a decimal string.
        """
        values = format_radar_data(features)
        values.extend([0] * (self.settings.input_size - len(values)))
        return [encode_value(value) for value in values]

    def decode_prediction(self, public_inputs: Sequence[Any], strict: bool = False) -> int:
        return decode_prediction(public_inputs, strict=strict)


def generate_test_features(seed: Optional[int] = None, high: int = 1000) -> Dict[str, int]:
    """Random valid feature map for development runs"""
    rng = random.Random(seed)
    return {feature: rng.randrange(high) for feature in RADAR_FEATURES}
