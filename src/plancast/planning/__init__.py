"""Plan validation, manifest-script repair, and deterministic normalization."""

from plancast.planning.manifest_repair import (
    ManifestGap,
    ScriptReference,
    declared_scripts,
    find_manifest_gaps,
    find_script_references,
    synthesize_manifest_repair,
)
from plancast.planning.normalizer import (
    NormalizedPlan,
    PlanNormalizationError,
    normalize_for_deterministic,
    plan_fingerprint,
)
from plancast.planning.validator import (
    PlanRejection,
    PlanValidationError,
    PlanValidationResult,
    assert_valid_plan,
    classify_step,
    validate_plan,
)

__all__ = [
    "ManifestGap",
    "NormalizedPlan",
    "PlanNormalizationError",
    "PlanRejection",
    "PlanValidationError",
    "PlanValidationResult",
    "ScriptReference",
    "assert_valid_plan",
    "classify_step",
    "declared_scripts",
    "find_manifest_gaps",
    "find_script_references",
    "normalize_for_deterministic",
    "plan_fingerprint",
    "synthesize_manifest_repair",
    "validate_plan",
]
