"""Recovery parser: extract and repair near-JSON from model output."""

from plancast.parsing.extraction import locate_region, strip_wrapping
from plancast.parsing.recovery import (
    Failed,
    JSONRecoveryError,
    ParseOutcome,
    Parsed,
    ParseStage,
    extract,
    extract_all,
    parse_region,
)
from plancast.parsing.repairs import (
    escape_control_characters,
    insert_adjacency_commas,
    insert_missing_commas,
    normalize_quotes,
    remove_trailing_commas,
    repair_json_text,
    strip_comments,
    translate_literals,
)

__all__ = [
    "Failed",
    "JSONRecoveryError",
    "ParseOutcome",
    "ParseStage",
    "Parsed",
    "escape_control_characters",
    "extract",
    "extract_all",
    "insert_adjacency_commas",
    "insert_missing_commas",
    "locate_region",
    "normalize_quotes",
    "parse_region",
    "remove_trailing_commas",
    "repair_json_text",
    "strip_comments",
    "strip_wrapping",
    "translate_literals",
]
