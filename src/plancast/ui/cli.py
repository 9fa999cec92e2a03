"""Command-line interface router for plancast."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from plancast.config import (
    ConfigLoadError,
    ConfigValidationError,
    effective_config,
    load_config,
    resolve_candidates,
)
from plancast.control_plane.budgets import InMemoryBudgetGuard
from plancast.domain.ids import generate_request_id
from plancast.errors import ErrorCode, GenerationFailedError
from plancast.main import ExitCode
from plancast.observability.events import EventEmitter, NDJSONSink
from plancast.observability.logging import correlation_scope, setup_logging, shutdown_logging
from plancast.parsing.recovery import Failed, extract
from plancast.planning.manifest_repair import find_manifest_gaps
from plancast.planning.validator import validate_plan
from plancast.synthesis_plane.cascade import CascadeRequirements, build_cascade
from plancast.synthesis_plane.orchestrator import OrchestratorSettings, PlanGenerator
from plancast.synthesis_plane.providers.base import ModelCaller
from plancast.synthesis_plane.providers.openai_adapter import OpenAICompatibleCaller
from plancast.ui.render import CLIRenderer, create_renderer

_EXIT_CODE_BY_ERROR: dict[ErrorCode, ExitCode] = {
    ErrorCode.AUTH_FAILED: ExitCode.PROVIDER_ERROR,
    ErrorCode.PROVIDER_TRANSPORT: ExitCode.PROVIDER_ERROR,
    ErrorCode.NO_CAPABLE_CANDIDATES: ExitCode.CONFIG_ERROR,
}


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = int(ExitCode.GENERATION_FAILED)

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="plancast",
        description=(
            "plancast - turn model output into validated change plans.\n\n"
            "Common workflows:\n"
            "  plancast parse response.txt           Recover JSON from model output\n"
            "  plancast validate response.txt        Check a plan's shape and scripts\n"
            '  plancast generate "add a login page"  Ask the model cascade for a plan\n'
            "  plancast config                       Show effective configuration\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to plancast TOML config (default: ./plancast.toml if present).",
    )
    common.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override a config field, e.g. --set generation.temperature=0.5 (repeatable).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )
    common.add_argument("--json", action="store_true", help="Emit JSON output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # parse ---------------------------------------------------------------
    parse_parser = subparsers.add_parser(
        "parse",
        parents=[common],
        help="Recover a JSON value from free-form model output",
        description=(
            "Extract and repair one JSON object or array from text.\n\n"
            "Examples:\n"
            "  plancast parse response.txt\n"
            "  cat response.txt | plancast parse - --require steps\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parse_parser.add_argument("input", nargs="?", default="-", help="Input file or '-' for stdin")
    parse_parser.add_argument(
        "--require",
        action="append",
        default=[],
        metavar="KEY",
        help="Top-level key the extracted object must contain (repeatable).",
    )
    parse_parser.set_defaults(handler=_cmd_parse)

    # validate ------------------------------------------------------------
    validate_parser = subparsers.add_parser(
        "validate",
        parents=[common],
        help="Validate a plan and report undeclared manifest scripts",
        description=(
            "Recover a plan from text, validate its steps, and list scripts that no\n"
            "package.json declares.\n\n"
            "Examples:\n"
            "  plancast validate plan.json\n"
            "  plancast validate plan.json --manifest package.json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    validate_parser.add_argument(
        "input", nargs="?", default="-", help="Input file or '-' for stdin"
    )
    validate_parser.add_argument(
        "--manifest",
        dest="manifests",
        action="append",
        default=[],
        metavar="PATH",
        help="Existing package.json in the workspace (repeatable).",
    )
    validate_parser.set_defaults(handler=_cmd_validate)

    # generate ------------------------------------------------------------
    generate_parser = subparsers.add_parser(
        "generate",
        parents=[common],
        help="Generate a plan through the configured model cascade",
        description=(
            "Ask each configured candidate in turn until one returns a valid plan.\n\n"
            "Examples:\n"
            '  plancast generate "add a dark mode toggle"\n'
            '  plancast generate "fix the build" --context-file notes.md --events\n'
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    generate_parser.add_argument("instruction", help="Natural-language instruction")
    generate_parser.add_argument(
        "--context-file",
        default=None,
        help="File whose contents are sent as workspace context.",
    )
    generate_parser.add_argument(
        "--manifest",
        dest="manifests",
        action="append",
        default=[],
        metavar="PATH",
        help="Existing package.json in the workspace (repeatable).",
    )
    generate_parser.add_argument(
        "--no-stream",
        action="store_true",
        default=False,
        help="Disable streaming calls.",
    )
    generate_parser.add_argument(
        "--deterministic",
        action="store_true",
        default=False,
        help="Normalize and fingerprint the final plan.",
    )
    generate_parser.add_argument(
        "--events",
        action="store_true",
        default=False,
        help="Write agent events to stderr as newline-delimited JSON.",
    )
    generate_parser.set_defaults(handler=_cmd_generate)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show effective configuration (redacted)",
        description=(
            "Display the effective config after merging defaults, file, env, and --set.\n"
            "Sensitive values are redacted.\n\n"
            "Examples:\n"
            "  plancast config\n"
            "  plancast config --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return int(ExitCode.CONFIG_ERROR)

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_parse(args: argparse.Namespace) -> int:
    text = _read_input(args.input)
    outcome = extract(text, tuple(args.require))
    if isinstance(outcome, Failed):
        if args.json:
            _emit_json({"command": "parse", "ok": False, "reason": outcome.reason})
        else:
            print(f"error: {outcome.reason}", file=sys.stderr)
        return int(ExitCode.GENERATION_FAILED)

    if args.json:
        _emit_json(
            {
                "command": "parse",
                "ok": True,
                "stage": outcome.stage.value,
                "value": outcome.value,
            }
        )
    else:
        print(json.dumps(outcome.value, indent=2, ensure_ascii=False))
    return int(ExitCode.SUCCESS)


def _cmd_validate(args: argparse.Namespace) -> int:
    text = _read_input(args.input)
    manifests = _read_manifests(args.manifests)
    outcome = extract(text, ("steps",))
    if isinstance(outcome, Failed):
        raise CLIError(f"no plan found: {outcome.reason}")

    result = validate_plan(outcome.value)
    gaps = find_manifest_gaps(result.plan, manifests) if result.plan is not None else ()
    payload: dict[str, object] = {
        "command": "validate",
        "valid": result.is_valid,
        "rejection": result.rejection.value if result.rejection else None,
        "message": result.describe(),
        "invalidSteps": [step.to_dict() for step in result.invalid_steps],
        "missingScripts": [gap.script for gap in gaps],
        "plan": result.plan.to_dict() if result.plan is not None else None,
    }
    exit_code = ExitCode.SUCCESS if result.is_valid else ExitCode.GENERATION_FAILED

    if args.json:
        _emit_json(payload)
        return int(exit_code)

    renderer = _get_renderer(args)
    renderer.heading("Plan is valid" if result.is_valid else "Plan is invalid")
    renderer.text(result.describe())
    if result.plan is not None:
        renderer.plan(result.plan)
    if gaps:
        renderer.section("Undeclared scripts:")
        renderer.items([f"{gap.script} (steps {_step_numbers(gap.step_indices)})" for gap in gaps])
    return int(exit_code)


def _cmd_generate(args: argparse.Namespace) -> int:
    overrides = _parse_overrides(args.overrides)
    if args.no_stream:
        overrides["generation.streaming_enabled"] = False
    if args.deterministic:
        overrides["generation.deterministic"] = True
    config = _load_effective_config(args.config_path, overrides)
    workspace_context = _read_text_file(args.context_file) if args.context_file else ""
    manifests = _read_manifests(args.manifests)

    handle = setup_logging(config.get("observability", {}))
    try:
        with correlation_scope(request_id=generate_request_id()):
            resolved = resolve_candidates(config)
            emitter = EventEmitter(NDJSONSink(sys.stderr)) if args.events else EventEmitter()
            try:
                candidates = build_cascade(resolved, CascadeRequirements.from_config(config))
                generator = PlanGenerator(
                    candidates,
                    _build_caller(),
                    settings=OrchestratorSettings.from_config(config),
                    emitter=emitter,
                    budget=InMemoryBudgetGuard.from_config(config),
                )
                result = asyncio.run(
                    generator.generate(
                        args.instruction,
                        workspace_context=workspace_context,
                        workspace_manifests=manifests,
                    )
                )
            except GenerationFailedError as exc:
                return _report_failure(args, exc)
    finally:
        shutdown_logging(handle)

    if args.json:
        _emit_json({"command": "generate", "ok": True, **result.to_dict()})
        return int(ExitCode.SUCCESS)

    renderer = _get_renderer(args)
    renderer.heading(f"Plan from {result.label}")
    if result.fallback_used:
        renderer.kv("Fallback", " -> ".join(result.attempted))
    renderer.kv("Elapsed", f"{result.elapsed:.1f}s")
    renderer.plan(result.plan)
    if result.warnings:
        renderer.section("Warnings:")
        for warning in result.warnings:
            renderer.warning(warning)
    return int(ExitCode.SUCCESS)


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args.config_path, _parse_overrides(args.overrides))
    redacted = effective_config(config)

    if args.json:
        _emit_json({"command": "config", "config": redacted})
        return int(ExitCode.SUCCESS)

    renderer = _get_renderer(args)
    renderer.text(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return int(ExitCode.SUCCESS)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _build_caller() -> ModelCaller:
    return OpenAICompatibleCaller()


def _report_failure(args: argparse.Namespace, error: GenerationFailedError) -> int:
    exit_code = _EXIT_CODE_BY_ERROR.get(error.code, ExitCode.GENERATION_FAILED)
    if args.json:
        _emit_json({"command": "generate", "ok": False, "error": error.to_dict()})
    else:
        create_renderer(no_color=args.no_color, verbose=args.verbose, stream=sys.stderr).failure(
            error
        )
    return int(exit_code)


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=args.no_color, verbose=args.verbose)


def _load_effective_config(
    config_path: str | None, overrides: Mapping[str, object]
) -> dict[str, Any]:
    try:
        return load_config(config_path, cli_overrides=overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=int(ExitCode.CONFIG_ERROR)) from exc


def _parse_overrides(raw_overrides: Sequence[str]) -> dict[str, object]:
    """``KEY=VALUE`` pairs; values are read as JSON when they parse, else as strings."""

    overrides: dict[str, object] = {}
    for raw in raw_overrides:
        key, sep, value = raw.partition("=")
        if not sep or not key.strip():
            raise CLIError(
                f"invalid --set value {raw!r}; expected KEY=VALUE",
                exit_code=int(ExitCode.CONFIG_ERROR),
            )
        try:
            overrides[key.strip()] = json.loads(value)
        except ValueError:
            overrides[key.strip()] = value
    return overrides


def _read_input(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return _read_text_file(source)


def _read_text_file(path_arg: str) -> str:
    path = Path(path_arg).expanduser()
    if not path.is_file():
        raise CLIError(f"file not found: {path}", exit_code=int(ExitCode.CONFIG_ERROR))
    return path.read_text(encoding="utf-8")


def _read_manifests(paths: Sequence[str]) -> dict[str, str]:
    manifests: dict[str, str] = {}
    for raw in paths:
        manifests[Path(raw).as_posix()] = _read_text_file(raw)
    return manifests


def _step_numbers(indices: Sequence[int]) -> str:
    return ", ".join(str(index + 1) for index in indices)


__all__ = ["CLIError", "build_parser", "run_cli"]
