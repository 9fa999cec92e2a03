"""Console entrypoint: runs the CLI and turns escaped exceptions into exit codes."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    SUCCESS = 0
    GENERATION_FAILED = 1
    CONFIG_ERROR = 2
    PROVIDER_ERROR = 3
    INTERNAL_ERROR = 4


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Run ``plancast`` and return a member of :class:`ExitCode`.

    Anything that escapes the command handlers is classified by walking its
    ``__cause__``/``__context__`` chain; unclassified failures print a traceback.
    """

    try:
        from plancast.ui import cli

        return _coerce(cli.run_cli(argv))
    except SystemExit as exc:
        return _coerce(exc.code)
    except BaseException as exc:  # noqa: BLE001
        code = _classify(exc)
        if code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(exc, file=sys.stderr)
        else:
            print(str(exc).strip() or type(exc).__name__, file=sys.stderr)
        return int(code)


def _coerce(status: object) -> int:
    if status is None:
        return ExitCode.SUCCESS
    if isinstance(status, int) and status in ExitCode._value2member_map_:
        return status
    if isinstance(status, str) and status.strip():
        print(status.strip(), file=sys.stderr)
    return ExitCode.INTERNAL_ERROR


def _classify(exc: BaseException) -> ExitCode:
    from plancast.config.loader import ConfigLoadError
    from plancast.config.schema import ConfigValidationError
    from plancast.errors import ErrorCode, GenerationFailedError
    from plancast.synthesis_plane.providers.base import ProviderError

    provider_codes = {ErrorCode.AUTH_FAILED, ErrorCode.PROVIDER_TRANSPORT}
    for link in _chain(exc):
        match link:
            case ConfigLoadError() | ConfigValidationError():
                return ExitCode.CONFIG_ERROR
            case GenerationFailedError(code=code) if code in provider_codes:
                return ExitCode.PROVIDER_ERROR
            case GenerationFailedError():
                return ExitCode.GENERATION_FAILED
            case ProviderError():
                return ExitCode.PROVIDER_ERROR
            case ModuleNotFoundError(name="openai"):
                return ExitCode.PROVIDER_ERROR
            case FileNotFoundError() | NotADirectoryError() | PermissionError():
                return ExitCode.CONFIG_ERROR
    return ExitCode.INTERNAL_ERROR


def _chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    link: BaseException | None = exc
    while link is not None and id(link) not in seen:
        seen.add(id(link))
        yield link
        if link.__cause__ is not None:
            link = link.__cause__
        elif not link.__suppress_context__:
            link = link.__context__
        else:
            link = None


__all__ = ["ExitCode", "cli_entrypoint"]
