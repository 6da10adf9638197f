"""Command-line bootstrap for the Copydesk workspace."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .services.errors import CopydeskError
from .services.settings import Settings, SettingsStore, redact_secret
from .templates.loader import load_builtin_template, load_template
from .templates.schema import TemplateDefinition
from .utils import logging as logging_utils
from .workspace import Workspace, build_workspace

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_LOGGER = logging.getLogger(__name__)
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_SECRET_FIELDS = ("api_key", "remote_api_key")


def configure_logging(debug: bool = False, *, force: bool = False, console: bool = True) -> None:
    """Configure file and console logging for the command line."""

    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, force=force, console=console)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        settings = active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        settings = Settings()
    return settings


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the ``copydesk`` console script."""

    args = _parse_cli_args(argv)

    debug = _env_flag("COPYDESK_DEBUG", default=False)
    configure_logging(debug, console=debug)

    settings_path = args.settings_path or os.environ.get("COPYDESK_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    overrides_mapping: Dict[str, Any] | None = cli_overrides or None
    settings = load_settings(resolved_path, store=settings_store, overrides=overrides_mapping)

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return 0

    if args.template_outline is not None:
        try:
            template = _resolve_template(args.template_outline)
        except CopydeskError as exc:
            print(f"Template error: {exc}", file=sys.stderr)
            return 1
        _print_outline(template)
        return 0

    if not (args.sync or args.show_session or args.new_document is not None):
        print("Nothing to do; see --help.", file=sys.stderr)
        return 2

    try:
        return asyncio.run(_run_session(settings, args))
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")
        return 130


async def _run_session(settings: Settings, args: argparse.Namespace, stream: TextIO | None = None) -> int:
    destination = stream or sys.stdout
    workspace = build_workspace(settings)
    exit_code = 0
    try:
        await workspace.session.start()
        if args.sync:
            exit_code = await _sync(workspace, destination)
        if args.new_document is not None:
            document = await workspace.session.create_document(args.new_document)
            destination.write(f"Created document {document.id} ({document.title})\n")
        if args.show_session:
            json.dump(workspace.session.describe(), destination, indent=2, default=str)
            destination.write("\n")
    except CopydeskError as exc:
        _LOGGER.error("Session command failed: %s", exc)
        print(f"Error: {exc}", file=sys.stderr)
        exit_code = 1
    finally:
        await workspace.aclose()
    return exit_code


async def _sync(workspace: Workspace, destination: TextIO) -> int:
    if not workspace.gateway.remote_enabled:
        destination.write("Remote storage is not configured; nothing to sync.\n")
        return 0
    report = await workspace.session.reconcile()
    if report is None:
        destination.write("Remote store unavailable; local copies kept.\n")
        return 1
    summary = {
        "pushed": report.pushed,
        "pulled": report.pulled,
        "deleted": report.deleted,
        "remaining": report.remaining,
        "error": report.error.to_dict() if report.error is not None else None,
    }
    json.dump(summary, destination, indent=2)
    destination.write("\n")
    return 1 if report.remaining else 0


def _resolve_template(source: str) -> TemplateDefinition:
    if not source:
        return load_builtin_template()
    return load_template(Path(source).expanduser())


def _print_outline(template: TemplateDefinition, stream: TextIO | None = None) -> None:
    destination = stream or sys.stdout
    destination.write(f"{template.name} ({template.id}): {template.section_count} sections\n")
    for index, section in enumerate(template.sections, start=1):
        required = [item.id for item in section.fields if item.required]
        destination.write(f"  {index}. {section.name} [{section.id}]")
        if required:
            destination.write(f" required: {', '.join(required)}")
        destination.write("\n")


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="copydesk",
        add_help=True,
        description="Inspect and reconcile the Copydesk document workspace.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.copydesk/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    parser.add_argument(
        "--sync",
        action="store_true",
        help="Push locally pending writes to the remote store and report the result.",
    )
    parser.add_argument(
        "--show-session",
        action="store_true",
        help="Hydrate the session from the local cache and print its state.",
    )
    parser.add_argument(
        "--new-document",
        metavar="TITLE",
        help="Create a document, make it active and persist it.",
    )
    parser.add_argument(
        "--template-outline",
        metavar="PATH",
        nargs="?",
        const="",
        help="Validate a template file (or the built-in brochure) and list its sections.",
    )
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    normalized = raw_value.strip()
    if _is_optional(annotation) and normalized.lower() in {"none", "null"}:
        return None
    target = _resolve_annotation(annotation)

    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if is_dataclass(target) or target in {list, dict}:
        try:
            return json.loads(normalized or "null")
        except json.JSONDecodeError as exc:
            raise ValueError("Structured overrides must be valid JSON") from exc
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin in {list, dict}:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    first = args[0]
    # Literal["hybrid", ...] yields plain strings.
    if isinstance(first, str):
        return str
    return first


def _is_optional(annotation: Any) -> bool:
    return type(None) in get_args(annotation)


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    for name in _SECRET_FIELDS:
        value = payload.get(name, "")
        if isinstance(value, str):
            payload[name] = redact_secret(value)
    metadata = {
        "path": str(store.path),
        "cache_dir": str(settings.resolved_cache_dir()),
        "remote_enabled": settings.remote_enabled,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    output = {"settings": payload, "meta": metadata}
    json.dump(output, destination, indent=2)
    destination.write("\n")


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("COPYDESK_"))


if __name__ == "__main__":  # pragma: no cover - manual invocation
    raise SystemExit(main())
