# browserflow/cli.py
from __future__ import annotations

"""Command-line interface
------------------------
Convenience commands to validate/run workflow files and view effective config.
Thin wrapper around the core loader and engine for local runs.
"""

import asyncio
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional

import click

from browserflow.core.workflow_loader import WorkflowDefinition, find_workflow_files, load_workflows_file
from browserflow.utils.config import get_settings
from browserflow.utils.logger import attach_file_logger, bind, detach_file_logger, get_logger, set_log_level


# -------- helpers --------


def _echo_json(obj) -> None:
    click.echo(json.dumps(obj, indent=2, ensure_ascii=False, default=str))


def _collect_files(targets: List[str], recursive: bool = True) -> List[Path]:
    paths: List[Path] = []
    for raw in targets:
        p = Path(raw).resolve()
        if p.is_dir():
            paths.extend(find_workflow_files(p, recursive=recursive))
        else:
            paths.append(p)
    return paths


def _parse_vars(pairs: tuple[str, ...]) -> dict[str, str]:
    out: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--var")
        out[key.strip()] = value
    return out


# -------- CLI root --------


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Override LOG_LEVEL from settings",
)
@click.version_option(package_name="browserflow")
def cli(log_level: Optional[str]):
    _ = get_settings()
    if log_level:
        set_log_level(log_level.upper())


# -------- commands --------


@cli.command("config")
def cmd_config():
    """Print effective configuration (after .env & env vars)."""
    s = get_settings()
    data = {k: (str(v) if isinstance(v, Path) else v) for k, v in s.model_dump().items()}
    if data.get("PROXY_PASSWORD"):
        data["PROXY_PASSWORD"] = "***"
    _echo_json(data)


@cli.command("validate")
@click.argument("targets", nargs=-1, required=True)
@click.option("--recursive/--no-recursive", default=True, show_default=True)
def cmd_validate(targets: List[str], recursive: bool):
    """Validate workflow files or directories (supports multi-doc YAML)."""
    ok = True
    for fp in _collect_files(targets, recursive=recursive):
        try:
            for wf in load_workflows_file(fp):
                click.echo(f"OK  {fp}  ->  {wf.name} ({len(wf.steps)} steps)")
        except Exception as e:
            ok = False
            click.echo(f"ERR {fp}  ->  {e}")

    sys.exit(0 if ok else 1)


async def _run_all(engine, jobs: list[tuple[Path, WorkflowDefinition]], variables: dict[str, Any]) -> list[dict]:
    from browserflow.core.engine import new_context

    async def _one(path: Path, wf: WorkflowDefinition) -> dict:
        ctx = new_context(wf, variables)
        res: dict[str, Any] = {"file": str(path), "workflow": wf.name, "execution_id": ctx.execution_id}
        try:
            res["extracted_data"] = await engine.execute_workflow(ctx)
            res["ok"] = True
        except Exception as e:
            res.update(ok=False, error=str(e), error_type=e.__class__.__name__)
            step_id = getattr(e, "step_id", None)
            if step_id:
                res["failed_step"] = step_id
        return res

    try:
        return await asyncio.gather(*(_one(p, wf) for p, wf in jobs))
    finally:
        await engine.shutdown()


@cli.command("run")
@click.argument("targets", nargs=-1, required=True)
@click.option("--var", "var_pairs", multiple=True, metavar="KEY=VALUE", help="Variable binding (repeatable)")
@click.option("--max-concurrent", type=int, default=None, help="Override MAX_CONCURRENT from settings")
@click.option("--headless/--headed", default=None, help="Override HEADLESS from settings")
@click.option("--json-out", type=click.Path(dir_okay=False), default=None, help="Write a JSON summary to this file")
@click.option("--log-file", type=click.Path(dir_okay=False), default=None, help="Also write JSON logs to this file")
def cmd_run(
    targets: List[str],
    var_pairs: tuple[str, ...],
    max_concurrent: Optional[int],
    headless: Optional[bool],
    json_out: Optional[str],
    log_file: Optional[str],
):
    """
    Run one or more workflows concurrently on one engine.

    Examples:
      browserflow run workflows/login.yaml --var user=alice
      browserflow run workflows/ --max-concurrent 4 --headed
    """
    settings = get_settings()
    log = get_logger(__name__)
    variables = _parse_vars(var_pairs)

    jobs: list[tuple[Path, WorkflowDefinition]] = []
    load_failed: list[dict] = []
    for fp in _collect_files(targets):
        try:
            jobs.extend((fp, wf) for wf in load_workflows_file(fp))
        except Exception as e:
            load_failed.append({"file": str(fp), "ok": False, "error": str(e), "error_type": e.__class__.__name__})

    if not jobs and not load_failed:
        click.echo("No workflows matched.")
        sys.exit(1)

    overrides: dict[str, Any] = {}
    if headless is not None:
        overrides["headless"] = headless
    if max_concurrent is not None:
        if max_concurrent < 1:
            raise click.BadParameter("must be >= 1", param_hint="--max-concurrent")
        overrides["max_concurrent"] = max_concurrent
    config = settings.engine_config().model_copy(update=overrides)

    bind(invocation=datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ"))
    handler = attach_file_logger(log_file) if log_file else None
    click.echo(f"Running {len(jobs)} workflow(s) (max {config.max_concurrent} at once)...")

    from browserflow.core.engine import Engine  # local import keeps `validate` free of playwright

    try:
        settings.ensure_dirs()
        results = list(load_failed)
        if jobs:
            engine = Engine(settings=settings, config=config)
            results.extend(asyncio.run(_run_all(engine, jobs, variables)))
    finally:
        if handler is not None:
            detach_file_logger(handler)

    for res in results:
        if res.get("ok"):
            click.echo(f"OK  {res['file']} -> {res.get('workflow')} ({res.get('execution_id')})")
        else:
            step_desc = f" [step {res['failed_step']}]" if res.get("failed_step") else ""
            prefix = f"{res['error_type']}: " if res.get("error_type") else ""
            click.echo(f"ERR {res['file']}{step_desc} -> {prefix}{res.get('error', 'unknown error')}")

    ok_count = sum(1 for r in results if r.get("ok"))
    fail_count = len(results) - ok_count
    click.echo(f"Done. OK={ok_count}  FAIL={fail_count}")
    log.debug(f"run finished ok={ok_count} fail={fail_count}")

    if json_out:
        outp = Path(json_out).resolve()
        outp.parent.mkdir(parents=True, exist_ok=True)
        outp.write_text(json.dumps({"results": results}, indent=2, default=str), encoding="utf-8")
        click.echo(f"Wrote summary: {outp}")

    sys.exit(0 if fail_count == 0 else 1)


def main() -> None:
    cli(prog_name="browserflow")


if __name__ == "__main__":
    main()
