"""
CLI Interface - commands for running and inspecting the pipeline

Commands:
- helmsman run [PROJECT] - evaluate the event and run the pipeline
- helmsman check-trigger - would this event start a run?
- helmsman next-version CURRENT - appVersion that follows CURRENT
- helmsman image-tag REF - image tag the current clock yields for REF
- helmsman status / history - run records
"""

import os
import signal
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import click

from core.config import Config, load_config
from core.exceptions import ConfigError, HelmsmanError
from core.logging_config import setup_logging
from pipeline.definition import load_definition
from pipeline.orchestrator import PipelineOrchestrator
from pipeline.stages import StageResult
from pipeline.tags import ImageTags
from pipeline.triggers import Event, evaluate, ref_to_name
from pipeline.versioning import next_version
from state.persistence import RunRecord, RunStatus, RunStore
from cli.display import Display, DisplayMode


def _signal_handler(signum, frame):
    """Turn SIGTERM into KeyboardInterrupt so the run is recorded as cancelled"""
    raise KeyboardInterrupt(f"signal {signum}")


def _require_config(ctx) -> Config:
    config: Optional[Config] = ctx.obj.get('config')
    if config is None:
        click.echo(f"Error loading config: {ctx.obj.get('config_error')}", err=True)
        sys.exit(1)
    return config


def _resolve_event(
    event_name: Optional[str],
    ref: Optional[str],
    action: Optional[str],
    base_ref: Optional[str]
) -> Event:
    """GitHub Actions environment, overridden by explicit options"""
    event = Event.from_github_env(os.environ)
    if event_name:
        event.name = event_name
    if ref:
        event.ref = ref
        event.ref_name = ref_to_name(ref)
    if action:
        event.action = action
    if base_ref:
        event.base_ref = base_ref
    if not event.name:
        raise click.UsageError("No event: pass --event or run inside GitHub Actions")
    return event


def _event_options(func):
    func = click.option('--base-ref', help='Pull request base branch')(func)
    func = click.option('--action', 'event_action', help='Event action (e.g. assigned)')(func)
    func = click.option('--ref', help='Git ref, e.g. refs/heads/dev/foo')(func)
    func = click.option(
        '--event', 'event_name',
        type=click.Choice(['push', 'pull_request', 'workflow_dispatch']),
        help='Event name (default: $GITHUB_EVENT_NAME)'
    )(func)
    return func


def _state_dir(config: Config, project_path: Path) -> Path:
    state = config.state_path
    return state if state.is_absolute() else project_path / state


@click.group()
@click.option('--config', '-c', type=click.Path(exists=True), help='Path to .env config file')
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
@click.option('--json-logs', is_flag=True, help='Write JSON log files (needs LOG_DIR)')
@click.pass_context
def cli(ctx, config: Optional[str], verbose: bool, json_logs: bool):
    """helmsman - build, scan, publish and deploy-manifest pipeline runner"""
    ctx.ensure_object(dict)

    try:
        ctx.obj['config'] = load_config(config)
    except Exception as e:
        ctx.obj['config'] = None
        ctx.obj['config_error'] = e

    loaded = ctx.obj['config']
    setup_logging(
        level="DEBUG" if verbose else "INFO",
        log_dir=loaded.log_dir if loaded else None,
        json_format=json_logs
    )
    ctx.obj['verbose'] = verbose


@cli.command()
@click.argument('project', type=click.Path(exists=True, file_okay=False), default='.')
@click.option('--definition', '-d', type=click.Path(exists=True, dir_okay=False), help='Pipeline definition YAML')
@_event_options
@click.option('--from-stage', help='Skip the stages before this one')
@click.option('--image-tag', help='Image tag to use when starting after image-publish')
@click.option('--force', is_flag=True, help='Run even if the event does not match the triggers')
@click.option('--silent', '-s', is_flag=True, help='Silent mode (only stage outcomes)')
@click.option('--dry-run', is_flag=True, help='Evaluate trigger and config without running stages')
@click.pass_context
def run(
    ctx,
    project: str,
    definition: Optional[str],
    event_name: Optional[str],
    ref: Optional[str],
    event_action: Optional[str],
    base_ref: Optional[str],
    from_stage: Optional[str],
    image_tag: Optional[str],
    force: bool,
    silent: bool,
    dry_run: bool
):
    """Run the pipeline for PROJECT"""
    config = _require_config(ctx)
    project_path = Path(project).resolve()
    display = Display(mode=DisplayMode.SILENT if silent else DisplayMode.VISIBLE)

    try:
        pipeline_definition = load_definition(definition)
    except (ConfigError, FileNotFoundError) as e:
        display.error(str(e))
        sys.exit(1)

    event = _resolve_event(event_name, ref, event_action, base_ref)
    orchestrator = PipelineOrchestrator(
        project_path=str(project_path),
        config=config,
        definition=pipeline_definition
    )

    display.header(f"{pipeline_definition.name} - {project_path.name}")
    display.info(f"Event: {event.name} {event.ref or ''}".rstrip())

    decision = orchestrator.check_trigger(event)
    if not decision.triggered and not force:
        display.warning(f"Not triggered: {decision.reason}")
        sys.exit(0)

    if dry_run:
        display.info(f"Trigger: {decision.reason}")
        display.info(f"Stages: {' -> '.join(orchestrator.stage_names)}")
        display.success("Dry run completed. Ready to run pipeline.")
        sys.exit(0)

    display.separator()
    orchestrator.set_callbacks(
        on_stage_start=lambda stage: display.stage_start(stage.name),
        on_stage_complete=display.stage_result
    )

    initial_outputs = {"image_tag": image_tag} if image_tag else None
    previous_handler = signal.signal(signal.SIGTERM, _signal_handler)
    try:
        record = orchestrator.run(
            event,
            start_stage=from_stage,
            initial_outputs=initial_outputs,
            force=force
        )
    except KeyboardInterrupt:
        display.warning("Run cancelled")
        sys.exit(130)
    except HelmsmanError as e:
        display.error(f"Pipeline failed: {e}")
        sys.exit(1)
    finally:
        signal.signal(signal.SIGTERM, previous_handler)

    _report(display, record)
    _write_github_output(record)


def _write_github_output(record: RunRecord):
    """Expose run outputs as step outputs when running inside GitHub Actions"""
    output_file = os.environ.get("GITHUB_OUTPUT")
    if not output_file:
        return
    with open(output_file, "a", encoding="utf-8") as f:
        for key in ("image_tag", "app_version", "pull_request_url"):
            value = getattr(record, key)
            if value:
                f.write(f"{key}={value}\n")


def _report(display: Display, record: RunRecord):
    display.final_report({
        "Run ID": record.run_id,
        "Status": record.status,
        "Image tag": record.image_tag,
        "appVersion": record.app_version,
        "Pull request": record.pull_request_url,
    })


@cli.command('check-trigger')
@click.option('--definition', '-d', type=click.Path(exists=True, dir_okay=False), help='Pipeline definition YAML')
@_event_options
def check_trigger(
    definition: Optional[str],
    event_name: Optional[str],
    ref: Optional[str],
    event_action: Optional[str],
    base_ref: Optional[str]
):
    """Print whether the event would start a run (exit 1 if not)"""
    pipeline_definition = load_definition(definition)
    event = _resolve_event(event_name, ref, event_action, base_ref)
    decision = evaluate(event, pipeline_definition.triggers)
    click.echo(f"{'run' if decision.triggered else 'skip'}: {decision.reason}")
    sys.exit(0 if decision.triggered else 1)


@cli.command('next-version')
@click.argument('current')
@click.option('--date', 'on_date', type=click.DateTime(formats=['%Y-%m', '%Y-%m-%d']), help='Date to compute for')
@click.pass_context
def next_version_command(ctx, current: str, on_date: Optional[datetime]):
    """Print the appVersion that follows CURRENT"""
    if on_date is None:
        config = _require_config(ctx)
        on_date = datetime.now(config.timezone)
    try:
        click.echo(next_version(current.strip('"'), on_date))
    except HelmsmanError as e:
        raise click.ClickException(str(e))


@cli.command('image-tag')
@click.argument('ref')
@click.pass_context
def image_tag_command(ctx, ref: str):
    """Print the image tag REF gets right now"""
    config = _require_config(ctx)
    tags = ImageTags.compose("", ref, datetime.now(config.timezone))
    click.echo(tags.short_tag)


@cli.command()
@click.argument('project', type=click.Path(exists=True, file_okay=False), default='.')
@click.pass_context
def status(ctx, project: str):
    """Show the last run"""
    config = _require_config(ctx)
    project_path = Path(project).resolve()
    store = RunStore(str(_state_dir(config, project_path)), history_limit=config.run_history_limit)

    display = Display(mode=DisplayMode.VISIBLE)
    record = store.load_last()
    if record is None:
        display.warning("No runs found")
        sys.exit(0)

    display.header(f"Run {record.run_id}")
    event = record.event
    display.info(f"Event: {event.get('name')} {event.get('ref') or ''}".rstrip())
    display.info(f"Started: {record.started_at}")
    if record.finished_at:
        display.info(f"Finished: {record.finished_at}")
    display.separator()
    for entry in record.stages:
        display.stage_result(StageResult.from_dict(entry))
    if record.error:
        display.error(record.error)
    _report(display, record)
    if record.status == RunStatus.FAILED:
        sys.exit(1)


@cli.command()
@click.argument('project', type=click.Path(exists=True, file_okay=False), default='.')
@click.option('--limit', '-n', default=10, show_default=True, help='Runs to show')
@click.pass_context
def history(ctx, project: str, limit: int):
    """List recent runs, newest first"""
    config = _require_config(ctx)
    project_path = Path(project).resolve()
    store = RunStore(str(_state_dir(config, project_path)), history_limit=config.run_history_limit)

    records = store.list_runs()[:limit]
    if not records:
        click.echo("No runs found")
        return
    for record in records:
        ref = record.event.get("ref_name") or record.event.get("ref") or ""
        click.echo(f"{record.run_id}  {record.status:<10} {record.event.get('name', ''):<18} {ref}  {record.image_tag or ''}")


def main():
    """Entry point"""
    cli(obj={})


if __name__ == '__main__':
    main()
