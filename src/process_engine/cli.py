"""
Process Engine CLI
"""
import json
import logging
import sys

import click

from .config import EngineSettings
from .core import DefinitionParser, ManualClock, WorkflowEngine
from .exceptions import WorkflowEngineError


DECISIONS = ("approve", "reject")


def _parse_decision(ctx, param, values):
    decisions = []
    for value in values:
        state_id, sep, action = value.partition("=")
        if not sep or not state_id or action not in DECISIONS:
            raise click.BadParameter(f"expected STATE=approve|reject, got '{value}'")
        decisions.append((state_id, action))
    return decisions


def _parse_data(ctx, param, value):
    if value is None:
        return {}
    try:
        data = json.loads(value)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"invalid JSON: {e}")
    if not isinstance(data, dict):
        raise click.BadParameter("instance data must be a JSON object")
    return data


@click.group()
@click.option('--log-level', default=None, help='Logging level (defaults to PROCESS_ENGINE_LOG_LEVEL)')
@click.pass_context
def cli(ctx, log_level):
    """Process Engine CLI"""
    settings = EngineSettings.from_env()
    logging.basicConfig(
        level=(log_level or settings.log_level).upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr
    )
    ctx.obj = settings


@cli.command()
@click.argument('workflow_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--lenient', is_flag=True, help='Accept several else conditions in one decision')
def validate(workflow_file, lenient):
    """Validate a workflow definition file"""
    parser = DefinitionParser(strict=not lenient)
    try:
        definition = parser.parse_file(workflow_file)
    except WorkflowEngineError as e:
        raise click.ClickException(str(e))

    problems = parser.lint(definition)
    for problem in problems:
        click.echo(f"warning: {problem}")
    click.echo(
        f"{definition.workflow_id} v{definition.version}: "
        f"{len(definition.states)} states, {len(problems)} warning(s)"
    )


@cli.command()
@click.argument('workflow_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--data', callback=_parse_data, default=None, help='Instance data as a JSON object')
@click.option('--decide', multiple=True, callback=_parse_decision,
              help='Decision to apply, in order: STATE=approve|reject')
@click.option('--advance-ms', type=float, default=0, help='Simulated time to pass before the final ticks')
@click.pass_obj
def simulate(settings, workflow_file, data, decide, advance_ms):
    """Run a workflow on a simulated clock and print the final snapshot"""
    clock = ManualClock()
    engine = WorkflowEngine(clock=clock, settings=settings)

    try:
        definition = DefinitionParser().parse_file(workflow_file)
        instance_id = engine.start_instance(definition, data).id
        engine.run_until_blocked(instance_id)

        for state_id, action in decide:
            if action == "approve":
                engine.approve(instance_id, state_id)
            else:
                engine.reject(instance_id, state_id)
            engine.run_until_blocked(instance_id)

        if advance_ms:
            clock.advance(ms=advance_ms)
            engine.run_until_blocked(instance_id)
    except WorkflowEngineError as e:
        raise click.ClickException(str(e))

    click.echo(json.dumps(engine.get_snapshot(instance_id).to_dict(), ensure_ascii=False, indent=2))


@cli.command()
@click.option('--host', default=None, help='Host to bind to')
@click.option('--port', default=None, type=int, help='Port to bind to')
@click.pass_obj
def serve(settings, host, port):
    """Start the API server"""
    import uvicorn
    from .api import create_app

    host = host or settings.api_host
    port = port or settings.api_port
    click.echo(f"Starting API server on {host}:{port}")
    uvicorn.run(create_app(settings=settings), host=host, port=port)


def main():
    """Main entry point"""
    cli()


if __name__ == '__main__':
    main()
