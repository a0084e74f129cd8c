"""
Media Indexer Command Line Interface.

Provides CLI commands for building the index, inspecting its status,
and running the web server.
"""

import os
import sys
import click
import logging

from mediaindex.config import get_config


def _context(ctx, org, repo, ref, token):
    from mediaindex.indexer.context import BuildContext
    try:
        return BuildContext.from_config(
            ctx.obj['config'], org=org, repo=repo, ref=ref, token=token
        )
    except ValueError as e:
        raise click.BadParameter(str(e))


def site_options(func):
    """--org/--repo/--ref/--token, defaulting to the configured site."""
    func = click.option('--token', default=None, help='Bearer token (default: MEDIAINDEX_TOKEN)')(func)
    func = click.option('--ref', default=None, help='Branch (default: main)')(func)
    func = click.option('--repo', default=None, help='Repository name')(func)
    func = click.option('--org', default=None, help='Organization name')(func)
    return func


@click.group()
@click.option('--env', default=None, help='Environment (development/staging/production)')
@click.pass_context
def cli(ctx, env):
    """Media usage indexer CLI."""
    if env:
        os.environ['MEDIAINDEX_ENV'] = env
    ctx.ensure_object(dict)
    ctx.obj['config'] = get_config(env)


@cli.command()
@click.option('--host', default=None, help='Host to bind to')
@click.option('--port', default=None, type=int, help='Port to bind to')
@click.option('--debug/--no-debug', default=None, help='Enable debug mode')
@click.pass_context
def run(ctx, host, port, debug):
    """Run the web server."""
    from mediaindex.app import create_app

    config = ctx.obj['config']

    app = create_app(config)
    app.run(
        host=host or config.HOST,
        port=port or config.PORT,
        debug=debug if debug is not None else config.DEBUG
    )


@cli.command()
@click.option('--mode', type=click.Choice(['auto', 'full', 'incremental']), default='auto')
@site_options
@click.pass_context
def build(ctx, mode, org, repo, ref, token):
    """Build (or incrementally update) the media index."""
    from mediaindex.indexer.runner import BuildRunner

    config = ctx.obj['config']
    logging.basicConfig(level=logging.INFO, format=config.LOG_FORMAT)

    context = _context(ctx, org, repo, ref, token)
    context.on_progress = lambda p: click.echo(f"  [{p['percent']:3d}%] {p['message']}")

    runner = BuildRunner()
    click.echo(f"🔎 Building media index for {context.site_path} (mode: {mode})")
    if not runner.start(context, mode, background=False):
        click.echo("Error: a build is already running", err=True)
        sys.exit(1)

    result = runner.last_result or {}
    if not result.get('success'):
        click.echo(f"\n  ✗ Build failed: {result.get('error')}", err=True)
        sys.exit(1)

    click.echo(f"\n  ✓ Entries: {result['entries']}")
    click.echo(f"  ⏱ Time: {result['duration']}s")


@cli.command()
@site_options
@click.pass_context
def status(ctx, org, repo, ref, token):
    """Show the persisted build status."""
    from mediaindex.indexer.builder import IndexBuilder

    context = _context(ctx, org, repo, ref, token)
    info = IndexBuilder(context).get_index_status()

    click.echo(f"\n📚 Media index for {context.site_path}:")
    click.echo(f"   Exists: {info['index_exists']}")
    click.echo(f"   Entries: {info['entries_count']}")
    click.echo(f"   Last build: {info['last_build_mode'] or 'never'}")
    click.echo(f"   Last refresh: {info['last_refresh'] or '-'}")
    click.echo(f"   Index modified: {info['index_last_modified'] or '-'}")


@cli.command('check-mode')
@site_options
@click.pass_context
def check_mode(ctx, org, repo, ref, token):
    """Report whether the next auto build would be incremental."""
    from mediaindex.indexer.builder import IndexBuilder

    context = _context(ctx, org, repo, ref, token)
    decision = IndexBuilder(context).should_reindex()
    if decision['should_reindex']:
        click.echo("Next build: incremental")
    else:
        click.echo(f"Next build: full ({decision['reason']})")


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
