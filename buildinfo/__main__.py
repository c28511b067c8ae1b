import logging
import sys

import click
import uvicorn

from buildinfo import BuildInfo, BuildInfoError
from buildinfo.config import Settings
from buildinfo.engine import RunningContainerResolver
from buildinfo.oci import ExpectedDigestResolver


@click.group()
@click.option("-d", "--debug", help="Debug output", is_flag=True)
@click.pass_context
def cli(ctx, debug: bool):
    if debug:
        logging.basicConfig(level=logging.DEBUG)
    ctx.obj = Settings()


@cli.command()
@click.pass_obj
def show(settings: Settings):
    """Show the build info of this image."""
    try:
        info = BuildInfo.from_settings(settings)
    except BuildInfoError as e:
        raise click.ClickException(str(e))
    click.echo(f"version: {info.version}")
    click.echo(f"commit:  {info.commit}")
    click.echo(f"created: {info.created}")


@cli.command()
@click.option("--engine-url", help="Container engine API URL", default=None)
@click.pass_obj
def running(settings: Settings, engine_url: str | None):
    """Show the image this container was started from."""
    resolver = RunningContainerResolver(
        engine_url=engine_url or settings.engine_url,
        registry_host=settings.registry_host,
        enabled=settings.enabled,
    )
    reference = resolver.resolve()
    click.echo(f"image:     {reference or 'unknown'}")
    click.echo(f"tag:       {resolver.image_tag() or 'unknown'}")
    click.echo(f"started:   {resolver.image_start_reference() or 'unknown'}")


@cli.command()
@click.argument("repository")
@click.option("-t", "--tag", "tags", help="Candidate tag", multiple=True)
@click.pass_obj
def expected(settings: Settings, repository: str, tags: tuple[str, ...]):
    """Resolve the digest the registry serves for REPOSITORY."""
    resolver = ExpectedDigestResolver(
        repository=repository,
        candidate_tags=tags or settings.candidate_tags or ["latest"],
        registry_host=settings.registry_host,
        enabled=settings.enabled,
    )
    reference = resolver.resolve()
    if reference is None:
        raise click.ClickException(f"Could not resolve a digest for {repository}")
    click.echo(str(reference))


@cli.command()
@click.option("-r", "--repository", help="Repository, e.g. ghcr.io/org/app")
@click.pass_obj
def verify(settings: Settings, repository: str | None):
    """Compare the running image with the image the registry serves."""
    if repository:
        settings = settings.model_copy(update={"repository": repository})
    try:
        info = BuildInfo.from_settings(settings)
    except BuildInfoError as e:
        raise click.ClickException(str(e))
    verification = info.verify(settings)
    click.echo(verification.model_dump_json(indent=2))
    if verification.matches is False:
        sys.exit(1)


LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "()": "uvicorn.logging.DefaultFormatter",
            "fmt": "%(levelprefix)s %(message)s",
            "use_colors": None,
        },
        "access": {
            "()": "uvicorn.logging.AccessFormatter",
            "fmt": '%(levelprefix)s %(client_addr)s - "%(request_line)s" %(status_code)s',  # noqa: E501
        },
    },
    "handlers": {
        "default": {
            "formatter": "default",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
        },
        "access": {
            "formatter": "access",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
        },
    },
    "loggers": {
        "uvicorn": {"handlers": ["default"], "level": "INFO", "propagate": False},
        "uvicorn.error": {"level": "INFO"},
        "uvicorn.access": {"handlers": ["access"], "level": "INFO", "propagate": False},
        "buildinfo": {"handlers": ["default"], "level": "INFO", "propagate": False},
    },
}


@cli.command()
@click.option("--reload", help="Watch for changes", is_flag=True)
@click.option("-p", "--port", type=int, default=8080)
def server(reload: bool = False, port: int = 8080):
    uvicorn.run(
        "buildinfo.server:app",
        port=port,
        log_level="info",
        log_config=LOGGING_CONFIG,
        reload=reload,
    )


if __name__ == "__main__":
    cli()
