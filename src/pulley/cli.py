import typer

from pulley import version as pulley_version
from pulley.config import ConfigError, Settings, get_settings
from pulley.logger import configure_logging
from pulley.web import create_app

app = typer.Typer()


def _load_settings() -> Settings:
    try:
        return get_settings()
    except ConfigError as e:
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise typer.Exit(code=1)


@app.command()
def serve():
    """Listen for GitHub webhooks and expose CI latency metrics."""
    settings = _load_settings()
    configure_logging(settings)
    web_app = create_app(settings)
    web_app.run(
        host=settings.HOST,
        port=settings.PORT,
        single_process=True,
        access_log=False,
    )


@app.command()
def config():
    """Print the configuration read from the environment."""
    typer.echo(_load_settings().describe())


@app.command()
def version():
    typer.echo(pulley_version.info())
