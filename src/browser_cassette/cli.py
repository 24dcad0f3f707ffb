"""CLI interface for browser-cassette."""

import asyncio

import typer

from .cassettes.naming import cassette_name, validate_capture_url
from .config import CaptureSettings, load_settings
from .exceptions import CaptureError, CassetteWriteError, InvalidCaptureTargetError
from .observability import capture_logging
from .session import CaptureSession

EXIT_WRITE_FAILED = 3
EXIT_CAPTURE_FAILED = 4

app = typer.Typer(
    help="Record a web page and all of its network traffic into a VCR cassette for reliable playback",
    epilog="Example: browser-cassette https://www.example.com/product/123",
    add_completion=False,
)


def _make_session(settings: CaptureSettings) -> CaptureSession:
    return CaptureSession(settings)


def _validate_url(value: str) -> str:
    try:
        return validate_capture_url(value)
    except InvalidCaptureTargetError as e:
        raise typer.BadParameter(str(e)) from e


@app.command()
def record(
    url: str = typer.Argument(..., help="URL of the page to record", callback=_validate_url),
) -> None:
    """Load URL in a mobile-emulated browser and save every request it makes."""
    settings = load_settings()
    name = cassette_name(url)

    typer.echo(f"Recording page: {url}")
    typer.echo(f"Cassette: {name}")

    with capture_logging(settings.recorder.logging_level, settings.recorder.debug_log):
        try:
            result = asyncio.run(_make_session(settings).record(url))
        except CassetteWriteError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(code=EXIT_WRITE_FAILED) from e
        except CaptureError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(code=EXIT_CAPTURE_FAILED) from e

    if not result.complete:
        typer.echo("Warning: capture did not finish, the cassette is partial", err=True)
    typer.echo(f"Finished recording {result.interactions} interactions to cassette: {result.cassette}")
    typer.echo(str(result.path))


if __name__ == "__main__":
    app()
