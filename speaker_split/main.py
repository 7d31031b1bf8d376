"""Command line entry point: split a media file into one audio clip per speaker."""

import os
import json
import logging
import mimetypes
from dataclasses import replace
from typing import Optional

import typer

from speaker_split.config import build_options, create_use_case, get_config
from speaker_split.domain.errors import PipelineError
from speaker_split.domain.models import SourceMedia
from speaker_split.mappers import error_to_response, result_to_response
from speaker_split.use_cases.separate_speakers import SeparateSpeakersRequest

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

if os.environ.get("DEBUG", "0") == "1":
    logging.getLogger().setLevel(logging.DEBUG)

app = typer.Typer(help="Separate the speakers of a video/audio file into individual WAV clips.")


@app.callback()
def main() -> None:
    """speaker-split command line."""


EXIT_FAILED = 1
EXIT_NO_CLIPS = 2


@app.command()
def run(
    source: str = typer.Argument(..., help="Path to the video or audio file."),
    output_dir: Optional[str] = typer.Option(None, help="Directory for the final speaker clips."),
    temp_dir: Optional[str] = typer.Option(None, help="Directory for intermediate files."),
    caller: str = typer.Option("anonymous", help="Caller id used to namespace default directories."),
    save_response: bool = typer.Option(False, "--save-response", help="Keep the raw diarization JSON."),
    keep_temp: bool = typer.Option(False, "--keep-temp", help="Do not delete intermediate files."),
    timeout: Optional[float] = typer.Option(None, help="Deadline for the whole run, in seconds."),
) -> None:
    """Run the speaker separation pipeline and print the result as JSON."""
    config = get_config()
    logger.info(f"Configuration: {config.as_dict()}")

    options = build_options(
        config,
        caller_id=caller,
        save_debug_response=save_response,
        cleanup=not keep_temp,
        timeout=timeout,
    )
    if output_dir or temp_dir:
        options = replace(
            options,
            output_dir=output_dir or options.output_dir,
            temp_dir=temp_dir or options.temp_dir,
        )

    try:
        use_case = create_use_case(config)
        mime_type, _ = mimetypes.guess_type(source)
        result = use_case.execute(SeparateSpeakersRequest(
            source=SourceMedia(path=source, mime_type=mime_type),
            api_key=config.api_key,
            options=options,
        ))
    except PipelineError as e:
        typer.echo(json.dumps(error_to_response(e).model_dump(), indent=2), err=True)
        raise typer.Exit(code=EXIT_FAILED)

    typer.echo(json.dumps(result_to_response(result).as_payload(), indent=2))
    if not result.clips:
        raise typer.Exit(code=EXIT_NO_CLIPS)


if __name__ == "__main__":
    app()
