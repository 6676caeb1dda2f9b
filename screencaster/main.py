"""Command line entry point for screencaster."""

import sys
import json
import logging
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from . import __version__
from .config import ScreencasterConfig
from .errors import ScreencasterError
from .models.recording_info import RecordingSettings, RecordingStatus
from .models.session import SessionState
from .processing.progress import MergeProgressRelay
from .services.session_manager import SessionManager
from .storage.file_manager import RecordingFolders
from .storage.state_store import SessionStateStore
from .ui.console import (
    ProgressPrinter,
    print_recordings,
    print_start_report,
    print_status,
    print_teardown_report,
)

logger = logging.getLogger(__name__)

LOG_FILE_NAME = "screencaster.log"


def setup_logging(config: ScreencasterConfig, level: str = "INFO", state_dir: Optional[str] = None) -> None:
    """Set up logging configuration from YAML config."""
    # Log file defaults to the state directory
    log_file_path = config.get('logging.file_path')
    if not log_file_path:
        log_file_path = str(Path(state_dir or config.get_state_directory()) / LOG_FILE_NAME)
    console_output = config.get('logging.console_output', True)

    Path(log_file_path).parent.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    file_handler.setFormatter(file_formatter)
    handlers.append(file_handler)

    # Console handler - only if enabled in config; stdout is kept for command output
    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)
        console_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info(f"screencaster {__version__} starting: {' '.join(sys.argv[1:])}")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


class AppContext:
    """Objects shared by all commands of one invocation."""

    def __init__(self, config: ScreencasterConfig, state_dir: Optional[str] = None):
        self.config = config
        self.state_dir = state_dir
        self.console = Console()
        self._manager: Optional[SessionManager] = None

    @property
    def manager(self) -> SessionManager:
        if self._manager is None:
            store = SessionStateStore(self.state_dir) if self.state_dir else None
            self._manager = SessionManager(self.config, store=store)
        return self._manager


pass_app = click.make_pass_decorator(AppContext)


def start_recording(app: AppContext, settings: RecordingSettings, **kwargs) -> None:
    """Start a session and report which sources came up."""
    manager = app.manager
    try:
        report = manager.start(settings, **kwargs)
    except ScreencasterError as e:
        raise click.ClickException(str(e))

    print_start_report(app.console, report)
    app.console.print(f"Output: {manager.get_status().output_dir}", highlight=False)


def stop_recording(app: AppContext, process: bool = True) -> None:
    """Stop the session, merging its parts with progress output unless ``process`` is False."""
    relay = None
    printer = None
    dispatcher = None

    if process:
        relay = MergeProgressRelay(buffer_size=int(app.config.get('processing.progress_buffer', 10)))
        printer = ProgressPrinter(app.console, relay.topic, header="Processing recordings...")
        printer.subscribe()
        dispatcher = relay.dispatch()

    try:
        result = app.manager.stop(process=process, wait=True, relay=relay)
    except ScreencasterError as e:
        raise click.ClickException(str(e))
    finally:
        if relay is not None:
            relay.close()
            dispatcher.join(timeout=5.0)
            printer.unsubscribe()

    print_teardown_report(app.console, result.teardown)

    if result.status is RecordingStatus.FAILED:
        raise click.ClickException(f"processing failed, see {result.output_dir}")

    if result.merge_result is not None and result.merge_result.merged_file:
        app.console.print(f"[green]Recording completed:[/green] {result.merge_result.merged_file}",
                          highlight=False)
        if result.merge_result.vertical_file:
            app.console.print(f"Vertical video: {result.merge_result.vertical_file}", highlight=False)
    else:
        app.console.print(f"[green]Recording stopped[/green] ({result.output_dir})", highlight=False)


@click.group()
@click.option("--config", "config_path", type=click.Path(dir_okay=False),
              help="Path to configuration YAML file (default: looks for screencaster.yaml)")
@click.option("--state-dir", type=click.Path(file_okay=False),
              help="Directory holding the session records")
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help="Set logging level (default: from config, INFO)")
@click.version_option(__version__, prog_name="screencaster")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], state_dir: Optional[str],
        log_level: Optional[str]) -> None:
    """screencaster - synchronized screen, microphone and camera recording."""
    try:
        config = ScreencasterConfig(config_path)
    except (FileNotFoundError, ValueError) as e:
        raise click.ClickException(str(e))

    if state_dir:
        state_dir = str(Path(state_dir).expanduser().absolute())
    setup_logging(config, log_level or config.get('logging.level', 'INFO'), state_dir)
    ctx.obj = AppContext(config, state_dir)


@cli.command()
@click.option("--no-screen", is_flag=True, help="Do not record the screen")
@click.option("--no-audio", is_flag=True, help="Do not record the microphone")
@click.option("--no-camera", is_flag=True, help="Do not record the camera")
@click.option("--monitor", help="Monitor (screen device) to record")
@click.option("--audio-device", help="Audio source to record from")
@click.option("--camera-device", help="Camera device, e.g. /dev/video0")
@click.option("--camera-fps", type=int, help="Camera frame rate")
@click.option("--hw-accel", is_flag=True, help="Use hardware encoding for the screen")
@click.option("--output", "output_root", type=click.Path(file_okay=False),
              help="Directory recording folders are created in")
@click.option("--title", help="Recording title (names the recording folder)")
@click.option("--description", default="", help="Recording description")
@click.option("--presenter", default="", help="Presenter name")
@click.option("--no-vertical", is_flag=True, help="Do not create the vertical video")
@pass_app
def start(app: AppContext, no_screen: bool, no_audio: bool, no_camera: bool, monitor: Optional[str],
          audio_device: Optional[str], camera_device: Optional[str], camera_fps: Optional[int],
          hw_accel: bool, output_root: Optional[str], title: Optional[str], description: str,
          presenter: str, no_vertical: bool) -> None:
    """Start a new recording."""
    manager = app.manager
    settings = manager.default_settings()

    updates = {}
    if no_screen:
        updates["screen_enabled"] = False
    if no_audio:
        updates["audio_enabled"] = False
    if no_camera:
        updates["camera_enabled"] = False
    if monitor:
        updates["monitor"] = monitor
    if audio_device:
        updates["audio_device"] = audio_device
    if camera_device:
        updates["camera_device"] = camera_device
    if camera_fps:
        updates["camera_fps"] = camera_fps
    if hw_accel:
        updates["hardware_accel"] = True
    if no_vertical:
        updates["vertical_enabled"] = False
    settings = settings.model_copy(update=updates)

    start_recording(app, settings, title=title, description=description,
                    presenter=presenter, output_root=output_root)


@cli.command()
@click.option("--no-process", is_flag=True, help="Stop without merging the recorded parts")
@pass_app
def stop(app: AppContext, no_process: bool) -> None:
    """Stop the recording and process it."""
    stop_recording(app, process=not no_process)


@cli.command()
@click.option("--no-process", is_flag=True, help="Stop without merging the recorded parts")
@pass_app
def toggle(app: AppContext, no_process: bool) -> None:
    """Stop the recording if one is running, otherwise start a new one."""
    manager = app.manager
    if manager.get_state() in (SessionState.RECORDING, SessionState.PAUSED):
        stop_recording(app, process=not no_process)
    else:
        start_recording(app, manager.default_settings())


@cli.command(name="list")
@click.option("--output", "output_root", type=click.Path(file_okay=False),
              help="Directory holding the recording folders")
@pass_app
def list_recordings(app: AppContext, output_root: Optional[str]) -> None:
    """List the recordings in the output directory."""
    folders = RecordingFolders(output_root or app.config.get_output_directory())
    recordings = []
    for folder in folders.list_recordings():
        info = folders.load_recording(folder)
        if info is not None:
            recordings.append(info)
    print_recordings(app.console, recordings)


@cli.command()
@pass_app
def pause(app: AppContext) -> None:
    """Pause the recording; resume continues with a new part."""
    try:
        report = app.manager.pause()
    except ScreencasterError as e:
        raise click.ClickException(str(e))

    print_teardown_report(app.console, report)
    part = app.manager.get_status().current_part
    app.console.print(f"[yellow]Recording paused[/yellow] (next part {part}). Use 'resume' to continue.")


@cli.command()
@pass_app
def resume(app: AppContext) -> None:
    """Resume a paused recording."""
    try:
        report = app.manager.resume()
    except ScreencasterError as e:
        raise click.ClickException(str(e))

    print_start_report(app.console, report, resumed=True)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print status as JSON")
@pass_app
def status(app: AppContext, as_json: bool) -> None:
    """Show the recording status."""
    session_status = app.manager.get_status()
    if as_json:
        click.echo(json.dumps(session_status.to_dict(), indent=2))
    else:
        print_status(app.console, session_status)


def main() -> None:
    """Main entry point for screencaster."""
    cli(prog_name="screencaster")


if __name__ == "__main__":
    main()
