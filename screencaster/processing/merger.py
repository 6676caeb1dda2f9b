"""Post-processing of captured parts into the final recording files."""

import re
import json
import logging
import subprocess
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..config import ScreencasterConfig
from ..errors import MergeError
from ..models.events import MergeStep
from ..models.recording_info import RecordingInfo
from ..models.session import SourceKind

logger = logging.getLogger(__name__)

StepCallback = Callable[[MergeStep, bool, bool, Optional[Exception]], None]
PercentCallback = Callable[[MergeStep, float], None]

VERTICAL_WIDTH = 1080
VERTICAL_HEIGHT = 1920

CONCAT_NAMES = {
    SourceKind.SCREEN: "screen.mp4",
    SourceKind.AUDIO: "audio.wav",
    SourceKind.CAMERA: "camera.mp4",
}

LOUDNORM_KEYS = ("input_i", "input_tp", "input_lra", "input_thresh")


@dataclass
class MergeOptions:
    """Inputs and settings for one merge run."""
    parts: Dict[SourceKind, List[str]]
    output_dir: str
    title: str = ""
    create_vertical: bool = False
    denoise: bool = False
    normalize: bool = True
    target_loudness: float = -14.0
    true_peak: float = -1.5
    loudness_range: float = 11.0

    @classmethod
    def from_recording(cls, info: RecordingInfo,
                       config: Optional[ScreencasterConfig] = None) -> "MergeOptions":
        """Build merge options from a recording's parts and settings."""
        parts = {kind: info.files.parts_for(kind) for kind in SourceKind if info.files.parts_for(kind)}
        options = cls(
            parts=parts,
            output_dir=info.files.folder_path,
            title=info.metadata.title,
            create_vertical=info.settings.vertical_enabled and SourceKind.CAMERA in parts,
            denoise=info.settings.denoise_enabled,
            normalize=info.settings.normalize_enabled,
        )
        if config is not None:
            options.target_loudness = float(config.get("processing.target_loudness", -14.0))
            options.true_peak = float(config.get("processing.true_peak", -1.5))
            options.loudness_range = float(config.get("processing.loudness_range", 11.0))
        return options


@dataclass
class MergeResult:
    """Files produced by a merge run."""
    merged_file: Optional[str] = None
    vertical_file: Optional[str] = None
    normalize_applied: bool = False
    errors: List[str] = field(default_factory=list)


class MergePipeline(ABC):
    """Abstract post-processing pipeline."""

    @abstractmethod
    def merge(self,
              options: MergeOptions,
              on_step: Optional[StepCallback] = None,
              on_percent: Optional[PercentCallback] = None) -> MergeResult:
        """Combine the captured parts into the final outputs.

        Args:
            options: What to merge and how
            on_step: Called as (step, completed, skipped, error) at step boundaries
            on_percent: Called as (step, percent) while a long step runs

        Returns:
            MergeResult with the produced files

        Raises:
            MergeError: If no merged output could be produced
        """
        pass


class FFmpegMergePipeline(MergePipeline):
    """Merge pipeline running external ffmpeg/ffprobe processes."""

    def __init__(self, ffmpeg: str = "ffmpeg", ffprobe: str = "ffprobe"):
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe
        self._on_step: Optional[StepCallback] = None
        self._on_percent: Optional[PercentCallback] = None

    @classmethod
    def from_config(cls, config: ScreencasterConfig) -> "FFmpegMergePipeline":
        return cls(ffmpeg=config.get("processing.ffmpeg", "ffmpeg"),
                   ffprobe=config.get("processing.ffprobe", "ffprobe"))

    def _report(self, step: MergeStep, completed: bool = False, skipped: bool = False,
                error: Optional[Exception] = None) -> None:
        if self._on_step is not None:
            self._on_step(step, completed, skipped, error)

    def _percent(self, step: MergeStep, percent: float) -> None:
        if self._on_percent is not None:
            self._on_percent(step, percent)

    def merge(self,
              options: MergeOptions,
              on_step: Optional[StepCallback] = None,
              on_percent: Optional[PercentCallback] = None) -> MergeResult:
        self._on_step = on_step
        self._on_percent = on_percent
        result = MergeResult()
        output_dir = Path(options.output_dir)

        inputs: Dict[SourceKind, str] = {}
        for kind, parts in options.parts.items():
            if not parts:
                continue
            joined = self.concatenate_parts(parts, str(output_dir / CONCAT_NAMES[kind]))
            if joined:
                inputs[kind] = joined

        if not inputs:
            raise MergeError("no input files provided")

        screen = inputs.get(SourceKind.SCREEN)
        camera = inputs.get(SourceKind.CAMERA)
        audio = inputs.get(SourceKind.AUDIO)

        # Denoise
        self._report(MergeStep.DENOISE)
        if audio and options.denoise:
            denoised = str(Path(audio).with_name(Path(audio).stem + "-denoised.wav"))
            try:
                self.denoise(audio, denoised)
                audio = denoised
                self._report(MergeStep.DENOISE, completed=True)
            except MergeError as e:
                result.errors.append(str(e))
                self._report(MergeStep.DENOISE, completed=True, skipped=True, error=e)
        else:
            self._report(MergeStep.DENOISE, completed=True, skipped=True)

        # Analyze
        self._report(MergeStep.ANALYZE)
        stats = None
        if audio and options.normalize:
            try:
                stats = self.analyze_loudness(audio, options)
                self._report(MergeStep.ANALYZE, completed=True)
            except MergeError as e:
                result.errors.append(str(e))
                self._report(MergeStep.ANALYZE, completed=True, skipped=True, error=e)
        else:
            self._report(MergeStep.ANALYZE, completed=True, skipped=True)

        # Normalize
        self._report(MergeStep.NORMALIZE)
        if audio and stats is not None:
            normalized = str(Path(audio).with_name(Path(audio).stem + "-normalized.wav"))
            try:
                self.normalize(audio, normalized, stats, options)
                audio = normalized
                result.normalize_applied = True
                self._report(MergeStep.NORMALIZE, completed=True)
            except MergeError as e:
                result.errors.append(str(e))
                self._report(MergeStep.NORMALIZE, completed=True, skipped=True, error=e)
        else:
            self._report(MergeStep.NORMALIZE, completed=True, skipped=True)

        # Merge
        self._report(MergeStep.MERGE)
        base = screen or camera
        if base is None:
            # Audio only, nothing to mux
            self._report(MergeStep.MERGE, completed=True, skipped=True)
            self._report(MergeStep.DERIVED, completed=True, skipped=True)
            result.merged_file = audio
            return result

        merged = str(Path(base).with_name(Path(base).stem + "-merged.mp4"))
        try:
            self.merge_video_audio(base, audio, merged)
        except MergeError as e:
            self._report(MergeStep.MERGE, completed=True, error=e)
            raise MergeError(f"failed to merge recordings: {e}")
        result.merged_file = merged
        self._report(MergeStep.MERGE, completed=True)

        # Vertical
        self._report(MergeStep.DERIVED)
        if options.create_vertical and screen and camera:
            vertical = str(Path(screen).with_name(Path(screen).stem + "-vertical.mp4"))
            try:
                self.create_vertical(screen, camera, audio, vertical)
                result.vertical_file = vertical
                self._report(MergeStep.DERIVED, completed=True)
            except MergeError as e:
                result.errors.append(str(e))
                self._report(MergeStep.DERIVED, completed=True, skipped=True, error=e)
        else:
            self._report(MergeStep.DERIVED, completed=True, skipped=True)

        return result

    def concatenate_parts(self, parts: List[str], output_file: str) -> Optional[str]:
        """Join part files with the concat demuxer.

        Returns:
            Path of the joined file, the single existing part as is, or None
            when no part exists on disk
        """
        existing = [part for part in parts if Path(part).is_file()]
        if not existing:
            logger.warning(f"None of the parts exist: {parts}")
            return None
        if len(existing) == 1:
            return existing[0]

        list_file = Path(output_file + ".txt")
        with open(list_file, "w", encoding="utf-8") as f:
            for part in existing:
                escaped = part.replace("'", "'\\''")
                f.write(f"file '{escaped}'\n")

        try:
            self._run([self.ffmpeg, "-y", "-f", "concat", "-safe", "0", "-i", str(list_file),
                       "-c", "copy", output_file], "concatenation")
        finally:
            list_file.unlink(missing_ok=True)

        logger.info(f"Concatenated {len(existing)} parts into {output_file}")
        return output_file

    def denoise(self, input_file: str, output_file: str) -> None:
        self._run([self.ffmpeg, "-y", "-i", input_file, "-af", "highpass=f=200,afftdn=nf=-25:tn=1",
                   "-c:a", "pcm_s16le", output_file], "noise reduction")

    def analyze_loudness(self, input_file: str, options: MergeOptions) -> Dict[str, str]:
        """First loudnorm pass; returns the measured input levels."""
        loudnorm = (f"loudnorm=I={options.target_loudness:.1f}:TP={options.true_peak:.1f}:"
                    f"LRA={options.loudness_range:.1f}:print_format=json")
        output = self._run([self.ffmpeg, "-hide_banner", "-i", input_file, "-af", loudnorm,
                            "-f", "null", "-"], "loudness analysis")
        return parse_loudnorm_output(output)

    def normalize(self, input_file: str, output_file: str, stats: Dict[str, str],
                  options: MergeOptions) -> None:
        """Second loudnorm pass using the measured levels."""
        loudnorm = (f"loudnorm=I={options.target_loudness:.1f}:TP={options.true_peak:.1f}:"
                    f"LRA={options.loudness_range:.1f}:measured_I={stats['input_i']}:"
                    f"measured_TP={stats['input_tp']}:measured_LRA={stats['input_lra']}:"
                    f"measured_thresh={stats['input_thresh']}:linear=true:print_format=summary")
        self._run([self.ffmpeg, "-y", "-i", input_file, "-af", loudnorm, "-c:a", "pcm_s16le",
                   output_file], "normalization")

    def merge_video_audio(self, video_file: str, audio_file: Optional[str], output_file: str) -> None:
        args = ["-y", "-i", video_file]
        if audio_file:
            args += ["-i", audio_file]
        args += ["-c:v", "libx264", "-preset", "medium", "-crf", "18", "-r", "30",
                 "-pix_fmt", "yuv420p"]
        if audio_file:
            args += ["-c:a", "aac", "-b:a", "320k", "-shortest"]
        else:
            args += ["-an"]
        args.append(output_file)
        self.run_with_progress(MergeStep.MERGE, self.probe_duration_us(video_file), args)

    def create_vertical(self, screen_file: str, camera_file: str, audio_file: Optional[str],
                        output_file: str) -> None:
        """Stack screen over camera in a 1080x1920 frame."""
        duration_us = self.probe_duration_us(screen_file)
        video_filter = (
            f"[0:v]scale={VERTICAL_WIDTH}:-2,setsar=1[top];"
            f"[1:v]scale={VERTICAL_WIDTH}:-2,setsar=1[cam];"
            f"[top][cam]vstack=inputs=2,"
            f"scale={VERTICAL_WIDTH}:{VERTICAL_HEIGHT}:force_original_aspect_ratio=decrease,"
            f"pad={VERTICAL_WIDTH}:{VERTICAL_HEIGHT}:(ow-iw)/2:(oh-ih)/2:white[outv]"
        )
        args = ["-y", "-i", screen_file, "-i", camera_file]
        if audio_file:
            args += ["-i", audio_file]
        args += ["-filter_complex", video_filter, "-map", "[outv]"]
        if audio_file:
            args += ["-map", "2:a", "-c:a", "aac", "-b:a", "320k"]
        else:
            args += ["-an"]
        args += ["-c:v", "libx264", "-preset", "medium", "-crf", "18", "-r", "30",
                 "-pix_fmt", "yuv420p"]
        if duration_us > 0:
            args += ["-t", f"{duration_us / 1_000_000:.3f}"]
        args.append(output_file)
        self.run_with_progress(MergeStep.DERIVED, duration_us, args)

    def probe_duration_us(self, media_file: str) -> int:
        """Media duration in microseconds, 0 when unknown."""
        try:
            completed = subprocess.run(
                [self.ffprobe, "-v", "error", "-show_entries", "format=duration", "-of", "json", media_file],
                capture_output=True, text=True, check=True,
            )
            duration = float(json.loads(completed.stdout)["format"]["duration"])
        except (OSError, subprocess.CalledProcessError, ValueError, KeyError) as e:
            logger.debug(f"Could not probe duration of {media_file}: {e}")
            return 0
        return int(duration * 1_000_000)

    def run_with_progress(self, step: MergeStep, duration_us: int, args: List[str]) -> None:
        """Run ffmpeg with ``-progress pipe:1`` and report percent from out_time_us."""
        command = [self.ffmpeg, "-progress", "pipe:1", "-stats_period", "0.5", "-nostats"] + args
        logger.debug(f"Running: {' '.join(command)}")

        with tempfile.TemporaryFile(mode="w+") as stderr_file:
            try:
                process = subprocess.Popen(command, stdout=subprocess.PIPE, stderr=stderr_file,
                                           stdin=subprocess.DEVNULL, text=True)
            except OSError as e:
                raise MergeError(f"failed to start ffmpeg: {e}")

            self._percent(step, 0.0)
            for line in process.stdout:
                percent = parse_progress_line(line, duration_us)
                if percent is not None:
                    self._percent(step, percent)
            returncode = process.wait()

            if returncode != 0:
                stderr_file.seek(0)
                tail = stderr_file.read()[-2000:]
                raise MergeError(f"ffmpeg exited with code {returncode}: {tail.strip()}")

        self._percent(step, 100.0)

    def _run(self, command: List[str], what: str) -> str:
        """Run a short ffmpeg command and return its combined output."""
        logger.debug(f"Running: {' '.join(command)}")
        try:
            completed = subprocess.run(command, stdin=subprocess.DEVNULL, stdout=subprocess.PIPE,
                                       stderr=subprocess.STDOUT, text=True)
        except OSError as e:
            raise MergeError(f"{what} failed: {e}")
        if completed.returncode != 0:
            raise MergeError(f"{what} failed with code {completed.returncode}: "
                             f"{completed.stdout[-2000:].strip()}")
        return completed.stdout


def parse_progress_line(line: str, duration_us: int) -> Optional[float]:
    """Percent complete from an ffmpeg ``out_time_us=`` progress line."""
    line = line.strip()
    if not line.startswith("out_time_us=") or duration_us <= 0:
        return None
    value = line.split("=", 1)[1]
    try:
        out_time = int(value)
    except ValueError:
        # N/A at the start of a run
        return None
    if out_time < 0:
        return None
    return min(100.0, out_time / duration_us * 100)


def parse_loudnorm_output(output: str) -> Dict[str, str]:
    """Extract the loudnorm measurement block from ffmpeg output.

    Raises:
        MergeError: If the output holds no usable measurement
    """
    blocks = re.findall(r"\{[^{}]+\}", output)
    stats: Dict[str, str] = {}
    if blocks:
        try:
            stats = {key: str(value) for key, value in json.loads(blocks[-1]).items()}
        except ValueError:
            stats = {}

    if not all(key in stats for key in LOUDNORM_KEYS):
        for key in LOUDNORM_KEYS:
            match = re.search(rf'"{key}"\s*:\s*"([^"]+)"', output)
            if match:
                stats[key] = match.group(1)

    missing = [key for key in LOUDNORM_KEYS if key not in stats]
    if missing:
        raise MergeError(f"no loudnorm stats found in output (missing {', '.join(missing)})")
    return stats
