"""Unit tests for RecordingFolders and RecordingInfo."""

import json
from pathlib import Path
from datetime import datetime, timedelta

import pytest

from screencaster.models.recording_info import (
    RecordingInfo,
    RecordingMetadata,
    RecordingStatus,
    RECORDING_INFO_FILE,
    sanitize_for_filename,
    format_file_size,
)
from screencaster.models.session import SessionState, SourceKind
from screencaster.storage.file_manager import RecordingFolders, part_file_name


@pytest.mark.unit
class TestRecordingFolders:
    """Test cases for RecordingFolders class."""

    def test_initialization_creates_root(self, temp_data_dir):
        root = Path(temp_data_dir) / "videos"
        folders = RecordingFolders(str(root))

        assert folders.output_root == root
        assert root.is_dir()

    def test_next_number_starts_at_one(self, output_root):
        folders = RecordingFolders(output_root)

        assert folders.scan_highest_number() == 0
        assert folders.next_number() == 1

    def test_next_number_follows_highest_folder(self, output_root):
        folders = RecordingFolders(output_root)
        (Path(output_root) / "003-intro").mkdir()
        (Path(output_root) / "007-outro").mkdir()
        (Path(output_root) / "notes").mkdir()
        (Path(output_root) / "999-file.txt").write_text("not a folder")

        assert folders.next_number() == 8

    def test_create_recording_folder(self, output_root):
        folders = RecordingFolders(output_root)

        info = folders.create_recording_folder("My First Demo!", description="intro",
                                               presenter="Sam")

        folder = Path(info.files.folder_path)
        assert folder.name == "001-my-first-demo"
        assert folder.is_dir()
        assert (folder / RECORDING_INFO_FILE).exists()
        assert info.metadata.number == 1
        assert info.metadata.presenter == "Sam"
        assert info.status == RecordingStatus.RECORDING

    def test_create_recording_folder_default_title(self, output_root):
        folders = RecordingFolders(output_root)

        info = folders.create_recording_folder()

        assert info.metadata.title
        assert Path(info.files.folder_path).name.startswith("001-")

    def test_consecutive_folders_are_numbered(self, output_root):
        folders = RecordingFolders(output_root)

        first = folders.create_recording_folder("one")
        second = folders.create_recording_folder("two")

        assert first.metadata.number == 1
        assert second.metadata.number == 2

    def test_list_recordings_only_with_info(self, output_root):
        folders = RecordingFolders(output_root)
        info = folders.create_recording_folder("kept")
        (Path(output_root) / "002-empty").mkdir()

        assert folders.list_recordings() == [info.files.folder_path]

    def test_load_recording_missing(self, output_root):
        folders = RecordingFolders(output_root)

        assert folders.load_recording(str(Path(output_root) / "nope")) is None

    def test_load_recording_corrupt(self, output_root):
        folders = RecordingFolders(output_root)
        folder = Path(output_root) / "001-bad"
        folder.mkdir()
        (folder / RECORDING_INFO_FILE).write_text("{not json")

        assert folders.load_recording(str(folder)) is None

    @pytest.mark.parametrize("kind,part,expected", [
        (SourceKind.SCREEN, 0, "screen_part000.mp4"),
        (SourceKind.AUDIO, 1, "audio_part001.wav"),
        (SourceKind.CAMERA, 12, "camera_part012.mp4"),
    ])
    def test_part_file_name(self, kind, part, expected):
        assert part_file_name(kind, part) == expected


@pytest.mark.unit
class TestRecordingInfo:
    """Test cases for the recording.json model."""

    def test_save_and_load(self, output_root):
        info = RecordingFolders(output_root).create_recording_folder("roundtrip")
        info.append_part(SourceKind.SCREEN, "/x/screen_part000.mp4")
        info.set_status(RecordingStatus.PAUSED)
        info.save()

        loaded = RecordingInfo.load(info.files.folder_path)

        assert loaded.status == RecordingStatus.PAUSED
        assert loaded.files.parts_for(SourceKind.SCREEN) == ["/x/screen_part000.mp4"]
        assert loaded.metadata.folder_name == "001-roundtrip"

    def test_saved_file_is_plain_json(self, output_root):
        info = RecordingFolders(output_root).create_recording_folder("json")

        with open(info.info_path, encoding="utf-8") as f:
            data = json.load(f)

        assert data["status"] == "recording"
        assert data["metadata"]["number"] == 1
        assert "environment" in data

    def test_save_without_folder_is_noop(self):
        assert RecordingInfo().save() is None

    def test_load_missing_raises(self, temp_data_dir):
        with pytest.raises(FileNotFoundError):
            RecordingInfo.load(temp_data_dir)

    def test_append_part_keeps_order_and_skips_duplicates(self):
        info = RecordingInfo()

        info.append_part(SourceKind.AUDIO, "a0.wav")
        info.append_part(SourceKind.AUDIO, "a1.wav")
        info.append_part(SourceKind.AUDIO, "a1.wav")

        assert info.files.parts_for(SourceKind.AUDIO) == ["a0.wav", "a1.wav"]
        assert info.files.current_files["audio"] == "a1.wav"
        assert info.files.has_parts()

    def test_set_end_time_computes_duration(self):
        info = RecordingInfo(start_time=datetime(2025, 1, 1, 12, 0, 0))

        info.set_end_time(info.start_time + timedelta(seconds=90))

        assert info.duration_seconds == 90.0

    def test_update_file_sizes(self, temp_data_dir):
        screen = Path(temp_data_dir) / "screen_part000.mp4"
        screen.write_bytes(b"x" * 100)
        merged = Path(temp_data_dir) / "merged.mp4"
        merged.write_bytes(b"y" * 50)
        info = RecordingInfo()
        info.append_part(SourceKind.SCREEN, str(screen))
        info.append_part(SourceKind.AUDIO, str(Path(temp_data_dir) / "missing.wav"))
        info.files.merged_file = str(merged)

        info.update_file_sizes()

        assert info.files.sizes == {"screen": 100, "merged": 50}
        assert info.files.total_size == 150

    def test_status_from_state(self):
        assert RecordingStatus.from_state(SessionState.COMPLETED) == RecordingStatus.COMPLETED
        assert RecordingStatus.from_state(SessionState.PAUSED) == RecordingStatus.PAUSED


@pytest.mark.unit
class TestHelpers:
    """Test cases for naming and formatting helpers."""

    @pytest.mark.parametrize("title,expected", [
        ("Hello World", "hello-world"),
        ("  Spaces  ", "spaces"),
        ("Déjà vu: take #2", "dj-vu-take-2"),
        ("a -- b", "a-b"),
        ("!!!", ""),
    ])
    def test_sanitize_for_filename(self, title, expected):
        assert sanitize_for_filename(title) == expected

    def test_sanitize_truncates(self):
        assert len(sanitize_for_filename("x" * 80)) == 50

    def test_folder_name_falls_back_for_empty_title(self):
        metadata = RecordingMetadata(number=4, title="???")

        assert metadata.generate_folder_name() == "004-recording"

    @pytest.mark.parametrize("size,expected", [
        (512, "512 B"),
        (2048, "2.0 KB"),
        (5 * 1024 * 1024, "5.0 MB"),
        (3 * 1024 ** 3, "3.0 GB"),
    ])
    def test_format_file_size(self, size, expected):
        assert format_file_size(size) == expected
