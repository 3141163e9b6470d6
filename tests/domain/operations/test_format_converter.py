"""Tests for batch conversion of a folder of audio files."""

import pytest

from rekord_fixer.core.errors import ConfigurationError, TranscodeCancelled, TranscodeError
from rekord_fixer.domain.batch import BatchState
from rekord_fixer.domain.operations.format_converter import (
    FormatConverter,
    FormatConverterConfig,
)


class FakeTranscoder:
    """Writes the target file instead of running ffmpeg."""

    def __init__(self, fail=(), on_convert=None):
        self.calls = []
        self.fail = set(fail)
        self.on_convert = on_convert

    def convert(self, source, target, target_format, is_cancelled=None):
        self.calls.append((source.name, target))
        if self.on_convert is not None:
            self.on_convert()
        if source.name in self.fail:
            raise TranscodeError(f"ffmpeg failed on {source.name}")
        target.write_bytes(b"converted " + source.name.encode())


@pytest.fixture
def source_dir(tmp_path, make_file):
    root = tmp_path / "Incoming"
    make_file(root / "a.mp3")
    make_file(root / "b.flac")
    make_file(root / "Disc 2" / "c.wav")
    make_file(root / "notes.txt")
    return root


@pytest.fixture
def target_dir(tmp_path):
    target = tmp_path / "Converted"
    target.mkdir()
    return target


def converter(source_dir, target_dir, transcoder, **options):
    config = FormatConverterConfig(
        source_folder=str(source_dir),
        target_folder=str(target_dir),
        target_format=options.pop("target_format", "flac"),
        **options,
    )
    return FormatConverter(config, transcoder=transcoder)


class TestFormatConverter:
    """Tests for FormatConverter.run()."""

    def test_mirrors_folder_structure(self, ctx, source_dir, target_dir):
        fake = FakeTranscoder()
        result = converter(source_dir, target_dir, fake).run(ctx)

        assert result.state is BatchState.COMPLETED
        assert (target_dir / "a.flac").exists()
        assert (target_dir / "b.flac").exists()
        assert (target_dir / "Disc 2" / "c.flac").exists()
        assert len(fake.calls) == 3
        assert result.summary() == "Format converter: 3 converted, 0 already present, 0 failed"

    def test_does_not_touch_database(self, ctx, source_dir, target_dir, db_path):
        before = db_path.read_bytes()
        result = converter(source_dir, target_dir, FakeTranscoder()).run(ctx)
        assert result.backup_path is None
        assert db_path.read_bytes() == before

    def test_existing_targets_skipped(self, ctx, source_dir, target_dir):
        (target_dir / "a.flac").write_bytes(b"old")
        result = converter(source_dir, target_dir, FakeTranscoder()).run(ctx)

        assert (target_dir / "a.flac").read_bytes() == b"old"
        assert result.details["tally"].existing == 1
        assert result.skipped == 1

    def test_rewrite_existing(self, ctx, source_dir, target_dir):
        (target_dir / "a.flac").write_bytes(b"old")
        converter(source_dir, target_dir, FakeTranscoder(), rewrite_existing=True).run(ctx)
        assert (target_dir / "a.flac").read_bytes() == b"converted a.mp3"

    def test_make_target_folder(self, ctx, source_dir, target_dir):
        converter(source_dir, target_dir, FakeTranscoder(), make_target_folder=True).run(ctx)
        assert (target_dir / "Incoming" / "a.flac").exists()
        assert (target_dir / "Incoming" / "Disc 2" / "c.flac").exists()

    def test_source_format_filter(self, ctx, source_dir, target_dir):
        fake = FakeTranscoder()
        converter(
            source_dir, target_dir, fake, target_format="mp3", source_format="wav"
        ).run(ctx)
        assert [name for name, _ in fake.calls] == ["c.wav"]

    def test_non_recursive(self, ctx, source_dir, target_dir):
        fake = FakeTranscoder()
        converter(source_dir, target_dir, fake, recursive=False).run(ctx)
        assert sorted(name for name, _ in fake.calls) == ["a.mp3", "b.flac"]

    def test_failures_are_collected(self, ctx, source_dir, target_dir):
        result = converter(source_dir, target_dir, FakeTranscoder(fail={"b.flac"})).run(ctx)

        assert result.state is BatchState.COMPLETED
        assert result.details["tally"].failed == ["b.flac"]
        assert result.warnings == ("1 files failed: b.flac",)
        assert (target_dir / "Disc 2" / "c.flac").exists()

    def test_cancel_during_conversion(self, ctx, source_dir, target_dir):
        class Cancelling(FakeTranscoder):
            def convert(self, source, target, target_format, is_cancelled=None):
                ctx.token.cancel()
                raise TranscodeCancelled("killed")

        result = converter(source_dir, target_dir, Cancelling()).run(ctx)

        assert result.state is BatchState.CANCELLED
        assert result.processed == 1
        assert [p for p in target_dir.rglob("*") if p.is_file()] == []

    def test_cancel_during_last_conversion(self, ctx, tmp_path, target_dir, make_file):
        single = tmp_path / "Single"
        make_file(single / "only.mp3")

        class Cancelling(FakeTranscoder):
            def convert(self, source, target, target_format, is_cancelled=None):
                ctx.token.cancel()
                raise TranscodeCancelled("killed")

        result = converter(single, target_dir, Cancelling()).run(ctx)
        assert result.state is BatchState.CANCELLED

    def test_target_folder_must_exist(self, ctx, source_dir, tmp_path):
        result = converter(source_dir, tmp_path / "missing", FakeTranscoder()).run(ctx)
        assert result.state is BatchState.FAILED

    def test_no_audio_files(self, ctx, tmp_path, target_dir, make_file):
        empty = tmp_path / "Docs"
        make_file(empty / "readme.txt")
        result = converter(empty, target_dir, FakeTranscoder()).run(ctx)
        assert result.state is BatchState.FAILED

    def test_unsupported_target_format(self, source_dir, target_dir):
        with pytest.raises(ConfigurationError):
            converter(source_dir, target_dir, FakeTranscoder(), target_format="ogg")
