"""Tests for copying MP3 metadata rows onto their FLAC twins."""

import pytest

from rekord_fixer.core.errors import ValidationError
from rekord_fixer.domain.batch import BatchState
from rekord_fixer.domain.operations.metadata_sync import MetadataSync, MetadataSyncConfig

METADATA = {
    "AlbumID": "77",
    "ArtistID": "42",
    "OrgArtistID": "43",
    "ReleaseDate": "2018-04-01",
    "Subtitle": "Extended Mix",
}


@pytest.fixture
def twins(library, music_root, make_file):
    folder = music_root / "A"
    make_file(folder / "Song A.mp3")
    make_file(folder / "sub" / "Song C.mp3")
    library.add_track("1", folder / "Song A.mp3", **METADATA)
    library.add_track("2", folder / "Song A.flac")
    library.add_track("3", folder / "Song B.mp3", Subtitle="Radio Edit")
    library.add_track("4", folder / "sub" / "Song C.mp3", Subtitle="Dub")
    library.add_track("5", folder / "sub" / "Song C.flac")
    # Same name in another folder is not a twin
    library.add_track("6", music_root / "B" / "Song A.flac")
    return library


class TestMetadataSync:
    """Tests for MetadataSync.run()."""

    def test_flac_twin_receives_metadata(self, ctx, twins, music_root):
        result = MetadataSync(MetadataSyncConfig(str(music_root / "A"))).run(ctx)

        assert result.state is BatchState.COMPLETED
        flac = twins.track("2")
        for column, value in METADATA.items():
            assert str(flac[column]) == value

    def test_other_folders_untouched(self, ctx, twins, music_root):
        MetadataSync(MetadataSyncConfig(str(music_root / "A"))).run(ctx)
        assert twins.track("6")["Subtitle"] is None

    def test_recursive_by_default(self, ctx, twins, music_root):
        result = MetadataSync(MetadataSyncConfig(str(music_root / "A"))).run(ctx)
        assert twins.track("5")["Subtitle"] == "Dub"
        assert (result.total, result.updated, result.skipped) == (3, 2, 1)

    def test_non_recursive(self, ctx, twins, music_root):
        result = MetadataSync(
            MetadataSyncConfig(str(music_root / "A"), recursive=False)
        ).run(ctx)
        assert twins.track("5")["Subtitle"] is None
        assert result.total == 2

    def test_missing_twins_warned(self, ctx, twins, music_root):
        result = MetadataSync(MetadataSyncConfig(str(music_root / "A"))).run(ctx)
        assert result.warnings == ("No FLAC entry for: Song B.mp3",)

    def test_folder_without_mp3_files_rejected(self, ctx, twins, music_root):
        result = MetadataSync(MetadataSyncConfig(str(music_root / "B"))).run(ctx)
        assert result.state is BatchState.FAILED
        assert isinstance(result.error, ValidationError)
        assert result.backup_path is None

    def test_no_database_entries(self, ctx, library, music_root, make_file):
        make_file(music_root / "B" / "x.mp3")
        result = MetadataSync(MetadataSyncConfig(str(music_root / "B"))).run(ctx)
        assert result.state is BatchState.COMPLETED
        assert "no MP3 entries" in result.summary()
