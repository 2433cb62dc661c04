"""Tests for .m3u playlist planning and writing."""

from psx_wizard.grouper import scan_and_group
from psx_wizard.models import PlaylistOperationType
from psx_wizard.playlist import (
    apply_playlists,
    build_playlist_operation,
    parse_playlist_entries,
    plan_playlists,
    write_playlist,
)

DISC1 = "Game (USA) [SLUS-00001] (Disc 1)"
DISC2 = "Game (USA) [SLUS-00002] (Disc 2)"


class TestParseEntries:
    def test_comments_and_blanks_ignored(self):
        text = "#EXTM3U\n\nGame (Disc 1).chd\r\n  # note\nGame (Disc 2).chd\n"
        assert parse_playlist_entries(text) == ["Game (Disc 1).chd", "Game (Disc 2).chd"]


class TestPlanPlaylists:
    """Tests for plan_playlists()."""

    def test_create_for_multi_disc(self, disc_tree):
        disc_tree.chd(DISC1)
        disc_tree.chd(DISC2)
        ops = plan_playlists(scan_and_group(disc_tree.root).groups)
        assert len(ops) == 1
        op = ops[0]
        assert op.operation_type is PlaylistOperationType.CREATE
        assert op.playlist_path == disc_tree.root / "Game (USA).m3u"
        assert op.disc_filenames == (f"{DISC1}.chd", f"{DISC2}.chd")

    def test_four_disc_set_in_order(self, disc_tree):
        """Shared multi-serial brackets still give four discs in disc order."""
        base = "Final Fantasy VIII (USA) [SLUS-00892, SLUS-00908, SLUS-00909, SLUS-01080]"
        for n in (3, 1, 4, 2):
            disc_tree.single(f"{base} (Disc {n})")
        ops = plan_playlists(scan_and_group(disc_tree.root).groups)
        assert len(ops) == 1
        assert ops[0].disc_filenames == tuple(f"{base} (Disc {n}).cue" for n in (1, 2, 3, 4))

    def test_separate_releases_get_no_playlist(self, disc_tree):
        disc_tree.single("Command & Conquer (GDI) (USA) [SLUS-00379]")
        disc_tree.single("Command & Conquer (NOD) (USA) [SLUS-00377]")
        assert plan_playlists(scan_and_group(disc_tree.root).groups) == []

    def test_single_disc_gets_no_playlist(self, disc_tree):
        disc_tree.chd("Game (USA) [SLUS-00001]")
        assert plan_playlists(scan_and_group(disc_tree.root).groups) == []

    def test_container_preferred_over_sheet(self, disc_tree):
        disc_tree.chd(DISC1)
        disc_tree.chd(DISC2)
        disc_tree.single(DISC1)
        disc_tree.single(DISC2)
        op = plan_playlists(scan_and_group(disc_tree.root).groups)[0]
        assert all(name.endswith(".chd") for name in op.disc_filenames)

    def test_preferred_extension(self, disc_tree):
        disc_tree.chd(DISC1)
        disc_tree.chd(DISC2)
        disc_tree.single(DISC1)
        disc_tree.single(DISC2)
        op = plan_playlists(scan_and_group(disc_tree.root).groups, preferred_extension="cue")[0]
        assert op.disc_filenames == (f"{DISC1}.cue", f"{DISC2}.cue")

    def test_mixed_formats_fall_back_to_common(self, disc_tree):
        """When one disc has no CHD, the sheet format is used for all."""
        disc_tree.chd(DISC1)
        disc_tree.single(DISC1)
        disc_tree.single(DISC2)
        op = plan_playlists(scan_and_group(disc_tree.root).groups)[0]
        assert op.disc_filenames == (f"{DISC1}.cue", f"{DISC2}.cue")

    def test_existing_playlist_updated(self, disc_tree):
        disc_tree.chd(DISC1)
        disc_tree.chd(DISC2)
        disc_tree.file("Game (USA).m3u", f"{DISC1}.cue\n{DISC2}.cue\n".encode())
        op = plan_playlists(scan_and_group(disc_tree.root).groups)[0]
        assert op.operation_type is PlaylistOperationType.UPDATE
        assert op.existing_content == f"{DISC1}.cue\n{DISC2}.cue\n"

    def test_unchanged_playlist_skipped(self, disc_tree):
        disc_tree.chd(DISC1)
        disc_tree.chd(DISC2)
        disc_tree.file("Game (USA).m3u", f"#EXTM3U\n{DISC1}.chd\n{DISC2}.chd\n".encode())
        assert plan_playlists(scan_and_group(disc_tree.root).groups) == []

    def test_create_and_update_switches(self, tmp_path):
        path = tmp_path / "x.m3u"
        assert build_playlist_operation(path, "X", None, ["a.chd", "b.chd"], create_new=False) is None
        path.write_text("old.chd\n")
        assert build_playlist_operation(path, "X", None, ["a.chd"], update_existing=False) is None


class TestWritePlaylist:
    """Tests for write_playlist() and apply_playlists()."""

    def test_update_writes_backup(self, tmp_path):
        path = tmp_path / "Game (USA).m3u"
        path.write_text("old.cue\n")
        op = build_playlist_operation(path, "Game", "USA", ["a.chd", "b.chd"])
        backup = write_playlist(op)
        assert backup == tmp_path / "Game (USA).m3u.bak"
        assert backup.read_text() == "old.cue\n"
        assert path.read_bytes() == b"a.chd\nb.chd\n"

    def test_no_backup(self, tmp_path):
        path = tmp_path / "Game (USA).m3u"
        path.write_text("old.cue\n")
        op = build_playlist_operation(path, "Game", "USA", ["a.chd", "b.chd"])
        assert write_playlist(op, backup=False) is None
        assert not (tmp_path / "Game (USA).m3u.bak").exists()

    def test_dry_run_writes_nothing(self, tmp_path):
        op = build_playlist_operation(tmp_path / "G.m3u", "G", None, ["a.chd", "b.chd"])
        result = apply_playlists([op], dry_run=True)
        assert result.created == 1
        assert not (tmp_path / "G.m3u").exists()

    def test_apply_creates(self, tmp_path):
        op = build_playlist_operation(tmp_path / "G.m3u", "G", None, ["a.chd", "b.chd"])
        result = apply_playlists([op], dry_run=False)
        assert result.success
        assert result.created == 1
        assert (tmp_path / "G.m3u").read_text(encoding="utf-8") == "a.chd\nb.chd\n"
