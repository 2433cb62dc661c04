"""Tests for rename planning and execution."""

import threading

from psx_wizard.cuesheet import read_cue
from psx_wizard.grouper import scan_and_group
from psx_wizard.models import (
    DeleteFolderOperation,
    MoveFileOperation,
    PlaylistOperationType,
    RenameOperation,
)
from psx_wizard.playlist import read_playlist_entries
from psx_wizard.rename import execute_renames, plan_renames

FF8 = (
    "Final Fantasy VIII (USA) [SLUS-00892] (Disc 1).chd",
    "Final Fantasy VIII (USA) [SLUS-00908] (Disc 2).chd",
)


def plan_for(root, recursive=False, flatten=False):
    return plan_renames(scan_and_group(root, recursive=recursive).groups, flatten=flatten)


class TestPlanRenames:
    """Tests for plan_renames()."""

    def test_sheet_and_bin_renamed_together(self, disc_tree):
        disc_tree.single("Crash Bandicoot (US) [SCUS_94900]")
        plan = plan_for(disc_tree.root)
        assert plan.renames == 2
        assert plan.sheet_updates == 1
        targets = sorted(op.destination.name for op in plan.operations if isinstance(op, RenameOperation))
        assert targets == [
            "Crash Bandicoot (USA) [SCUS-94900].bin",
            "Crash Bandicoot (USA) [SCUS-94900].cue",
        ]

    def test_missing_disc_suffix_injected(self, disc_tree):
        """The unnumbered second disc of a set gains '(Disc 2)'."""
        disc_tree.single("Alone in the Dark - The New Nightmare (USA) [SLUS-01201] (Disc 1 of 2)")
        disc_tree.single("Alone in the Dark - The New Nightmare (USA) [SLUS-01377]")
        plan = plan_for(disc_tree.root)
        cues = sorted(
            op.destination.name
            for op in plan.operations
            if isinstance(op, RenameOperation) and op.destination.suffix == ".cue"
        )
        assert cues == [
            "Alone in the Dark - The New Nightmare (USA) [SLUS-01201] (Disc 1).cue",
            "Alone in the Dark - The New Nightmare (USA) [SLUS-01377] (Disc 2).cue",
        ]

    def test_canonical_names_plan_nothing(self, disc_tree):
        disc_tree.single("Crash Bandicoot (USA) [SCUS-94900]")
        assert plan_for(disc_tree.root).is_empty

    def test_multi_track_names(self, disc_tree):
        disc_tree.multi_track("Lomax (US) [SLUS-00001]", audio_tracks=1)
        plan = plan_for(disc_tree.root)
        targets = sorted(op.destination.name for op in plan.operations if isinstance(op, RenameOperation))
        assert targets == [
            "Lomax (USA) (Track 01) [SLUS-00001].bin",
            "Lomax (USA) (Track 02) [SLUS-00001].bin",
            "Lomax (USA) [SLUS-00001].cue",
        ]

    def test_duplicate_target_skipped(self, disc_tree):
        """Two files mapping to one name: the second is left alone."""
        disc_tree.chd("Game (US) [SLUS-00001]")
        disc_tree.chd("Game (us) [SLUS_00001]")
        plan = plan_for(disc_tree.root)
        assert plan.renames == 1
        assert any("duplicate target" in c for c in plan.conflicts)

    def test_existing_destination_reported(self, disc_tree):
        disc_tree.chd("Game (USA) [SLUS-00001]")
        disc_tree.chd("Game (US) [SLUS-00001]")
        plan = plan_for(disc_tree.root)
        assert any("destination already exists" in c for c in plan.conflicts)

    def test_flatten_plans_moves_and_folder_delete(self, disc_tree):
        for name in FF8:
            disc_tree.file(f"FF8/{name}", b"MComprHD")
        plan = plan_for(disc_tree.root, recursive=True, flatten=True)
        assert plan.moves == 2
        assert all(
            op.destination.parent == disc_tree.root
            for op in plan.operations
            if isinstance(op, MoveFileOperation)
        )
        assert [op.folder for op in plan.operations if isinstance(op, DeleteFolderOperation)] == [
            disc_tree.root / "FF8"
        ]

    def test_without_flatten_files_stay_in_folder(self, disc_tree):
        for name in FF8:
            disc_tree.file(f"FF8/{name}", b"MComprHD")
        plan = plan_for(disc_tree.root, recursive=True)
        assert plan.operations == []
        assert [op.playlist_path for op in plan.playlists] == [
            disc_tree.root / "FF8" / "Final Fantasy VIII (USA).m3u"
        ]

    def test_playlist_entries_follow_renames(self, disc_tree):
        disc_tree.chd("Game (US) [SLUS-00001] (Disc 1 of 2)")
        disc_tree.chd("Game (US) [SLUS-00002] (Disc 2 of 2)")
        disc_tree.file(
            "Game (USA).m3u",
            b"Game (US) [SLUS-00001] (Disc 1 of 2).chd\nGame (US) [SLUS-00002] (Disc 2 of 2).chd\n",
        )
        plan = plan_for(disc_tree.root)
        assert len(plan.playlists) == 1
        op = plan.playlists[0]
        assert op.operation_type is PlaylistOperationType.UPDATE
        assert op.disc_filenames == (
            "Game (USA) [SLUS-00001] (Disc 1).chd",
            "Game (USA) [SLUS-00002] (Disc 2).chd",
        )

    def test_playlist_modes(self, disc_tree):
        disc_tree.chd("Game (USA) [SLUS-00001] (Disc 1)")
        disc_tree.chd("Game (USA) [SLUS-00002] (Disc 2)")
        groups = scan_and_group(disc_tree.root).groups
        assert plan_renames(groups, create_playlists=False).is_empty
        assert plan_renames(groups, create_playlists=False, update_playlists=False).is_empty
        assert len(plan_renames(groups).playlists) == 1


class TestExecuteRenames:
    """Tests for execute_renames()."""

    def test_apply_updates_cue_references(self, disc_tree):
        disc_tree.multi_track("Lomax (US) [SLUS-00001]", audio_tracks=1)
        result = execute_renames(plan_for(disc_tree.root), dry_run=False)
        assert result.success
        assert result.renamed == 3
        assert result.sheets_updated == 1
        cue = disc_tree.root / "Lomax (USA) [SLUS-00001].cue"
        assert [f.reference for f in read_cue(cue).files] == [
            "Lomax (USA) (Track 01) [SLUS-00001].bin",
            "Lomax (USA) (Track 02) [SLUS-00001].bin",
        ]
        assert read_cue(cue).missing_files() == []

    def test_dry_run_changes_nothing(self, disc_tree):
        cue = disc_tree.single("Crash Bandicoot (US) [SCUS_94900]")
        before = sorted(p.name for p in disc_tree.root.iterdir())
        text = cue.read_text()
        result = execute_renames(plan_for(disc_tree.root), dry_run=True)
        assert result.dry_run
        assert result.renamed == 2
        assert sorted(p.name for p in disc_tree.root.iterdir()) == before
        assert cue.read_text() == text

    def test_conflict_leaves_both_files(self, disc_tree):
        disc_tree.chd("Game (USA) [SLUS-00001]")
        disc_tree.chd("Game (US) [SLUS-00001]")
        result = execute_renames(plan_for(disc_tree.root), dry_run=False)
        assert result.skipped == 1
        assert result.renamed == 0
        assert (disc_tree.root / "Game (US) [SLUS-00001].chd").exists()

    def test_vanished_source_skipped(self, disc_tree):
        chd = disc_tree.chd("Game (US) [SLUS-00001]")
        plan = plan_for(disc_tree.root)
        chd.unlink()
        result = execute_renames(plan, dry_run=False)
        assert result.skipped == 1
        assert result.success

    def test_flatten_removes_empty_folder(self, disc_tree):
        for name in FF8:
            disc_tree.file(f"FF8/{name}", b"MComprHD")
        disc_tree.file("FF8/Final Fantasy VIII (USA).m3u", b"")
        result = execute_renames(plan_for(disc_tree.root, recursive=True, flatten=True), dry_run=False)
        assert result.moved == 3
        assert result.folders_deleted == 1
        assert not (disc_tree.root / "FF8").exists()
        assert (disc_tree.root / FF8[1]).exists()
        assert (disc_tree.root / "Final Fantasy VIII (USA).m3u").exists()

    def test_flatten_keeps_non_empty_folder(self, disc_tree):
        """Leftover files keep the folder alive."""
        for name in FF8:
            disc_tree.file(f"FF8/{name}", b"MComprHD")
        disc_tree.file("FF8/notes.txt", b"keep me")
        result = execute_renames(plan_for(disc_tree.root, recursive=True, flatten=True), dry_run=False)
        assert result.folders_deleted == 0
        assert (disc_tree.root / "FF8" / "notes.txt").exists()
        assert any("not empty" in m for m in result.messages)

    def test_cancel_before_start(self, disc_tree):
        disc_tree.chd("Game (US) [SLUS-00001]")
        event = threading.Event()
        event.set()
        result = execute_renames(plan_for(disc_tree.root), dry_run=False, cancel_event=event)
        assert result.cancelled
        assert (disc_tree.root / "Game (US) [SLUS-00001].chd").exists()

    def test_existing_playlist_rewritten_after_renames(self, disc_tree):
        disc_tree.chd("Game (US) [SLUS-00001] (Disc 1 of 2)")
        disc_tree.chd("Game (US) [SLUS-00002] (Disc 2 of 2)")
        old = b"Game (US) [SLUS-00001] (Disc 1 of 2).chd\nGame (US) [SLUS-00002] (Disc 2 of 2).chd\n"
        disc_tree.file("Game (US).m3u", old)
        result = execute_renames(plan_for(disc_tree.root), dry_run=False)
        assert result.success
        assert result.playlists_written == 1
        playlist = disc_tree.root / "Game (USA).m3u"
        entries = read_playlist_entries(playlist)
        assert entries == [
            "Game (USA) [SLUS-00001] (Disc 1).chd",
            "Game (USA) [SLUS-00002] (Disc 2).chd",
        ]
        assert all((disc_tree.root / entry).exists() for entry in entries)
        assert (disc_tree.root / "Game (USA).m3u.bak").read_bytes() == old
        assert not (disc_tree.root / "Game (US).m3u").exists()

    def test_playlist_created_for_renamed_set(self, disc_tree):
        disc_tree.chd("Game (US) [SLUS-00001] (Disc 1 of 2)")
        disc_tree.chd("Game (US) [SLUS-00002] (Disc 2 of 2)")
        result = execute_renames(plan_for(disc_tree.root), dry_run=False)
        assert result.playlists_written == 1
        assert result.backups == []
        assert (disc_tree.root / "Game (USA).m3u").read_text() == (
            "Game (USA) [SLUS-00001] (Disc 1).chd\nGame (USA) [SLUS-00002] (Disc 2).chd\n"
        )

    def test_playlist_skipped_when_a_rename_is_skipped(self, disc_tree):
        disc_tree.chd("Game (US) [SLUS-00001] (Disc 1 of 2)")
        second = disc_tree.chd("Game (US) [SLUS-00002] (Disc 2 of 2)")
        plan = plan_for(disc_tree.root)
        second.unlink()
        result = execute_renames(plan, dry_run=False)
        assert result.playlists_written == 0
        assert not (disc_tree.root / "Game (USA).m3u").exists()
        assert any("SKIP playlist" in m for m in result.messages)
