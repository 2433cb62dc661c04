"""Cue sheet creation for lone disc images and repair of broken FILE references."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from .cuesheet import CueSheet, read_cue, render_single_track_cue, rewrite_references, write_cue
from .models import CueOperation, CueOperationType
from .parser import list_files

logger = logging.getLogger(__name__)

IMAGE_EXTS = (".bin", ".img", ".iso")
SHEET_EXT = ".cue"


def _stem_key(path: Path) -> tuple[str, str]:
    return (str(path.parent).casefold(), path.stem.casefold())


@dataclass
class CuePlan:
    operations: list[CueOperation] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    @property
    def creations(self) -> int:
        return sum(op.operation_type is CueOperationType.CREATE for op in self.operations)

    @property
    def updates(self) -> int:
        return sum(op.operation_type is CueOperationType.UPDATE for op in self.operations)

    @property
    def is_empty(self) -> bool:
        return not self.operations


def plan_cue_creations(
    images: list[Path],
    sheets: dict[Path, CueSheet],
    force: bool = False,
) -> list[CueOperation]:
    """Single-track sheets for images that no cue sheet accounts for.

    An image referenced by a sheet with a different stem is a track of that
    disc and is left alone. With ``force`` an existing same-stem sheet is
    regenerated.
    """
    by_stem = {_stem_key(path): path for path in sheets}
    claimed: dict[str, Path] = {}
    for path, sheet in sheets.items():
        for track in sheet.file_paths():
            claimed.setdefault(str(track).casefold(), path)

    operations = []
    for image in images:
        existing = by_stem.get(_stem_key(image))
        owner = claimed.get(str(image).casefold())
        if owner is not None and owner != existing:
            continue
        if existing is not None and not force:
            continue
        cue_path = existing or image.with_suffix(SHEET_EXT)
        verb = "Regenerate" if existing is not None else "Generate"
        operations.append(
            CueOperation(
                operation_type=CueOperationType.CREATE,
                cue_path=cue_path,
                content=render_single_track_cue(image.name),
                details=f"{verb} cue sheet for {image.name}",
            )
        )
    return operations


def _same_stem_image(sheet_path: Path, images: list[Path]) -> Path | None:
    key = _stem_key(sheet_path)
    candidates = [p for p in images if _stem_key(p) == key]
    candidates.sort(key=lambda p: IMAGE_EXTS.index(p.suffix.lower()))
    return candidates[0] if candidates else None


def plan_cue_updates(
    images: list[Path],
    sheets: dict[Path, CueSheet],
    notes: list[str] | None = None,
) -> list[CueOperation]:
    """Point a single-FILE sheet with a missing reference at its same-stem image."""
    notes = notes if notes is not None else []
    operations = []
    for path, sheet in sheets.items():
        missing = [f.reference for f in sheet.files if not sheet.resolve(f.reference).is_file()]
        if not missing:
            continue
        if len(sheet.files) != 1:
            notes.append(
                f"{path.name}: {len(missing)} missing FILE reference(s) "
                "in a multi-file sheet; not repaired"
            )
            continue
        image = _same_stem_image(path, images)
        if image is None:
            notes.append(f"{path.name}: {missing[0]} is missing; no image shares the sheet's name")
            continue
        new_reference = image.name
        operations.append(
            CueOperation(
                operation_type=CueOperationType.UPDATE,
                cue_path=path,
                content=rewrite_references(sheet, {missing[0]: new_reference}),
                details=f"Fixed reference: {missing[0]} -> {new_reference}",
            )
        )
    return operations


def plan_cue_sheets(
    root: Path,
    recursive: bool = False,
    create: bool = True,
    update: bool = True,
    force: bool = False,
) -> CuePlan:
    if not root.exists():
        raise FileNotFoundError(f"Scan root not found: {root}")
    if not root.is_dir():
        raise NotADirectoryError(f"Scan root is not a directory: {root}")

    plan = CuePlan()
    files = list_files(root, recursive)
    images = [p for p in files if p.suffix.lower() in IMAGE_EXTS]
    sheets: dict[Path, CueSheet] = {}
    for path in files:
        if path.suffix.lower() != SHEET_EXT:
            continue
        try:
            sheets[path] = read_cue(path)
        except OSError as exc:
            plan.notes.append(f"{path.name}: unreadable ({exc})")
            logger.warning("Could not read cue sheet %s: %s", path, exc)

    if create:
        plan.operations.extend(plan_cue_creations(images, sheets, force=force))
    if update:
        created = {op.cue_path for op in plan.operations}
        remaining = {p: s for p, s in sheets.items() if p not in created}
        plan.operations.extend(plan_cue_updates(images, remaining, plan.notes))
    logger.debug(
        "Planned %d cue creation(s) and %d update(s) under %s", plan.creations, plan.updates, root
    )
    return plan


@dataclass
class CueResult:
    dry_run: bool
    created: int = 0
    updated: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0


def apply_cue_operations(operations: list[CueOperation], dry_run: bool = True) -> CueResult:
    result = CueResult(dry_run=dry_run)
    for op in operations:
        if not dry_run:
            try:
                write_cue(op.cue_path, op.content)
            except OSError as exc:
                msg = f"Failed to write cue sheet {op.cue_path}: {exc}"
                logger.error(msg)
                result.failed += 1
                result.errors.append(msg)
                continue
            logger.info("%s: %s", op.cue_path.name, op.details)
        if op.operation_type is CueOperationType.CREATE:
            result.created += 1
        else:
            result.updated += 1
        result.messages.append(op.details)
    return result
