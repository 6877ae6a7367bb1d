# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Depth-first filesystem walk feeding the scanner workers through a bounded queue."""

import logging
import os
import queue
import threading
from dataclasses import dataclass

from sqlalchemy import Engine, select

from miko_server.models import Child, MusicFolder

logger = logging.getLogger(__name__)

# Queue.put timeout so a blocked producer still notices cancellation
PUT_POLL_SECONDS = 0.2


@dataclass(frozen=True)
class FolderRef:
    """Detached copy of a MusicFolder row, safe to share across threads."""

    id: int
    path: str


@dataclass(frozen=True)
class WalkTask:
    path: str
    name: str
    is_dir: bool
    folder: FolderRef


class WalkCancelled(Exception):
    pass


class Walker:
    """Produces WalkTasks for library roots or a subtree, in its own thread."""

    def __init__(self, engine: Engine, buffer_size: int, consumers: int):
        self.engine = engine
        self.buffer_size = buffer_size
        self.consumers = consumers

    def _start(self, roots: list[tuple[str, FolderRef]], cancel: threading.Event) -> queue.Queue:
        out: queue.Queue = queue.Queue(maxsize=self.buffer_size)

        def run() -> None:
            try:
                for path, folder in roots:
                    self._walk(path, folder, out, cancel)
            except WalkCancelled:
                logger.info("Walk cancelled")
            finally:
                # One sentinel per consumer; cancellation drains nothing else
                for _ in range(self.consumers):
                    out.put(None)

        threading.Thread(target=run, name="miko-walker", daemon=True).start()
        return out

    def _put(self, out: queue.Queue, task: WalkTask, cancel: threading.Event) -> None:
        while True:
            if cancel.is_set():
                raise WalkCancelled()
            try:
                out.put(task, timeout=PUT_POLL_SECONDS)
                return
            except queue.Full:
                continue

    def _walk(self, root: str, folder: FolderRef, out: queue.Queue, cancel: threading.Event) -> None:
        root = os.path.normpath(root).replace("\\", "/")
        if not os.path.isdir(root):
            if os.path.isfile(root):
                self._put(out, WalkTask(root, os.path.basename(root), False, folder), cancel)
            else:
                logger.warning("Walk root %s does not exist", root)
            return

        self._put(out, WalkTask(root, os.path.basename(root), True, folder), cancel)
        stack = [root]
        while stack:
            current = stack.pop()
            try:
                with os.scandir(current) as it:
                    entries = sorted(it, key=lambda e: e.name)
            except OSError as e:
                logger.warning("Cannot read directory %s: %s", current, e)
                continue

            subdirs = []
            for entry in entries:
                path = f"{current}/{entry.name}"
                try:
                    is_dir = entry.is_dir(follow_symlinks=True)
                    linked_dir = is_dir and entry.is_symlink()
                except OSError as e:
                    logger.warning("Cannot stat %s: %s", path, e)
                    continue
                # Directory links are not followed; a link to an ancestor would loop
                if linked_dir:
                    logger.debug("Skipping directory symlink %s", path)
                    continue
                self._put(out, WalkTask(path, entry.name, is_dir, folder), cancel)
                if is_dir:
                    subdirs.append(path)
            # Reverse so the stack pops subdirectories in name order
            stack.extend(reversed(subdirs))

    def walk_path(self, path: str, folder: FolderRef, cancel: threading.Event) -> queue.Queue:
        return self._start([(path, folder)], cancel)

    def walk_all_roots(self, cancel: threading.Event) -> queue.Queue:
        with self.engine.connect() as conn:
            rows = conn.execute(select(MusicFolder.id, MusicFolder.path).order_by(MusicFolder.id)).all()
        roots = [(row.path, FolderRef(row.id, row.path)) for row in rows]
        return self._start(roots, cancel)

    def walk_by_id(self, item_id: str, cancel: threading.Event) -> queue.Queue:
        """Walk the subtree of a catalog row, inside the deepest folder containing it."""
        with self.engine.connect() as conn:
            item_path = conn.execute(select(Child.path).where(Child.id == item_id)).scalar_one_or_none()
            if item_path is None:
                raise LookupError(f"failed to find item with ID {item_id!r}")
            folder = self.folder_for_path(conn, item_path)
        return self.walk_path(item_path, folder, cancel)

    @staticmethod
    def folder_for_path(conn, path: str) -> FolderRef:
        """Deepest music folder that is the path itself or one of its ancestors."""
        path = normalize_folder_path(path)
        best = None
        for row in conn.execute(select(MusicFolder.id, MusicFolder.path)):
            root = normalize_folder_path(row.path)
            if path == root or path.startswith(root.rstrip("/") + "/"):
                if best is None or len(root) > len(best.path):
                    best = FolderRef(row.id, root)
        if best is None:
            raise LookupError(f"failed to find music folder for path {path!r}")
        return best


def normalize_folder_path(path: str) -> str:
    """Forward slashes, no trailing separator (except for "/" itself)."""
    return os.path.normpath(path).replace("\\", "/")
