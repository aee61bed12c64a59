from __future__ import annotations

import os
from typing import Callable, Optional

NodeAction = Callable[[str], None]


def walk_tree(
    root: str,
    visit_file: NodeAction,
    enter_dir: Optional[NodeAction] = None,
    leave_dir: Optional[NodeAction] = None,
) -> None:
    """Depth-first walk shared by recursive delete and copy.

    ``enter_dir`` runs before a directory's children, ``leave_dir`` after all
    of them. Symlinks are never followed; they are handed to ``visit_file``.
    """
    if enter_dir is not None:
        enter_dir(root)
    with os.scandir(root) as iterator:
        children = list(iterator)
    for entry in children:
        if entry.is_dir(follow_symlinks=False):
            walk_tree(entry.path, visit_file, enter_dir, leave_dir)
        else:
            visit_file(entry.path)
    if leave_dir is not None:
        leave_dir(root)


def remove_tree(path: str) -> None:
    walk_tree(path, visit_file=os.unlink, leave_dir=os.rmdir)


def copy_tree(source: str, destination: str, copy_file: Callable[[str, str], None]) -> None:
    """Recreate ``source`` at ``destination``; ``copy_file`` handles each leaf."""
    source = os.path.abspath(source)
    destination = os.path.abspath(destination)

    def target(path: str) -> str:
        rel = os.path.relpath(path, source)
        return destination if rel == '.' else os.path.join(destination, rel)

    def enter(path: str) -> None:
        os.makedirs(target(path), mode=0o755)

    def leave(path: str) -> None:
        os.chmod(target(path), os.stat(path).st_mode & 0o7777)

    walk_tree(source, visit_file=lambda path: copy_file(path, target(path)), enter_dir=enter, leave_dir=leave)
