"""Path helpers for the Claude projects directory layout."""

from pathlib import Path

TRANSCRIPT_SUFFIX = ".jsonl"


def decode_project_path(dir_name: str) -> str:
    """Turn an encoded project directory name back into a path.

    Claude Code stores transcripts under a directory named after the project
    path with every ``/`` replaced by ``-``, e.g. ``-Users-me-proj`` is
    ``/Users/me/proj``. Dashes that were part of the original path cannot be
    told apart, so they decode as separators too.
    """
    if not dir_name:
        return ""
    if dir_name.startswith("-"):
        dir_name = "/" + dir_name[1:]
    return dir_name.replace("-", "/")


def project_name_for(project_path: str) -> str:
    """Last path segment of a project path."""
    return Path(project_path).name if project_path else ""


def session_id_for(transcript_path: str | Path) -> str:
    """Session id of a transcript file: its file name without ``.jsonl``."""
    return Path(transcript_path).stem


def is_transcript_file(path: Path, projects_dir: Path) -> bool:
    """Whether a path is a ``<projects_dir>/<project>/<session>.jsonl`` transcript."""
    if path.suffix != TRANSCRIPT_SUFFIX:
        return False
    try:
        relative = path.relative_to(projects_dir)
    except ValueError:
        return False
    return len(relative.parts) == 2


def list_transcript_files(projects_dir: Path) -> list[Path]:
    """All transcripts one level below ``projects_dir``, sorted by path."""
    if not projects_dir.is_dir():
        return []
    files: list[Path] = []
    for project_dir in sorted(projects_dir.iterdir()):
        if not project_dir.is_dir():
            continue
        transcripts = [
            p for p in project_dir.iterdir() if p.suffix == TRANSCRIPT_SUFFIX and p.is_file()
        ]
        files.extend(sorted(transcripts))
    return files
