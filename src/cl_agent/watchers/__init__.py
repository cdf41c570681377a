"""Watcher implementations used by the control-plane agent."""

from .file import FileDataplaneWatcher, FileImportWatcher, FilePolicyWatcher  # noqa: F401

__all__ = ["FileDataplaneWatcher", "FileImportWatcher", "FilePolicyWatcher"]
