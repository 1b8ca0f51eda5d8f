"""SF File Flow: resumable migration of files and record links between stores."""

from .file_transfer import transfer_files
from .migrator import execute_migration, run_migration

__all__ = ["execute_migration", "run_migration", "transfer_files"]
