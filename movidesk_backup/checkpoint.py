import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable, List, Union

log = logging.getLogger(__name__)


class CheckpointFile:
    """
    Newline-delimited list of ticket IDs still waiting to be committed.

    Rewritten in full at the start of a run and shrunk one line per committed
    ticket. Writes go through a temp file + os.replace, so a crash leaves
    either the previous or the new content on disk.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> List[str]:
        if not self.path.exists():
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            return [line.strip() for line in f if line.strip()]

    def initialize(self, ids: Iterable[str]) -> None:
        ids = list(ids)
        self._write(ids)
        log.info("IDs saved in: %s (%d pending)", self.path, len(ids))

    def remove(self, ticket_id: str) -> bool:
        ids = self.read()
        remaining = [i for i in ids if i != ticket_id]
        if len(remaining) == len(ids):
            return False
        self._write(remaining)
        log.info("ID %s removed from file %s.", ticket_id, self.path)
        return True

    def _write(self, ids: List[str]) -> None:
        directory = self.path.resolve().parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.writelines(f"{i}\n" for i in ids)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
