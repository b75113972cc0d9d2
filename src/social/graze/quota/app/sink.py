"""Persistence of quota snapshots."""

import json
import logging
import os
import stat
import tempfile
from typing import Protocol, Sequence

from social.graze.quota.model.quota import QuotaSnapshot

logger = logging.getLogger(__name__)


class QuotaSink(Protocol):
    def write(self, snapshots: Sequence[QuotaSnapshot]) -> None: ...


def _target_mode(path: str) -> int:
    """Mode of the file being replaced, or the mode a plain open() would create."""
    try:
        return stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


class JsonFileSink:
    """
    Writes snapshots as an indented JSON array of records.

    The file is replaced atomically, so a reader never sees a partially written document.
    """

    def __init__(self, path: str) -> None:
        self.path = path

    def write(self, snapshots: Sequence[QuotaSnapshot]) -> None:
        document = json.dumps([snapshot.to_record() for snapshot in snapshots], indent=2)

        directory = os.path.dirname(os.path.abspath(self.path))
        mode = _target_mode(self.path)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as fl:
                fl.write(document)
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, self.path)
        except BaseException:
            os.unlink(tmp_path)
            raise

        logger.info("Rate limit data saved to %s", self.path)
