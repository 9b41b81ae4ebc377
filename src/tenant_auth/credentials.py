"""On-disk credential storage for the CLI.

FileCredentialStore keeps the CLI's tokens as one JSON object in a file
readable only by the current user. The refresh manager and the login
command see it only through the CredentialStore protocol.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path

from .errors import StoreUnavailable


class FileCredentialStore:
    """JSON-file backed CredentialStore.

    Example:
        ```python
        store = FileCredentialStore("~/.tenant-auth/credentials.json")
        store.save({"access_token": "...", "refresh_token": "..."})
        store.load()["access_token"]
        store.delete()
        ```

    Attributes:
        path: Location of the credentials file.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path).expanduser()

    def load(self) -> dict[str, str]:
        """Return stored credentials, or an empty dict if there is no file.

        Raises:
            StoreUnavailable: The file exists but cannot be read or parsed.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StoreUnavailable(f"Cannot read {self.path}: {e}") from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StoreUnavailable(f"{self.path} is not valid JSON") from e

        if not isinstance(data, dict):
            raise StoreUnavailable(f"{self.path} does not contain a JSON object")
        return {str(k): str(v) for k, v in data.items()}

    def save(self, data: Mapping[str, str]) -> None:
        """Overwrite the file with ``data``, readable by the owner only."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(dict(data), fh, indent=2)
        except OSError as e:
            raise StoreUnavailable(f"Cannot write {self.path}: {e}") from e

    def delete(self) -> bool:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StoreUnavailable(f"Cannot delete {self.path}: {e}") from e
        return True
