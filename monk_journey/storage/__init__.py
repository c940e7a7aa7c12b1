"""Storage adapters.

    codec   value kinds ↔ local text and remote file content
    local   synchronous device storage (LocalStore over a text medium)
    drive   thin async client for the remote file API
    remote  key/value view of the remote save folder (RemoteStore)
"""

# Re-export the public symbols so `from monk_journey import storage` is enough.

from .local import (  # noqa: F401
    JsonFileMedium,
    LocalStore,
    MemoryMedium,
    QuotaExceededError,
    TextMedium,
)

from .drive import (  # noqa: F401
    DriveClient,
    RemoteStoreError,
)

from .remote import (  # noqa: F401
    DEFAULT_FOLDER_NAME,
    RemoteStore,
)
