"""Monk Journey storage: local persistence with an optional remote mirror.

Typical wiring:

    settings = load_settings()
    service = create_service(settings, decide=ask_player)
    await service.init()
    await service.save(StorageKeys.DIFFICULTY, "hard")
    ...
    await service.aclose()
"""

from .auth import (  # noqa: F401
    AuthSession,
    IdentityProvider,
    OAuthTokenProvider,
    SignInError,
)

from .config import (  # noqa: F401
    SyncSettings,
    load_settings,
)

from .keys import (  # noqa: F401
    KEY_PREFIX,
    LOCAL_ONLY_KEYS,
    SAVE_DATA_KEY,
    StorageKeys,
)

from .models import (  # noqa: F401
    AuthState,
    RemoteObject,
    StorageEvent,
    SyncReport,
)

from .sync import (  # noqa: F401
    ConflictPolicy,
    StorageService,
    create_service,
)
