"""
Error taxonomy for tournament operations.

Routes translate these into HTTP status codes via ``status_code``;
services never raise HTTPException themselves.
"""


class GameError(Exception):
    """Base exception for game engine errors"""

    status_code = 500


class GameNotFoundError(GameError):
    """Tournament, match or member does not exist"""

    status_code = 404


class GameValidationError(GameError):
    """Bad input shape, insufficient roster, missing ruleset entry"""

    status_code = 400


class GameConflictError(GameError):
    """Lifecycle state (or round state) already moved past the expected value"""

    status_code = 409


class BracketStructureError(GameError):
    """Stored bracket is inconsistent: placeholders missing, undecided matches, miscounts"""

    status_code = 500


class DependencyError(GameError):
    """An external collaborator (store, push provider) failed"""

    status_code = 503


class PushDeliveryError(DependencyError):
    pass


class PushTokenInvalidError(PushDeliveryError):
    """Provider says the device token is unknown; caller must clear it"""

    def __init__(self, token: str, message: str = ""):
        super().__init__(message or f"Device token rejected: {token[:12]}...")
        self.token = token
