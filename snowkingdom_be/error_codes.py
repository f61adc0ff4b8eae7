class ErrorCodes:
    GENERIC_ERROR = "GENERIC_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    RATE_LIMITED = "RATE_LIMITED"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"

    # Game play
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    INVALID_BET = "INVALID_BET"
    NO_ACTION_GAME_SPINS = "NO_ACTION_GAME_SPINS"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    GAME_NOT_FOUND = "GAME_NOT_FOUND"
    GAME_LOGIC_ERROR = "GAME_LOGIC_ERROR"
    GAME_CONFIG_ERROR = "GAME_CONFIG_ERROR"
