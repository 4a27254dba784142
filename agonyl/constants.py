"""Shared protocol and message constants."""

LOGGED_IN_USER_KEY_PREFIX = "agonyl:logged_in_user:"

LOGIN_FAILED_ERROR_CODE = 0x1201

# Gate server
ACCOUNT_SERVER_SERVER_ID = 255
GATE_LOGIN_FAILED_MSG = "Login failed."
GATE_ACCOUNT_ALREADY_LOGGED_IN_MSG = "Account is already logged in."

# Login server
SERVER_UNDER_MAINTENANCE_MSG = "Server is under maintenance!"
LOGIN_ACCOUNT_ALREADY_LOGGED_IN_MSG = "Account already logged in!"
ACCOUNT_NOT_ACTIVE_MSG = "Account is not active!"
ACCOUNT_BANNED_MSG = "Account is banned!"
INVALID_CREDENTIALS_MSG = "Invalid credentials!"
ACCOUNT_STATUS_ACTIVE = "active"
ACCOUNT_STATUS_BANNED = "banned"