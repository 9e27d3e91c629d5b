"""Constants for the eWeLink cloud client.

This module contains all the constants used throughout the package,
including region endpoints, protocol values, configuration keys, and
the backend error-code table.
"""

API_URLS = {
    "cn": "https://cn-apia.coolkit.cn",
    "us": "https://us-apia.coolkit.cc",
    "eu": "https://eu-apia.coolkit.cc",
    "as": "https://as-apia.coolkit.cc",
}
DISPATCH_URLS = {
    "cn": "https://cn-dispa.coolkit.cn/dispatch/app",
    "us": "https://us-dispa.coolkit.cc/dispatch/app",
    "eu": "https://eu-dispa.coolkit.cc/dispatch/app",
    "as": "https://as-dispa.coolkit.cc/dispatch/app",
}
SUPPORTED_REGIONS = tuple(API_URLS)

LOGIN_PAGE_URL = "https://c2ccdn.coolkit.cc/oauth/index.html"
DEFAULT_LOGIN_STATE = "ewelink_cloud"

ENDPOINT_OAUTH_TOKEN = "/v2/user/oauth/token"
ENDPOINT_REFRESH = "/v2/user/refresh"
ENDPOINT_FAMILY = "/v2/family"
ENDPOINT_THINGS = "/v2/device/thing"
ENDPOINT_THING_STATUS = "/v2/device/thing/status"
ENDPOINT_HISTORY = "/v2/device/history"

DEFAULT_TIMEOUT = 10.0
CONNECT_TIMEOUT = 30.0
DEFAULT_SETTLE_SECONDS = 3

# Real-time channel
WS_PATH = "/api/ws"
WS_GUID = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"
WS_SUBPROTOCOL = "chat"
WS_VERSION = 13
WS_KEY_BYTES = 16
HANDSHAKE_MAX_BYTES = 16384
HEARTBEAT_MARGIN_SECONDS = 7
USER_ONLINE_VERSION = 8
USER_AGENT = "app"

# Thing status request type for devices (as opposed to groups)
THING_TYPE_DEVICE = 1
MULTI_CHANNEL_KEY = "switches"
OUTLET_KEY = "outlet"

NONCE_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
NONCE_LENGTH = 8

STORE_KEY_SESSION = "token"
STORE_KEY_DEVICES = "devices"

CONF_APP_ID = "app_id"
CONF_APP_SECRET = "app_secret"
CONF_REDIRECT_URL = "redirect_url"
CONF_REGION = "region"
CONF_EMAIL = "email"
CONF_PASSWORD = "password"

# Backend error codes that mean the access token can no longer be used
ERROR_AUTH_INVALID = 401
ERROR_AUTH_EXPIRED = 402
UNKNOWN_ERROR_MESSAGE = "Unknown error"

ERROR_CODES = {
    400: (
        "Parameter error, usually the parameter required by the interface is "
        "missing, or the type or value of the parameter is wrong."
    ),
    401: (
        "Access token authentication error. Usually, the account is logged in "
        "by others, resulting in the invalidation of the current access token."
    ),
    402: "Access token expired.",
    403: "The interface cannot be found, usually the interface URL is written incorrectly.",
    405: (
        "The resource cannot be found. Usually, the necessary data records "
        "cannot be found in the back-end database."
    ),
    406: (
        "Reject the operation. Usually, the current user does not have "
        "permission to operate the specified resource."
    ),
    407: "Appid has no operation permission.",
    412: "APPID calls exceed the limit.",
    500: "Server internal error, usually the server program error.",
    4002: (
        "Device control failure (Check control parameter transmission or "
        "device online status)."
    ),
    30003: (
        "Failed to notify the device to disconnect from the temporary "
        "persistent connection, when adding a GSM device."
    ),
    30007: (
        "Failed to add the GSM device, because it has been added by another "
        "user before."
    ),
    30008: "When you are sharing devices, the shared user does not exist.",
    30009: (
        "You have exceeded the limit of groups you can have for your current "
        "subscription plan."
    ),
    30010: "The device ID format is wrong for the device being added.",
    30011: "The factory data cannot be found in the device being added.",
    30012: (
        'The "extra" field of factory data cannot be found in the device '
        "being added."
    ),
    30013: "The brand info of factory data cannot be found.",
    30014: "There is an error with the chipid.",
    30015: "There is a digest error when a device is being added.",
    30016: "The appid could not be found when a device is being added.",
    30017: "This appid is not allowed to add the devices of the current brand.",
    30018: "No device can be found with current deviceid.",
    30019: "The product model of factory data cannot be found.",
    30022: (
        "The device is offline and the operation fails. It will appear in "
        "batch updating the device status."
    ),
}
