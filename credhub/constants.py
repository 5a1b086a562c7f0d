from enum import StrEnum


class TokenKind(StrEnum):
    APP = "app"
    USER = "user"


class DeviceFlowStatus(StrEnum):
    PENDING = "pending"
    SUCCESS = "success"
    DENIED = "denied"
    EXPIRED = "expired"


# Grant types accepted by the Twitch token endpoint
GRANT_CLIENT_CREDENTIALS = "client_credentials"
GRANT_AUTHORIZATION_CODE = "authorization_code"
GRANT_REFRESH_TOKEN = "refresh_token"
GRANT_DEVICE_CODE = "urn:ietf:params:oauth:grant-type:device_code"

# Polling interval Twitch implies when the device response omits one
DEFAULT_DEVICE_POLL_INTERVAL = 5

# Common EventSub subscription types offered when creating a webhook.
# Condition values mark which keys the type requires.
EVENTSUB_TYPES: list[dict] = [
    {
        "type": "stream.online",
        "version": "1",
        "description": "A broadcaster starts a stream",
        "condition": {"broadcaster_user_id": "required"},
    },
    {
        "type": "stream.offline",
        "version": "1",
        "description": "A broadcaster stops a stream",
        "condition": {"broadcaster_user_id": "required"},
    },
    {
        "type": "channel.update",
        "version": "2",
        "description": "A broadcaster updates their channel properties",
        "condition": {"broadcaster_user_id": "required"},
    },
    {
        "type": "channel.follow",
        "version": "2",
        "description": "A user follows a broadcaster",
        "condition": {"broadcaster_user_id": "required", "moderator_user_id": "required"},
    },
    {
        "type": "channel.subscribe",
        "version": "1",
        "description": "A user subscribes to a broadcaster",
        "condition": {"broadcaster_user_id": "required"},
    },
    {
        "type": "channel.subscription.gift",
        "version": "1",
        "description": "A user gifts subscriptions",
        "condition": {"broadcaster_user_id": "required"},
    },
    {
        "type": "channel.cheer",
        "version": "1",
        "description": "A user cheers bits",
        "condition": {"broadcaster_user_id": "required"},
    },
    {
        "type": "channel.raid",
        "version": "1",
        "description": "A broadcaster raids another broadcaster",
        "condition": {"to_broadcaster_user_id": "required"},
    },
    {
        "type": "channel.ban",
        "version": "1",
        "description": "A user is banned from a broadcaster's chat",
        "condition": {"broadcaster_user_id": "required"},
    },
    {
        "type": "channel.moderator.add",
        "version": "1",
        "description": "A user is added as a moderator",
        "condition": {"broadcaster_user_id": "required"},
    },
]
