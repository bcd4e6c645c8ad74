"""
Central constants for Voiceover Studio Finder.
"""
from __future__ import annotations

# Studio types: key -> (full label, short label)
STUDIO_TYPE_LABELS = {
    "HOME": ("Home Studio", "Home"),
    "RECORDING": ("Recording Studio", "Recording"),
    "PODCAST": ("Podcast Studio", "Podcast"),
    "AUDIO_PRODUCER": ("Audio Producer", "Producer"),
    "VO_COACH": ("VO Coach", "VO Coach"),
    "VOICEOVER": ("Voiceover Artist", "VO Artist"),
}
STUDIO_TYPES = frozenset(STUDIO_TYPE_LABELS)

# Free-text search terms -> studio type keys
STUDIO_TYPE_SEARCH_TERMS = {
    "podcast": "PODCAST",
    "podcasting": "PODCAST",
    "recording": "RECORDING",
    "voice over": "VOICEOVER",
    "voiceover": "VOICEOVER",
    "voice over studio": "VOICEOVER",
    "voiceover studio": "VOICEOVER",
    "broadcast": "VOICEOVER",
    "radio": "VOICEOVER",
    "tv": "VOICEOVER",
    "television": "VOICEOVER",
    "music": "RECORDING",
    "audio": "RECORDING",
    "sound": "RECORDING",
}

SERVICES = frozenset(
    {
        "ISDN",
        "SOURCE_CONNECT",
        "SOURCE_CONNECT_NOW",
        "CLEANFEED",
        "SESSION_LINK_PRO",
        "SKYPE",
        "ZOOM",
        "TEAMS",
        "GOOGLE_MEET",
        "PHONE_PATCH",
        "REMOTE_RECORDING",
        "LIVE_STREAMING",
    }
)

SERVICE_SEARCH_TERMS = {
    "isdn": "ISDN",
    "source connect": "SOURCE_CONNECT",
    "source connect now": "SOURCE_CONNECT_NOW",
    "cleanfeed": "CLEANFEED",
    "sessionlinkpro": "SESSION_LINK_PRO",
    "session link pro": "SESSION_LINK_PRO",
    "skype": "SKYPE",
    "zoom": "ZOOM",
    "teams": "TEAMS",
    "google meet": "GOOGLE_MEET",
    "phone patch": "PHONE_PATCH",
    "remote recording": "REMOTE_RECORDING",
    "live streaming": "LIVE_STREAMING",
}

# connection1..connection12 on studio profiles
CONNECTION_LABELS = {
    1: "Source Connect",
    2: "Source Connect Now",
    3: "Phone Patch",
    4: "Session Link Pro",
    5: "Zoom or Teams",
    6: "Cleanfeed",
    7: "Riverside",
    8: "Google Hangouts",
    9: "ipDTL",
    10: "SquadCast",
    11: "Zencastr",
    12: "Other (See profile)",
}

SOCIAL_FIELDS = (
    "facebook_url",
    "x_url",
    "linkedin_url",
    "instagram_url",
    "youtube_url",
    "tiktok_url",
    "threads_url",
    "soundcloud_url",
    "vimeo_url",
    "bluesky_url",
)

# Usernames that collide with site routes or impersonate staff.
RESERVED_USERNAMES = frozenset(
    {
        "admin",
        "administrator",
        "api",
        "auth",
        "about",
        "account",
        "billing",
        "blog",
        "contact",
        "cron",
        "dashboard",
        "help",
        "join",
        "login",
        "logout",
        "membership",
        "messages",
        "privacy",
        "profile",
        "register",
        "root",
        "search",
        "settings",
        "signin",
        "signup",
        "static",
        "studio",
        "studios",
        "support",
        "system",
        "terms",
        "unsubscribe",
        "user",
        "users",
        "www",
    }
)

TEMP_USERNAME_PREFIX = "temp_"
EXPIRED_USERNAME_PREFIX = "expired_"

RESERVATION_DAYS = 7
VERIFICATION_TOKEN_HOURS = 24
EXPIRED_USER_RETENTION_DAYS = 30

MAX_FEATURED_STUDIOS = 6
FEATURED_DAYS = 182  # six months

RENEWAL_REMINDER_WINDOWS = (30, 14, 7, 1)
