"""Steam partner portal URLs, CSS selectors, and stats table labels."""

# ── URLs ─────────────────────────────────────────────────────────────────────

PORTAL_BASE = "https://partner.steampowered.com"
PORTAL_LOGIN_URL = f"{PORTAL_BASE}/login/"
PORTAL_LOGOUT_URL = f"{PORTAL_BASE}/login/logout/"
PORTAL_HOME_URL = f"{PORTAL_BASE}/nav_games.php"

# ── CSS Selectors ────────────────────────────────────────────────────────────

SELECTORS = {
    # Login page
    "login_username": "input#username",
    "login_password": "input#password",
    "login_error": "#error_display",

    # Steam Guard prompt
    "auth_code": "input#authcode",
    "auth_friendly_name": "input#friendlyname",
    "auth_submit": "#auth_buttonset_entercode > div.auth_button.leftbtn",
    "auth_success_continue": "#success_continue_btn",

    # App details page
    "lifetime_summary": "#gameDataLeft div.lifetimeSummaryCtn table",
}

# ── Login Wall Detection ─────────────────────────────────────────────────────

LOGIN_URL_MARKERS = [
    "/login",
    "store.steampowered.com/login",
]

LOGIN_PAGE_MARKERS = [
    'id="username"',
    'id="loginForm"',
    'name="logon"',
]

LOGIN_ERROR_MESSAGES = [
    "The account name or password that you have entered is incorrect",
    "There have been too many login failures",
    "Please verify your humanity",
]

# ── Lifetime Summary Rows ────────────────────────────────────────────────────

# Lowercased label prefix -> StatsSnapshot field
STATS_ROW_LABELS = {
    "lifetime steam revenue (gross)": "gross_revenue",
    "lifetime steam revenue (net)": "net_revenue",
    "lifetime steam units": "units_sold",
    "lifetime units returned": "units_returned",
    "current players": "current_players",
    "daily active users": "daily_active_users",
    "lifetime unique users": "lifetime_unique_users",
    "wishlists": "wishlist_count",
}

INTEGER_FIELDS = {
    "units_sold",
    "units_returned",
    "current_players",
    "daily_active_users",
    "lifetime_unique_users",
    "wishlist_count",
}
