"""Small string, time and money helpers. Amounts are in fen (1/100 yuan)."""

TIME_FORMAT_DATETIME = "2006-01-02 15:04:05"
TIME_FORMAT_DATE = "2006-01-02"
TIME_FORMAT_TIME = "15:04:05"
TIME_FORMAT_UNIX = "unix"


def unix_to_time(timestamp, fmt=TIME_FORMAT_UNIX):
    """Render a Unix timestamp as text; zero renders as an empty string."""
    if timestamp == 0:
        return ""
    return str(timestamp)


def is_empty(s):
    """True when the string has no characters."""
    return len(s) == 0


def is_not_empty(s):
    """True when the string has at least one character."""
    return len(s) > 0


def truncate_string(s, max_len):
    """Cut the string to max_len characters, appending '...' when cut."""
    if len(s) <= max_len:
        return s
    return s[:max_len] + "..."


def mask_string(s, prefix_len, suffix_len):
    """Keep prefix_len leading and suffix_len trailing characters, mask the rest."""
    if len(s) <= prefix_len + suffix_len:
        return s
    return s[:prefix_len] + "***" + s[len(s) - suffix_len:]


def mask_phone(phone):
    """Mask the middle four digits of an 11-digit phone number."""
    if len(phone) != 11:
        return phone
    return phone[:3] + "****" + phone[7:]


def mask_email(email):
    """Mask the local part of an e-mail address."""
    if len(email) < 4:
        return email
    username, at, domain = email.partition("@")
    if not at:
        return mask_string(email, 2, 2)
    return mask_string(username, 2, 0) + at + domain


def fen_to_yuan(fen):
    """Format an amount in fen as yuan with two decimals."""
    return f"{fen / 100.0:.2f}"


def yuan_to_fen(yuan):
    """Convert yuan to fen, truncating toward zero."""
    return int(yuan * 100)


def format_amount(amount):
    """Format an amount in fen as a yuan string with the currency suffix."""
    return f"{amount / 100.0:.2f}元"