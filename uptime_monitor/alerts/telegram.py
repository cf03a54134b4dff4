from __future__ import annotations

import httpx

from uptime_monitor.errors import ChannelDeliveryError


TELEGRAM_MAX_MESSAGE_LEN = 3900
TELEGRAM_API_BASE = "https://api.telegram.org"

_MARKDOWN_SPECIALS = ("\\", "_", "*", "`", "[")


def escape_markdown(text: str) -> str:
    """Escape characters that Telegram's legacy Markdown mode treats as entities."""
    s = str(text or "")
    for ch in _MARKDOWN_SPECIALS:
        s = s.replace(ch, "\\" + ch)
    return s


def split_telegram_message(text: str, *, max_len: int = TELEGRAM_MAX_MESSAGE_LEN) -> list[str]:
    s = (text or "").strip()
    if not s:
        return [""]

    max_len = max(1, int(max_len))
    parts: list[str] = []
    while s:
        if len(s) <= max_len:
            parts.append(s)
            break
        cut = s.rfind("\n", 0, max_len + 1)
        if cut < max_len * 0.6:
            cut = max_len
        chunk = s[:cut].rstrip()
        parts.append(chunk)
        s = s[cut:].lstrip()
    return parts


def redact_token(text: str, bot_token: str) -> str:
    if bot_token:
        return text.replace(bot_token, "<redacted>")
    return text


async def send_telegram_message(
    client: httpx.AsyncClient,
    *,
    bot_token: str,
    chat_id: str,
    text: str,
    timeout: float,
    parse_mode: str | None = "Markdown",
) -> int | None:
    """Send one message; raises ChannelDeliveryError with the bot token scrubbed."""
    url = f"{TELEGRAM_API_BASE}/bot{bot_token}/sendMessage"
    payload: dict = {"chat_id": chat_id, "text": text, "disable_web_page_preview": False}
    if parse_mode:
        payload["parse_mode"] = parse_mode
    try:
        resp = await client.post(url, json=payload, timeout=timeout)
        data = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        raise ChannelDeliveryError(redact_token(f"{type(exc).__name__}: {exc}", bot_token)) from None

    if not isinstance(data, dict) or not data.get("ok"):
        description = data.get("description") if isinstance(data, dict) else None
        raise ChannelDeliveryError(
            redact_token(f"telegram_error: {description or 'not ok'}", bot_token),
            response_code=resp.status_code,
        )
    result = data.get("result")
    if isinstance(result, dict) and result.get("message_id") is not None:
        return int(result["message_id"])
    return None


async def send_telegram_message_chunked(
    client: httpx.AsyncClient,
    *,
    bot_token: str,
    chat_id: str,
    text: str,
    timeout: float,
    max_len: int = TELEGRAM_MAX_MESSAGE_LEN,
) -> list[int | None]:
    message_ids: list[int | None] = []
    for part in split_telegram_message(text, max_len=max_len):
        message_ids.append(
            await send_telegram_message(client, bot_token=bot_token, chat_id=chat_id, text=part, timeout=timeout)
        )
    return message_ids
