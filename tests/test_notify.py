import json

import httpx
import pytest

from giftcodes.notify import NullNotifier, TelegramNotifier, build_text

CONFIRM = "https://shop.example.com/api/telegram-confirm?token=t&action=confirm"
REJECT = "https://shop.example.com/api/telegram-confirm?token=t&action=reject"
PHOTO = "https://cdn.example.com/proofs/buyer-1/1.jpg"


class FakeTelegram:
    """Answers Bot API calls with canned ``ok`` flags, one per call."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1]
        self.calls.append((method, json.loads(request.content)))
        ok = self.answers.pop(0) if self.answers else True
        if not ok:
            return httpx.Response(400, json={"ok": False,
                                             "description": "bad photo"})
        return httpx.Response(200, json={"ok": True, "result": {}})


def notifier_for(handler, token="123:abc", chat="-100"):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TelegramNotifier(http, token, chat,
                            api_base="https://telegram.test")


async def test_photo_alert_with_inline_buttons():
    api = FakeTelegram(True)
    n = notifier_for(api)

    assert await n.notify("hello", image_url=PHOTO, confirm_url=CONFIRM,
                          reject_url=REJECT) is True

    [(method, body)] = api.calls
    assert method == "sendPhoto"
    assert body["chat_id"] == "-100"
    assert body["parse_mode"] == "Markdown"
    assert body["photo"] == PHOTO
    assert CONFIRM in body["caption"] and REJECT in body["caption"]
    keyboard = json.loads(body["reply_markup"])["inline_keyboard"][0]
    assert [b["url"] for b in keyboard] == [CONFIRM, REJECT]


async def test_text_alert_without_photo():
    api = FakeTelegram(True)
    n = notifier_for(api)

    assert await n.notify("hello") is True

    [(method, body)] = api.calls
    assert method == "sendMessage"
    assert body["text"] == "hello"
    assert "reply_markup" not in body


async def test_localhost_links_get_no_buttons():
    api = FakeTelegram(True)
    n = notifier_for(api)
    local = "http://localhost:8000/api/telegram-confirm?token=t&action=confirm"

    await n.notify("hello", confirm_url=local, reject_url=local)

    [(_, body)] = api.calls
    assert "reply_markup" not in body
    assert local in body["text"]


async def test_failed_photo_retries_as_text_once():
    api = FakeTelegram(False, True)
    n = notifier_for(api)

    assert await n.notify("hello", image_url=PHOTO, confirm_url=CONFIRM,
                          reject_url=REJECT) is True

    assert [m for m, _ in api.calls] == ["sendPhoto", "sendMessage"]
    retry = api.calls[1][1]
    assert "reply_markup" not in retry
    assert "photo" not in retry
    assert retry["text"].endswith(f"📸 *View proof:*\n{PHOTO}")
    assert CONFIRM in retry["text"]


async def test_both_attempts_failing_returns_false():
    api = FakeTelegram(False, False)
    n = notifier_for(api)

    assert await n.notify("hello", image_url=PHOTO) is False
    assert len(api.calls) == 2


async def test_network_error_is_not_raised():
    def boom(request):
        raise httpx.ConnectError("no route to host", request=request)

    n = notifier_for(boom)
    assert await n.notify("hello", image_url=PHOTO) is False


@pytest.mark.parametrize("token,chat", [("", "-100"), ("123:abc", "")])
async def test_missing_configuration_skips_delivery(token, chat):
    api = FakeTelegram()
    n = notifier_for(api, token=token, chat=chat)

    assert await n.notify("hello") is False
    assert api.calls == []


async def test_null_notifier_reports_not_delivered():
    assert await NullNotifier().notify("hello") is False


def test_build_text_needs_both_links():
    assert build_text("hi", CONFIRM, None) == "hi"
    text = build_text("hi", CONFIRM, REJECT)
    assert text.startswith("hi\n\n")
    assert text.index(CONFIRM) < text.index(REJECT)
