import threading

import pytest

from constants import (
    EVT_MESSAGE_DELIVERED,
    EVT_MESSAGE_RECEIVED,
    EVT_PARTNER_DISCONNECTED,
    EVT_PARTNER_FOUND,
    EVT_PARTNER_TYPING,
)
from matchmaking import ChatMode, Matchmaker
from relay import (
    ChatMessage,
    ChatRelay,
    EncryptedChat,
    SignalingBlob,
    TypingSignal,
    clean_chat_text,
    parse_chat_message,
    parse_signaling,
)


def _pair(mm, a, b):
    mm.connect(a)
    mm.connect(b)
    mm.request_match(a, ChatMode.TEXT)
    return mm.request_match(b, ChatMode.TEXT).room_id


class TestParsing:
    def test_text_and_legacy_message_field(self):
        assert parse_chat_message({"text": "hi"}) == ChatMessage(text="hi")
        assert parse_chat_message({"message": "hi", "clientMessageId": "m1"}) == ChatMessage("hi", "m1")

    def test_cipher_wins_over_text(self):
        env = parse_chat_message({"cipher": "EC1:abc", "text": "plain"})
        assert env == EncryptedChat(cipher="EC1:abc")

    @pytest.mark.parametrize("data", [None, "hi", {}, {"text": 5}, {"cipher": ""}, {"cipher": 12}])
    def test_malformed_chat(self, data):
        assert parse_chat_message(data) is None

    def test_client_message_id_is_capped(self):
        env = parse_chat_message({"text": "hi", "clientMessageId": "x" * 200})
        assert len(env.client_message_id) == 64

    def test_signaling_requires_payload_field(self):
        assert parse_signaling("offer", {"offer": {"sdp": "v=0"}, "roomId": "r"}).payload == {"sdp": "v=0"}
        assert parse_signaling("offer", {"answer": {}}) is None
        assert parse_signaling("offer", None) is None

    def test_signaling_without_payload_field(self):
        blob = parse_signaling("video-call-request", None)
        assert blob == SignalingBlob(kind="video-call-request")

    def test_signaling_rejects_non_string_room_id(self):
        assert parse_signaling("answer", {"answer": {}, "roomId": 7}) is None

    def test_accepted_false_is_a_valid_payload(self):
        blob = parse_signaling("video-call-response", {"accepted": False})
        assert blob.payload is False

    def test_unknown_signaling_kind(self):
        assert parse_signaling("file-transfer", {"file": 1}) is None

    @pytest.mark.parametrize("kind,field", [("offer", "offer"), ("answer", "answer"), ("ice-candidate", "candidate")])
    def test_negotiation_requires_room_id(self, kind, field):
        assert parse_signaling(kind, {field: {"x": 1}}) is None
        assert parse_signaling(kind, {field: {"x": 1}, "roomId": "room_a"}).room_id == "room_a"

    def test_key_exchange_room_id_optional(self):
        assert parse_signaling("exchange-key", {"publicKey": "pk"}).room_id is None

    def test_clean_chat_text(self):
        assert clean_chat_text("  <b>hello</b> <script>x</script> ", 100) == "hello x"
        assert clean_chat_text("abcdef", 3) == "abc"
        assert clean_chat_text("<i></i>   ", 100) == ""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("&lt;b&gt;bold&lt;/b&gt;", "bold"),
            ("&lt;img src=x onerror=alert(1)&gt;", ""),
            ("&amp;lt;script&amp;gt;x&amp;lt;/script&amp;gt;", "x"),
            ("2 &gt; 1", "2 1"),
            ("fish &amp; chips", "fish & chips"),
        ],
    )
    def test_entity_encoded_markup_is_stripped(self, raw, expected):
        cleaned = clean_chat_text(raw, 100)
        assert cleaned == expected
        assert "<" not in cleaned and ">" not in cleaned


class TestChatRelay:
    def test_unpaired_sender_is_dropped(self, relay, matchmaker, notifier):
        matchmaker.connect("a")
        assert relay.relay("a", ChatMessage("hi")) is False
        assert notifier.sent == []

    def test_chat_goes_to_partner_only(self, relay, matchmaker, notifier, clock):
        _pair(matchmaker, "a", "b")
        _pair(matchmaker, "c", "d")
        notifier.clear()

        assert relay.relay("a", ChatMessage("hello", "m1")) is True

        ts = int(clock.now * 1000)
        assert notifier.events_for("b") == [
            (EVT_MESSAGE_RECEIVED, {"text": "hello", "senderHandle": "a", "timestamp": ts, "clientMessageId": "m1"})
        ]
        assert notifier.events_for("a") == [
            (EVT_MESSAGE_DELIVERED, {"clientMessageId": "m1", "text": "hello", "timestamp": ts})
        ]
        assert notifier.events_for("c") == []
        assert notifier.events_for("d") == []

    def test_markup_is_stripped_and_length_capped(self, relay, matchmaker, notifier):
        _pair(matchmaker, "a", "b")
        notifier.clear()

        relay.relay("a", ChatMessage("<b>" + "x" * 80 + "</b>"))

        [(_, payload)] = notifier.events_for("b", EVT_MESSAGE_RECEIVED)
        assert payload["text"] == "x" * 50

    def test_empty_after_cleanup_is_dropped(self, relay, matchmaker, notifier):
        _pair(matchmaker, "a", "b")
        notifier.clear()

        assert relay.relay("a", ChatMessage("  <br/>  ")) is False
        assert notifier.sent == []

    def test_escaped_markup_never_reaches_partner(self, relay, matchmaker, notifier):
        _pair(matchmaker, "a", "b")
        notifier.clear()

        assert relay.relay("a", ChatMessage("&lt;img src=x onerror=alert(1)&gt;")) is False
        assert relay.relay("a", ChatMessage("hey &lt;b&gt;you&lt;/b&gt;")) is True

        [(_, payload)] = notifier.events_for("b", EVT_MESSAGE_RECEIVED)
        assert payload["text"] == "hey you"

    def test_partner_cannot_repair_while_message_is_sent(self, matchmaker, notifier, clock):
        _pair(matchmaker, "a", "b")
        matchmaker.connect("c")
        notifier.clear()
        rival = []

        def skip_and_repair():
            matchmaker.skip("b")
            matchmaker.request_match("c", ChatMode.TEXT)
            matchmaker.request_match("b", ChatMode.TEXT)

        def slow_clock():
            # Give another thread the chance to move b on mid-relay.
            if not rival:
                t = threading.Thread(target=skip_and_repair)
                rival.append(t)
                t.start()
                t.join(0.2)
            return clock.now

        relay = ChatRelay(matchmaker, notifier, {}, clock=slow_clock)
        assert relay.relay("a", ChatMessage("for b only")) is True
        rival[0].join(5)
        assert not rival[0].is_alive()

        b_events = [(e, p) for h, e, p in notifier.sent if h == "b"]
        kinds = [e for e, _ in b_events]
        assert kinds == [EVT_MESSAGE_RECEIVED, EVT_PARTNER_FOUND]
        assert b_events[1][1]["partnerHandle"] == "c"
        assert matchmaker.session_for("b").partner == "c"
        assert notifier.events_for("a", EVT_PARTNER_DISCONNECTED) == [(EVT_PARTNER_DISCONNECTED, None)]

        # a is alone now; nothing more reaches b.
        notifier.clear()
        assert relay.relay("a", ChatMessage("still there?")) is False
        assert notifier.events_for("b") == []

    def test_duplicate_within_window_suppressed(self, relay, matchmaker, notifier, clock):
        _pair(matchmaker, "a", "b")
        notifier.clear()

        assert relay.relay("a", ChatMessage("same")) is True
        clock.advance(1.0)
        assert relay.relay("a", ChatMessage("same")) is False
        assert relay.relay("a", ChatMessage("different")) is True
        clock.advance(2.5)
        assert relay.relay("a", ChatMessage("different")) is True

        texts = [p["text"] for _, p in notifier.events_for("b", EVT_MESSAGE_RECEIVED)]
        assert texts == ["same", "different", "different"]

    def test_cipher_is_forwarded_verbatim(self, relay, matchmaker, notifier):
        _pair(matchmaker, "a", "b")
        notifier.clear()

        assert relay.relay("a", EncryptedChat("EC1:<not markup>", "c1")) is True

        [(_, payload)] = notifier.events_for("b", EVT_MESSAGE_RECEIVED)
        assert payload["cipher"] == "EC1:<not markup>"
        assert payload["encrypted"] is True
        assert "text" not in payload

    def test_oversized_cipher_dropped(self, matchmaker, notifier, clock):
        relay = ChatRelay(matchmaker, notifier, {"max_cipher_length": 10}, clock=clock)
        _pair(matchmaker, "a", "b")
        notifier.clear()

        assert relay.relay("a", EncryptedChat("x" * 11)) is False
        assert notifier.sent == []

    def test_typing_forwarded_and_cleared_by_message(self, relay, matchmaker, notifier):
        _pair(matchmaker, "a", "b")
        notifier.clear()

        relay.relay("a", TypingSignal(active=True))
        assert relay.is_typing("a")
        relay.relay("a", ChatMessage("done"))

        assert [e for e, _ in notifier.events_for("b")] == [
            EVT_PARTNER_TYPING,
            EVT_PARTNER_TYPING,
            EVT_MESSAGE_RECEIVED,
        ]
        assert [p for _, p in notifier.events_for("b", EVT_PARTNER_TYPING)] == [True, False]
        assert not relay.is_typing("a")

    def test_typing_expires(self, relay, matchmaker, clock):
        _pair(matchmaker, "a", "b")
        relay.relay("a", TypingSignal(active=True))
        clock.advance(6)
        assert not relay.is_typing("a")

    def test_state_forgotten_on_skip(self, relay, matchmaker, notifier):
        _pair(matchmaker, "a", "b")
        relay.relay("a", TypingSignal(active=True))
        relay.relay("a", ChatMessage("hi"))
        relay.relay("a", TypingSignal(active=True))

        matchmaker.skip("a")
        assert not relay.is_typing("a")

        _pair(matchmaker, "a", "c")
        notifier.clear()
        # Not a duplicate: dedup state went away with the old session.
        assert relay.relay("a", ChatMessage("hi")) is True


class TestSignalingRelay:
    def test_offer_relayed_with_room_and_sender(self, relay, matchmaker, notifier):
        room = _pair(matchmaker, "a", "b")
        notifier.clear()

        assert relay.relay("a", SignalingBlob("offer", {"sdp": "v=0"}, room)) is True
        assert notifier.sent == [("b", "offer", {"senderHandle": "a", "roomId": room, "offer": {"sdp": "v=0"}})]

    def test_key_exchange_without_room_id_is_stamped(self, relay, matchmaker, notifier):
        room = _pair(matchmaker, "a", "b")
        notifier.clear()

        relay.relay("b", SignalingBlob("exchange-key", "pk-1"))
        assert notifier.sent == [("a", "exchange-key", {"senderHandle": "b", "roomId": room, "publicKey": "pk-1"})]

    @pytest.mark.parametrize("kind", ["offer", "answer", "ice-candidate"])
    def test_negotiation_without_room_id_dropped(self, relay, matchmaker, notifier, kind):
        _pair(matchmaker, "a", "b")
        notifier.clear()

        assert relay.relay("a", SignalingBlob(kind, {"sdp": "v=0"})) is False
        assert notifier.sent == []

    def test_room_id_mismatch_dropped(self, relay, matchmaker, notifier):
        _pair(matchmaker, "a", "b")
        notifier.clear()

        assert relay.relay("a", SignalingBlob("answer", {"sdp": "x"}, "room_other")) is False
        assert notifier.sent == []

    def test_call_request_has_no_payload_field(self, relay, matchmaker, notifier):
        room = _pair(matchmaker, "a", "b")
        notifier.clear()

        relay.relay("a", SignalingBlob("video-call-request"))
        assert notifier.sent == [("b", "video-call-request", {"senderHandle": "a", "roomId": room})]

    def test_isolation_survives_room_id_collision(self, notifier, clock):
        # Every pair gets the same room id; delivery must still follow the session table.
        mm = Matchmaker(notifier, room_id_factory=lambda: "room_fixed", clock=clock, debug_invariants=True)
        relay = ChatRelay(mm, notifier, {}, clock=clock)
        _pair(mm, "a", "b")
        _pair(mm, "c", "d")
        notifier.clear()

        relay.relay("a", ChatMessage("for b"))
        relay.relay("c", SignalingBlob("offer", {"sdp": "for d"}, "room_fixed"))

        assert [p["text"] for _, p in notifier.events_for("b", EVT_MESSAGE_RECEIVED)] == ["for b"]
        assert notifier.events_for("c", EVT_MESSAGE_RECEIVED) == []
        assert notifier.events_for("d", EVT_MESSAGE_RECEIVED) == []
        assert [p["offer"] for _, p in notifier.events_for("d", "offer")] == [{"sdp": "for d"}]
        assert notifier.events_for("a", "offer") == []
        assert notifier.events_for("b", "offer") == []
