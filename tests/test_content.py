"""Tests for message content, its codec and group extraction."""

import json

import pytest

from sendlog.content import (
    Content,
    ContentDecodeError,
    DataMessage,
    GroupContext,
    GroupContextV2,
    decode_content,
    encode_content,
    extract_group_id,
)
from sendlog.groups import GroupIdV1, derive_group_id_v2


class TestCodec:
    def test_binary_fields_survive(self):
        """Arbitrary bytes (not valid UTF-8) are preserved exactly."""
        content = Content(
            data_message=DataMessage(
                body="hi",
                group_v2=GroupContextV2(master_key=bytes(range(256))[-32:], revision=3),
                profile_key=b"\xff\xfe\x00\x01",
            ),
            sender_key_distribution_message=b"\x80" * 10,
        )
        assert decode_content(encode_content(content)) == content

    def test_encoded_form_is_json_with_base64_bytes(self):
        content = Content(sender_key_distribution_message=b"\x00\x01")
        data = json.loads(encode_content(content))
        assert data == {"sender_key_distribution_message": "AAE="}

    def test_unset_fields_omitted(self):
        data = json.loads(encode_content(Content(data_message=DataMessage(body="x"))))
        assert data == {"data_message": {"body": "x", "is_view_once": False}}

    def test_unknown_fields_ignored(self):
        content = decode_content(b'{"data_message": {"body": "x"}, "story_message": {}}')
        assert content.data_message.body == "x"

    @pytest.mark.parametrize(
        "payload",
        [
            b"",
            b"not json",
            b"[1, 2]",
            b'{"data_message": "nope"}',
        ],
    )
    def test_invalid_payload(self, payload):
        with pytest.raises(ContentDecodeError):
            decode_content(payload)


class TestExtractGroupId:
    def test_no_data_message(self):
        assert extract_group_id(Content(typing_message={"action": "started"})) is None

    def test_direct_message(self):
        assert extract_group_id(Content(data_message=DataMessage(body="hi"))) is None

    def test_legacy_group(self):
        group_id = b"\x09" * 16
        content = Content(data_message=DataMessage(group=GroupContext(id=group_id)))
        assert extract_group_id(content) == GroupIdV1(group_id)

    def test_modern_group(self):
        key = b"\x03" * 32
        content = Content(data_message=DataMessage(group_v2=GroupContextV2(master_key=key)))
        assert extract_group_id(content) == derive_group_id_v2(key)

    def test_legacy_context_takes_precedence(self):
        content = Content(
            data_message=DataMessage(
                group=GroupContext(id=b"\x01" * 16),
                group_v2=GroupContextV2(master_key=b"\x02" * 32),
            )
        )
        assert isinstance(extract_group_id(content), GroupIdV1)

    def test_invalid_master_key_means_no_group(self, caplog):
        content = Content(data_message=DataMessage(group_v2=GroupContextV2(master_key=b"x")))
        assert extract_group_id(content) is None
        assert "Failed to parse group id" in caplog.text

    @pytest.mark.parametrize("length", [0, 10, 32])
    def test_invalid_legacy_id_means_no_group(self, length, caplog):
        content = Content(data_message=DataMessage(group=GroupContext(id=b"\x01" * length)))
        assert extract_group_id(content) is None
        assert "Failed to parse group id" in caplog.text
