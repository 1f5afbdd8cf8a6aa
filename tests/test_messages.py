import pytest
import pytest_asyncio

from carchat.core.errors import CreationFailure, NotFoundFailure, ValidationFailure
from carchat.services.context import ChatContext
from carchat.services.conversations import ConversationManager
from carchat.services.messages import MessageStore

from conftest import BUYER, CAR, SELLER, STRANGER, CountingGateway, break_gateway


@pytest_asyncio.fixture
async def conversation(buyer_ctx):
    return await ConversationManager(buyer_ctx).get_or_create(CAR, BUYER, SELLER)


@pytest.mark.asyncio
async def test_receiver_is_the_other_participant(buyer_ctx, seller_ctx, conversation):
    from_buyer = await MessageStore(buyer_ctx).send(conversation.id, BUYER, "Harga nego?")
    from_seller = await MessageStore(seller_ctx).send(conversation.id, SELLER, "Bisa sedikit")

    assert from_buyer.receiver_id == SELLER
    assert from_seller.receiver_id == BUYER
    for m in (from_buyer, from_seller):
        assert m.receiver_id != m.sender_id
        assert {m.sender_id, m.receiver_id} == {BUYER, SELLER}


@pytest.mark.asyncio
async def test_new_message_is_unread_and_undelivered(buyer_ctx, conversation):
    m = await MessageStore(buyer_ctx).send(conversation.id, BUYER, "  Halo  ", client_id="tmp-1")

    assert m.content == "Halo"
    assert m.is_read is False
    assert m.is_delivered is False
    assert m.client_id == "tmp-1"
    assert m.conversation_id == conversation.id


@pytest.mark.asyncio
async def test_send_updates_the_inbox_snapshot(buyer_ctx, conversation):
    m = await MessageStore(buyer_ctx).send(conversation.id, BUYER, "Masih ada?")
    conv = await ConversationManager(buyer_ctx).get(conversation.id)

    assert conv.last_message == "Masih ada?"
    assert conv.last_message_at == m.created_at
    assert conv.last_message_at >= conversation.last_message_at


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["", "   ", "\n\t", None])
async def test_blank_content_is_rejected_without_gateway_calls(gateway, test_settings, conversation, content):
    counting = CountingGateway(gateway)
    store = MessageStore(ChatContext(counting, BUYER, test_settings))

    with pytest.raises(ValidationFailure) as exc:
        await store.send(conversation.id, BUYER, content)

    assert exc.value.detail == "empty_content"
    assert counting.calls == []


@pytest.mark.asyncio
async def test_outsider_cannot_send(stranger_ctx, conversation):
    with pytest.raises(ValidationFailure) as exc:
        await MessageStore(stranger_ctx).send(conversation.id, STRANGER, "Halo")
    assert exc.value.detail == "not_a_participant"
    assert await MessageStore(stranger_ctx).fetch_history(conversation.id) == []


@pytest.mark.asyncio
async def test_unknown_conversation(buyer_ctx):
    with pytest.raises(NotFoundFailure):
        await MessageStore(buyer_ctx).send("does-not-exist", BUYER, "Halo")


@pytest.mark.asyncio
async def test_insert_failure_is_raised_once(gateway, buyer_ctx, conversation):
    calls = break_gateway(gateway, "insert_message")

    with pytest.raises(CreationFailure) as exc:
        await MessageStore(buyer_ctx).send(conversation.id, BUYER, "Halo")

    assert exc.value.detail == "send_failed"
    assert exc.value.status_code == 502
    assert calls == ["insert_message"]


@pytest.mark.asyncio
async def test_history_is_oldest_first(buyer_ctx, seller_ctx, conversation):
    buyer = MessageStore(buyer_ctx)
    seller = MessageStore(seller_ctx)
    sent = [
        await buyer.send(conversation.id, BUYER, "satu"),
        await seller.send(conversation.id, SELLER, "dua"),
        await buyer.send(conversation.id, BUYER, "tiga"),
    ]

    history = await buyer.fetch_history(conversation.id)

    assert [m.id for m in history] == [m.id for m in sent]
    assert [m.content for m in history] == ["satu", "dua", "tiga"]
    stamps = [m.created_at for m in history]
    assert stamps == sorted(stamps)
