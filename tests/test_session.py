import asyncio

import pytest
import pytest_asyncio

from carchat.core.errors import CreationFailure, LookupFailure, ValidationFailure
from carchat.gateway.realtime import SubscriptionState
from carchat.services.blocking import BlockList
from carchat.services.context import ChatContext
from carchat.services.conversations import ConversationManager
from carchat.services.messages import MessageStore
from carchat.services.presence import PresenceTracker
from carchat.services.session import ChatSession

from conftest import BUYER, CAR, SELLER, CountingGateway, break_gateway, eventually, hold_gateway


@pytest_asyncio.fixture
async def conversation(buyer_ctx):
    return await ConversationManager(buyer_ctx).get_or_create(CAR, BUYER, SELLER)


@pytest.mark.asyncio
async def test_open_loads_history_and_marks_read(buyer_ctx, seller_ctx, conversation):
    await MessageStore(seller_ctx).send(conversation.id, SELLER, "Selamat siang")

    async with ChatSession(buyer_ctx, conversation.id) as session:
        assert [m.content for m in session.history] == ["Selamat siang"]
        assert session.counterpart_id == SELLER
        assert session.counterpart.full_name == "Sari Wijaya"
        assert session.reconciler.live
        assert session.focused

    assert await ConversationManager(buyer_ctx).unread_count(conversation.id, BUYER) == 0


@pytest.mark.asyncio
async def test_sent_message_goes_delivered_then_read(buyer_ctx, seller_ctx, conversation):
    buyer = await ChatSession(buyer_ctx, conversation.id).open()
    seller = await ChatSession(seller_ctx, conversation.id).open()
    try:
        seller.on_blur()
        sent = await buyer.send("Apakah mobilnya masih ada?")

        [mine] = buyer.history
        assert mine.id == sent.id
        assert buyer.messages.pending == []
        assert buyer.status_of(mine) == "delivered"
        assert [m.id for m in seller.history] == [sent.id]
        assert seller.status_of(seller.history[0]) is None

        seller.on_focus()
        await seller.drain()

        [mine] = buyer.history
        assert mine.is_read is True
        assert buyer.status_of(mine) == "read"
        assert await ConversationManager(seller_ctx).unread_count(conversation.id, SELLER) == 0
    finally:
        await seller.close()
        await buyer.close()


@pytest.mark.asyncio
async def test_focused_receiver_reads_inbound_at_once(buyer_ctx, seller_ctx, conversation):
    async with ChatSession(buyer_ctx, conversation.id) as buyer, ChatSession(seller_ctx, conversation.id) as seller:
        await buyer.send("Halo")
        await seller.drain()

        [m] = buyer.history
        assert buyer.status_of(m) == "read"


@pytest.mark.asyncio
async def test_message_to_closed_screen_stays_sent(buyer_ctx, conversation):
    async with ChatSession(buyer_ctx, conversation.id) as buyer:
        sent = await buyer.send("Halo")
        assert buyer.status_of(buyer.history[0]) == "sent"
        assert buyer.time_of(sent)[2] == ":"
        assert sent.is_delivered is False


@pytest.mark.asyncio
async def test_send_uses_and_clears_the_draft(buyer_ctx, conversation):
    async with ChatSession(buyer_ctx, conversation.id) as session:
        session.draft = "  Boleh lihat unitnya?  "
        sent = await session.send()

        assert sent.content == "Boleh lihat unitnya?"
        assert session.draft == ""
        assert not session.sending


@pytest.mark.asyncio
async def test_failed_send_restores_the_draft(gateway, buyer_ctx, conversation):
    async with ChatSession(buyer_ctx, conversation.id) as session:
        break_gateway(gateway, "insert_message")
        session.draft = "Harga pas berapa?"

        with pytest.raises(CreationFailure):
            await session.send()

        assert session.draft == "Harga pas berapa?"
        assert len(session.messages) == 0
        assert not session.sending


@pytest.mark.asyncio
async def test_blank_send_makes_no_calls(gateway, test_settings, conversation):
    counting = CountingGateway(gateway)
    async with ChatSession(ChatContext(counting, BUYER, test_settings), conversation.id) as session:
        before = list(counting.calls)
        with pytest.raises(ValidationFailure) as exc:
            await session.send("   ")

        assert exc.value.detail == "empty_content"
        assert counting.calls[len(before):] == []
        assert len(session.messages) == 0


@pytest.mark.asyncio
async def test_blocked_pair_cannot_send(buyer_ctx, seller_ctx, conversation):
    async with ChatSession(buyer_ctx, conversation.id) as session:
        await BlockList(seller_ctx).block(BUYER)

        # the block reaches the open session through its subscription
        assert session.block_status.blocked is True
        assert session.block_status.blocked_by == SELLER
        with pytest.raises(ValidationFailure) as exc:
            await session.send("Halo?")
        assert exc.value.detail == "blocked"

        await BlockList(seller_ctx).unblock(BUYER)
        assert session.block_status.blocked is False
        await session.send("Halo?")


@pytest.mark.asyncio
async def test_counterpart_presence_is_followed(buyer_ctx, seller_ctx, conversation):
    async with ChatSession(buyer_ctx, conversation.id) as buyer:
        assert buyer.counterpart_online is False
        async with ChatSession(seller_ctx, conversation.id):
            # the first heartbeat of the seller reaches the buyer
            await eventually(lambda: buyer.counterpart_online)
        assert buyer.counterpart_online is False


@pytest.mark.asyncio
async def test_background_and_foreground(buyer_ctx, seller_ctx, conversation):
    async with ChatSession(buyer_ctx, conversation.id) as buyer, ChatSession(seller_ctx, conversation.id) as seller:
        await seller.on_app_state("background")
        assert buyer.counterpart_online is False

        await seller.on_app_state("active")
        await seller.drain()
        assert seller.presence.running


@pytest.mark.asyncio
async def test_clear_empties_the_list(buyer_ctx, conversation):
    async with ChatSession(buyer_ctx, conversation.id) as session:
        await session.send("satu")
        await session.send("dua")

        assert await session.clear() == 2
        assert len(session.messages) == 0


@pytest.mark.asyncio
async def test_close_releases_every_subscription(buyer_ctx, conversation, feed):
    session = await ChatSession(buyer_ctx, conversation.id).open()
    assert len(feed) == 4

    await session.close()
    await session.close()

    assert len(feed) == 0
    assert session.reconciler.state == SubscriptionState.CLOSED
    assert not session.presence.running
    with pytest.raises(ValidationFailure) as exc:
        await session.send("Halo")
    assert exc.value.detail == "session_closed"


@pytest.mark.asyncio
async def test_failed_open_releases_what_it_acquired(gateway, buyer_ctx, conversation, feed):
    break_gateway(gateway, "list_messages")
    session = ChatSession(buyer_ctx, conversation.id)

    with pytest.raises(LookupFailure):
        await session.open()

    assert session.closed
    assert len(feed) == 0


@pytest.mark.asyncio
async def test_outsider_cannot_open(stranger_ctx, conversation, feed):
    session = ChatSession(stranger_ctx, conversation.id)
    with pytest.raises(ValidationFailure) as exc:
        await session.open()
    assert exc.value.detail == "not_a_participant"
    assert session.counterpart_id is None
    assert len(feed) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "step", ["update_messages_read_flag", "list_messages", "find_block", "fetch_presence"]
)
async def test_close_during_open_releases_late_resources(gateway, buyer_ctx, conversation, feed, step):
    reached, release = hold_gateway(gateway, step)
    session = ChatSession(buyer_ctx, conversation.id)

    task = asyncio.create_task(session.open())
    await reached.wait()
    await session.close()
    release.set()
    await task

    assert session.closed
    assert len(feed) == 0
    assert session.counterpart_presence is None
    assert not session.presence.running
    assert (await PresenceTracker(buyer_ctx).fetch(BUYER)).is_online is False


@pytest.mark.asyncio
async def test_app_state_after_close_keeps_heartbeat_stopped(buyer_ctx, conversation):
    session = await ChatSession(buyer_ctx, conversation.id).open()
    await session.close()

    await session.on_app_state("active")
    session.on_focus()

    assert not session.presence.running
    assert not session.focused
    assert (await PresenceTracker(buyer_ctx).fetch(BUYER)).is_online is False


@pytest.mark.asyncio
async def test_open_survives_failed_mark_read(gateway, buyer_ctx, seller_ctx, conversation):
    await MessageStore(seller_ctx).send(conversation.id, SELLER, "Selamat pagi")
    calls = break_gateway(gateway, "update_messages_read_flag")

    async with ChatSession(buyer_ctx, conversation.id) as session:
        assert calls == ["update_messages_read_flag"]
        assert [m.content for m in session.history] == ["Selamat pagi"]
        assert session.reconciler.live
        assert session.focused


@pytest.mark.asyncio
async def test_open_survives_failed_block_check(gateway, buyer_ctx, seller_ctx, conversation):
    break_gateway(gateway, "find_block")

    async with ChatSession(buyer_ctx, conversation.id) as session:
        assert session.block_status.blocked is False
        assert session.counterpart_presence is not None
        sent = await session.send("Halo")
        assert session.history[-1].id == sent.id
