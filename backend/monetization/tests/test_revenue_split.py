import pytest

from monetization.models import LiveSession, SessionFeaturedCreator, SessionGift, WalletTransaction
from monetization.services.errors import AuthorizationError, InsufficientBalance, NotFound, ValidationError
from monetization.services.ledger import get_balance
from monetization.services.metadata import GiftMetadata, TipMetadata
from monetization.services.revenue_split import (
    add_featured_creator,
    send_gift,
    send_tip,
    set_session_commission,
    split_tip_amount,
)


@pytest.mark.parametrize(
    "amount,percent,expected",
    [
        (100, 20, (20, 80)),
        (100, 0, (0, 100)),
        (100, 100, (100, 0)),
        (10, 33, (3, 7)),
        (1, 50, (0, 1)),
        (7, 99, (6, 1)),
    ],
)
def test_split_tip_amount_rounds_host_share_down(amount, percent, expected):
    host_amount, guest_amount = split_tip_amount(amount, percent)

    assert (host_amount, guest_amount) == expected
    assert host_amount + guest_amount == amount


@pytest.mark.django_db
def test_guest_tip_is_split_by_session_commission(host, guest, fan, live_session):
    add_featured_creator(session_id=live_session.pk, host=host, creator_id=guest.pk)

    result = send_tip(session_id=live_session.pk, sender=fan, amount=100, recipient_creator_id=guest.pk)

    assert get_balance(fan) == 400
    assert get_balance(host) == 20
    assert get_balance(guest) == 80
    assert result.host_credit.amount == 20
    assert result.guest_credit.amount == 80
    assert result.new_balance == 400
    assert result.sender_debit.related_transaction_id == result.guest_credit.pk
    assert SessionFeaturedCreator.objects.get(session=live_session, creator=guest).tips_received == 100

    metadata = result.guest_credit.typed_metadata
    assert isinstance(metadata, TipMetadata)
    assert metadata.role == "guest"
    assert metadata.commission_percent == 20


@pytest.mark.django_db
def test_tip_without_guest_goes_entirely_to_host(host, fan, live_session):
    result = send_tip(session_id=live_session.pk, sender=fan, amount=35)

    assert result.guest_credit is None
    assert result.host_credit.amount == 35
    assert get_balance(host) == 35
    assert get_balance(fan) == 465


@pytest.mark.django_db
def test_host_share_rounding_to_zero_skips_host_credit(host, guest, fan, live_session):
    set_session_commission(session_id=live_session.pk, host=host, percent=50)

    result = send_tip(session_id=live_session.pk, sender=fan, amount=1, recipient_creator_id=guest.pk)

    assert result.host_credit is None
    assert result.guest_credit.amount == 1
    assert get_balance(host) == 0


@pytest.mark.django_db
def test_same_inputs_produce_the_same_split(host, guest, fan, live_session):
    first = send_tip(session_id=live_session.pk, sender=fan, amount=57, recipient_creator_id=guest.pk)
    second = send_tip(session_id=live_session.pk, sender=fan, amount=57, recipient_creator_id=guest.pk,
                      idempotency_key="tip-determinism")

    assert first.host_credit.amount == second.host_credit.amount == 11
    assert first.guest_credit.amount == second.guest_credit.amount == 46


@pytest.mark.django_db
def test_replayed_tip_moves_coins_once(host, guest, fan, live_session):
    first = send_tip(
        session_id=live_session.pk,
        sender=fan,
        amount=100,
        recipient_creator_id=guest.pk,
        idempotency_key="tip-replay",
    )
    replay = send_tip(
        session_id=live_session.pk,
        sender=fan,
        amount=100,
        recipient_creator_id=guest.pk,
        idempotency_key="tip-replay",
    )

    assert first.created is True
    assert replay.created is False
    assert replay.sender_debit.pk == first.sender_debit.pk
    assert replay.guest_credit.pk == first.guest_credit.pk
    assert get_balance(fan) == 400
    assert get_balance(guest) == 80


@pytest.mark.django_db
def test_commission_change_applies_to_later_tips_only(host, guest, fan, live_session):
    before = send_tip(session_id=live_session.pk, sender=fan, amount=100, recipient_creator_id=guest.pk,
                      idempotency_key="tip-before")
    set_session_commission(session_id=live_session.pk, host=host, percent=50)
    after = send_tip(session_id=live_session.pk, sender=fan, amount=100, recipient_creator_id=guest.pk,
                     idempotency_key="tip-after")

    before.host_credit.refresh_from_db()
    assert before.host_credit.amount == 20
    assert after.host_credit.amount == 50
    assert get_balance(host) == 70
    assert get_balance(guest) == 130


@pytest.mark.django_db
def test_only_host_can_change_commission(host, guest, live_session):
    with pytest.raises(AuthorizationError):
        set_session_commission(session_id=live_session.pk, host=guest, percent=10)

    with pytest.raises(ValidationError):
        set_session_commission(session_id=live_session.pk, host=host, percent=101)

    live_session.refresh_from_db()
    assert live_session.featured_creator_commission == 20


@pytest.mark.django_db
def test_tip_rejected_when_sender_cannot_pay(host, guest, make_user, live_session):
    broke = make_user(coins=10)

    with pytest.raises(InsufficientBalance):
        send_tip(session_id=live_session.pk, sender=broke, amount=11, recipient_creator_id=guest.pk)

    assert get_balance(broke) == 10
    assert get_balance(guest) == 0
    assert get_balance(host) == 0


@pytest.mark.django_db
def test_tip_rules(host, fan, live_session):
    with pytest.raises(ValidationError):
        send_tip(session_id=live_session.pk, sender=host, amount=10)
    with pytest.raises(ValidationError):
        send_tip(session_id=live_session.pk, sender=fan, amount=0)
    with pytest.raises(NotFound):
        send_tip(session_id=live_session.pk, sender=fan, amount=5, recipient_creator_id=987654)

    LiveSession.objects.filter(pk=live_session.pk).update(status=LiveSession.Status.ENDED)
    with pytest.raises(ValidationError):
        send_tip(session_id=live_session.pk, sender=fan, amount=5)


@pytest.mark.django_db
def test_guest_share_requires_featured_creator(host, fan, make_user, live_session, gift):
    outsider = make_user("outsider", is_creator=True)

    with pytest.raises(ValidationError):
        send_tip(session_id=live_session.pk, sender=fan, amount=50, recipient_creator_id=outsider.pk)
    with pytest.raises(ValidationError):
        send_gift(session_id=live_session.pk, sender=fan, gift_id=gift.pk, recipient_creator_id=outsider.pk)
    assert get_balance(fan) == 500
    assert get_balance(outsider) == 0

    add_featured_creator(session_id=live_session.pk, host=host, creator_id=outsider.pk)
    send_tip(session_id=live_session.pk, sender=fan, amount=50, recipient_creator_id=outsider.pk)

    assert get_balance(outsider) == 40
    assert get_balance(host) == 10


@pytest.mark.django_db
def test_deactivated_featured_creator_cannot_receive(guest, fan, live_session):
    SessionFeaturedCreator.objects.filter(session=live_session, creator=guest).update(is_active=False)

    with pytest.raises(ValidationError):
        send_tip(session_id=live_session.pk, sender=fan, amount=10, recipient_creator_id=guest.pk)

    assert get_balance(fan) == 500


@pytest.mark.django_db
def test_gift_to_guest_credits_full_cost(host, guest, fan, live_session, gift):
    add_featured_creator(session_id=live_session.pk, host=host, creator_id=guest.pk)

    result = send_gift(
        session_id=live_session.pk,
        sender=fan,
        gift_id=gift.pk,
        quantity=3,
        recipient_creator_id=guest.pk,
    )

    assert result.sender_debit.amount == -120
    assert result.recipient_credit.amount == 120
    assert result.recipient_credit.type == WalletTransaction.TransactionType.GIFT
    assert get_balance(guest) == 120
    assert get_balance(host) == 0
    assert get_balance(fan) == 380

    session_gift = SessionGift.objects.get(pk=result.session_gift.pk)
    assert session_gift.total_coins == 120
    assert session_gift.recipient_id == guest.pk

    live_session.refresh_from_db()
    assert live_session.total_gifts_received == 120
    featured = SessionFeaturedCreator.objects.get(session=live_session, creator=guest)
    assert featured.gift_count == 3
    assert featured.tips_received == 120
    assert isinstance(result.sender_debit.typed_metadata, GiftMetadata)


@pytest.mark.django_db
def test_gift_without_guest_goes_to_host_and_replays(host, fan, live_session, gift):
    first = send_gift(session_id=live_session.pk, sender=fan, gift_id=gift.pk, idempotency_key="gift-1")
    replay = send_gift(session_id=live_session.pk, sender=fan, gift_id=gift.pk, idempotency_key="gift-1")

    assert replay.created is False
    assert replay.session_gift.pk == first.session_gift.pk
    assert get_balance(host) == 40
    assert get_balance(fan) == 460


@pytest.mark.django_db
def test_inactive_gift_is_not_found(fan, live_session, gift):
    gift.is_active = False
    gift.save(update_fields=["is_active"])

    with pytest.raises(NotFound):
        send_gift(session_id=live_session.pk, sender=fan, gift_id=gift.pk)


@pytest.mark.django_db
def test_featured_guest_tip_scenario(host, guest, make_user, live_session):
    sender = make_user("viewer", coins=100)

    send_tip(session_id=live_session.pk, sender=sender, amount=100, recipient_creator_id=guest.pk)

    assert get_balance(guest) == 80
    assert get_balance(host) == 20
    assert get_balance(sender) == 0
