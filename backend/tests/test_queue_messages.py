from datetime import datetime, timedelta, timezone

from glovebrand.db.repositories.queue_messages import DEAD_LETTER_REASON_MAX_DELIVERY, QueueMessagesRepository

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_received_message_is_hidden_until_visibility_timeout(queue):
    queue.send({"job_id": "job-1"}, now=NOW)

    (message,) = queue.receive(now=NOW)
    assert message.body == {"job_id": "job-1"}
    assert message.delivery_count == 1
    assert queue.receive(now=NOW + timedelta(seconds=10)) == []

    (again,) = queue.receive(now=NOW + timedelta(seconds=301))
    assert again.id == message.id
    assert again.delivery_count == 2


def test_complete_removes_message(queue):
    queue.send({"job_id": "job-1"}, now=NOW)
    (message,) = queue.receive(now=NOW)
    assert queue.complete(message.id)
    assert queue.depth() == {"active": 0, "dead_letter": 0}
    assert not queue.complete(message.id)


def test_abandon_makes_message_visible_again(queue):
    queue.send({"job_id": "job-1"}, now=NOW)
    (message,) = queue.receive(now=NOW)
    queue.abandon(message.id, now=NOW + timedelta(seconds=1))
    (again,) = queue.receive(now=NOW + timedelta(seconds=1))
    assert again.id == message.id


def test_messages_delivered_oldest_first(queue):
    queue.send({"job_id": "second"}, now=NOW + timedelta(seconds=5))
    queue.send({"job_id": "first"}, now=NOW)
    received = queue.receive(max_messages=10, now=NOW + timedelta(seconds=10))
    assert [m.body["job_id"] for m in received] == ["first", "second"]


def test_dead_letter_after_max_deliveries(queue):
    queue.send({"job_id": "job-1"}, now=NOW)
    moment = NOW
    for _ in range(queue.max_delivery_count):
        assert len(queue.receive(now=moment)) == 1
        moment += timedelta(minutes=10)

    assert queue.receive(now=moment) == []
    assert queue.depth() == {"active": 0, "dead_letter": 1}
    (dead,) = queue.peek_dead_letters()
    assert dead.dead_letter_reason == DEAD_LETTER_REASON_MAX_DELIVERY


def test_requeue_dead_letters_resets_delivery_count(queue):
    queue.send({"job_id": "job-1"}, now=NOW)
    (message,) = queue.receive(now=NOW)
    queue.dead_letter(message.id, reason="poison", now=NOW)

    (moved,) = queue.requeue_dead_letters(5, now=NOW + timedelta(minutes=1))
    assert moved.delivery_count == 0
    assert not moved.dead_lettered
    assert queue.depth() == {"active": 1, "dead_letter": 0}


def test_queues_are_isolated_by_name(db_session, queue):
    other = QueueMessagesRepository(db_session, queue_name="glovejobs-other")
    other.send({"job_id": "elsewhere"}, now=NOW)
    assert queue.receive(now=NOW) == []
    assert queue.depth() == {"active": 0, "dead_letter": 0}
    assert other.depth() == {"active": 1, "dead_letter": 0}
