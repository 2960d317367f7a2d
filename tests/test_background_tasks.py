from datetime import timedelta

from KoriBackend.background_tasks.archive import archive_old_chats
from KoriBackend.models.chat_models import Chat, ChatStatus
from KoriBackend.models.columns import utcnow


def test_archive_task_sweeps_old_active_chats(db, make_user):
    user = make_user()
    old = Chat(user_id=user.id, title="Old", created_at=utcnow() - timedelta(days=60))
    fresh = Chat(user_id=user.id, title="Fresh")
    gone = Chat(user_id=user.id, title="Gone", status=ChatStatus.DELETED.value, created_at=utcnow() - timedelta(days=60))
    db.add_all([old, fresh, gone])
    db.commit()

    result = archive_old_chats(days=30)

    assert result == {"archived": 1}
    db.expire_all()
    assert db.get(Chat, old.id).status == ChatStatus.ARCHIVED.value
    assert db.get(Chat, fresh.id).status == ChatStatus.ACTIVE.value
    assert db.get(Chat, gone.id).status == ChatStatus.DELETED.value
