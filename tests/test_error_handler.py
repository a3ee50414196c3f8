from datetime import datetime, timedelta, timezone

from error_handler import ErrorHandler


def test_owner_is_notified_once_per_cooldown():
    handler = ErrorHandler(bot=None, owner_id=1, notification_cooldown=300)
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)

    assert handler.should_notify("KeyError", start)
    assert not handler.should_notify("KeyError", start + timedelta(seconds=300))
    assert handler.should_notify("ValueError", start)
    assert handler.should_notify("KeyError", start + timedelta(seconds=301))
    assert handler.error_counts == {"KeyError": 3, "ValueError": 1}
