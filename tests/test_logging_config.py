from structlog.contextvars import bind_contextvars, get_contextvars, unbind_contextvars

from advisory_engine.logging_config import bind_session_context, clear_session_context


def test_session_context_binds_and_clears_only_session_keys():
    bind_contextvars(request_id="req-1")
    try:
        bind_session_context(session_id="ses_1", user_id="user-1")
        assert get_contextvars()["session_id"] == "ses_1"
        assert get_contextvars()["user_id"] == "user-1"

        bind_session_context(session_id="ses_2")
        assert get_contextvars()["session_id"] == "ses_2"
        assert get_contextvars()["user_id"] == "user-1"

        clear_session_context()
        context = get_contextvars()
        assert "session_id" not in context
        assert "user_id" not in context
        assert context["request_id"] == "req-1"
    finally:
        unbind_contextvars("request_id", "session_id", "user_id")
