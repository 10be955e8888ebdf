"""Tests for the retry policy."""

import socket
from unittest.mock import Mock

import pytest

from pyftpush.exceptions import (
    FtpCapabilityError,
    FtpCommandError,
    FtpConnectionLostError,
    PoolError,
)
from pyftpush.sync.retry import (
    RetryDecision,
    RetryPolicy,
    classify_failure,
    classify_probe_failure,
)


class TestClassifyFailure:
    """Tests for failure classification."""

    @pytest.mark.parametrize(
        "error, expected",
        [
            (FtpCommandError("530", "Not logged in"), RetryDecision.RETRY_RECONNECT),
            (FtpCommandError("421", "Timeout"), RetryDecision.RETRY_RECONNECT),
            (FtpCommandError("450", "Busy"), RetryDecision.RETRY),
            (FtpCommandError("550", "Locked"), RetryDecision.RETRY),
            (FtpCommandError("553", "Bad name"), RetryDecision.FATAL),
            (TimeoutError("timed out"), RetryDecision.RETRY_RECONNECT),
            (socket.timeout("timed out"), RetryDecision.RETRY_RECONNECT),
            (FtpConnectionLostError("eof"), RetryDecision.RETRY_RECONNECT),
            (PoolError("double release"), RetryDecision.FATAL),
            (FtpCapabilityError("no MLST"), RetryDecision.FATAL),
            (KeyError("x"), RetryDecision.FATAL),
        ],
    )
    def test_classification(self, error, expected):
        """Test each failure maps to the expected decision."""
        assert classify_failure(error) is expected

    @pytest.mark.parametrize(
        "reply, expected",
        [
            ("421-Too many connections\n421 Closing", RetryDecision.RETRY_RECONNECT),
            ("530-Login incorrect\n530 Bye", RetryDecision.RETRY_RECONNECT),
            ("450-File busy\n450 Try later", RetryDecision.RETRY),
        ],
    )
    def test_multiline_replies(self, reply, expected):
        """Test multi-line server replies are classified by their status code."""
        assert classify_failure(FtpCommandError.from_reply(reply)) is expected

    def test_probe_treats_not_found_as_final(self):
        """Test the probe classifier does not retry 550."""
        assert classify_probe_failure(FtpCommandError("550")) is RetryDecision.FATAL
        assert (
            classify_probe_failure(FtpCommandError("421"))
            is RetryDecision.RETRY_RECONNECT
        )


class TestRetryPolicy:
    """Tests for RetryPolicy.call."""

    @pytest.fixture
    def session(self):
        """Create a connected mock session."""
        session = Mock()
        session.is_connected.return_value = True
        session.working_directory = "/site"
        return session

    @pytest.fixture
    def policy(self):
        """Create a policy that never sleeps."""
        return RetryPolicy(sleep=Mock())

    def test_returns_result(self, policy, session):
        """Test a successful operation runs once."""
        operation = Mock(return_value=42)

        assert policy.call(session, "/site", operation) == 42
        operation.assert_called_once_with(session)
        session.connect.assert_not_called()
        session.change_working_directory.assert_not_called()

    def test_changes_directory_when_not_positioned(self, policy, session):
        """Test the working directory is established before the operation."""
        session.working_directory = "/other"
        policy.call(session, "/site/sub", Mock())
        session.change_working_directory.assert_called_once_with("/site/sub")

    def test_no_directory_change_when_not_required(self, policy, session):
        """Test operations without a working directory do not move the session."""
        session.working_directory = None
        policy.call(session, None, Mock())
        session.change_working_directory.assert_not_called()

    def test_connects_disconnected_session(self, policy, session):
        """Test a session that is not connected is connected first."""
        session.is_connected.return_value = False
        policy.call(session, None, Mock())
        session.connect.assert_called_once()

    def test_retryable_failure_exhausts_exact_budget(self, session):
        """Test an always-failing operation is attempted exactly max_attempts times."""
        sleep = Mock()
        policy = RetryPolicy(max_attempts=5, sleep=sleep)
        error = FtpCommandError("450", "Busy")
        operation = Mock(side_effect=error)

        with pytest.raises(FtpCommandError) as exc_info:
            policy.call(session, "/site", operation)

        assert exc_info.value is error
        assert operation.call_count == 5
        assert [c.args[0] for c in sleep.call_args_list] == [0.5, 1.0, 1.0, 1.0]
        session.connect.assert_not_called()

    def test_default_budget_is_thirty(self, policy, session):
        """Test the default attempt budget."""
        operation = Mock(side_effect=FtpCommandError("550", "Locked"))
        with pytest.raises(FtpCommandError):
            policy.call(session, None, operation)
        assert operation.call_count == 30

    def test_per_call_budget_override(self, policy, session):
        """Test max_attempts can be overridden per call."""
        operation = Mock(side_effect=TimeoutError())
        with pytest.raises(TimeoutError):
            policy.call(session, None, operation, max_attempts=2)
        assert operation.call_count == 2

    def test_fatal_failure_is_not_retried(self, policy, session):
        """Test fatal failures propagate after one attempt."""
        operation = Mock(side_effect=FtpCommandError("553", "Not allowed"))

        with pytest.raises(FtpCommandError, match="553"):
            policy.call(session, "/site", operation)
        operation.assert_called_once()
        policy._sleep.assert_not_called()

    def test_reconnect_restores_working_directory(self, policy, session):
        """Test a stale session is reconnected and moved back before retrying."""

        def connect():
            session.working_directory = None

        def change(path):
            session.working_directory = path

        session.connect.side_effect = connect
        session.change_working_directory.side_effect = change
        operation = Mock(side_effect=[FtpCommandError("530", "Not logged in"), "ok"])

        assert policy.call(session, "/site", operation) == "ok"
        session.connect.assert_called_once()
        session.change_working_directory.assert_called_once_with("/site")

    def test_plain_retry_does_not_reconnect(self, policy, session):
        """Test temporary refusals reuse the same session."""
        operation = Mock(side_effect=[FtpCommandError("450", "Busy"), "ok"])
        assert policy.call(session, "/site", operation) == "ok"
        session.connect.assert_not_called()

    def test_failure_while_reconnecting_is_retried(self, policy, session):
        """Test a failing reconnect consumes an attempt and is retried."""
        session.connect.side_effect = [FtpConnectionLostError("refused"), None]
        operation = Mock(side_effect=[TimeoutError(), "ok"])

        # timeout -> reconnect fails -> reconnect succeeds -> ok
        assert policy.call(session, None, operation) == "ok"
        assert session.connect.call_count == 2
        assert operation.call_count == 2

    def test_custom_classifier(self, policy, session):
        """Test the probe classifier makes "not found" final."""
        operation = Mock(side_effect=FtpCommandError("550", "No such directory"))
        with pytest.raises(FtpCommandError):
            policy.call(session, None, operation, classify=classify_probe_failure)
        operation.assert_called_once()

    def test_invalid_budget(self):
        """Test the policy needs at least one attempt."""
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
