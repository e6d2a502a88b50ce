"""Tests for lane derivation and the key schema."""

from unittest.mock import patch

import pytest

from laneq.config import Settings
from laneq.lane import MAX_LANE_LENGTH, QueueKeys, current_lane, sanitize_lane


class TestCurrentLane:
    """Tests for current_lane()."""

    def test_dev_uses_hostname(self) -> None:
        """Development processes get a lane per machine."""
        settings = Settings(env="dev", lane=None)

        with patch("laneq.lane.socket.gethostname", return_value="alice-laptop"):
            assert current_lane(settings) == "alice-laptop"

    def test_deployed_uses_environment(self) -> None:
        """Deployed processes share the environment's lane."""
        settings = Settings(env="production", lane=None)

        with patch("laneq.lane.socket.gethostname", return_value="pod-7f9c"):
            assert current_lane(settings) == "production"

    def test_explicit_lane_wins(self) -> None:
        """LANEQ_LANE overrides both rules."""
        assert current_lane(Settings(env="dev", lane="review-42")) == "review-42"


class TestSanitizeLane:
    """Tests for sanitize_lane()."""

    def test_strips_key_separators(self) -> None:
        """Colons, braces and whitespace cannot break the key schema."""
        assert sanitize_lane("my host:{1}") == "my-host-1"

    def test_truncates(self) -> None:
        """Lanes are bounded in length."""
        assert len(sanitize_lane("x" * 200)) == MAX_LANE_LENGTH

    def test_rejects_empty(self) -> None:
        """Nothing usable left is an error."""
        with pytest.raises(ValueError):
            sanitize_lane(" :{} ")


class TestQueueKeys:
    """Tests for QueueKeys."""

    def test_key_format(self) -> None:
        """Keys are prefix:lane:suffix."""
        keys = QueueKeys("production:{mq}", "production")

        assert keys.wait == "production:{mq}:production:wait"
        assert keys.job("abc") == "production:{mq}:production:job:abc"
        assert keys.cron_fire("purge", 1000) == "production:{mq}:production:fire:purge:1000"

    def test_default_prefix(self) -> None:
        """The default prefix is the environment plus a hash tag."""
        keys = QueueKeys.for_settings(Settings(env="staging", namespace=None, lane=None))

        assert keys.prefix == "staging:{mq}"
        assert keys.lane == "staging"

    def test_lanes_do_not_share_keys(self) -> None:
        """Two lanes never produce the same key."""
        a = QueueKeys("dev:{mq}", "alice")
        b = QueueKeys("dev:{mq}", "bob")

        assert {a.wait, a.active, a.delayed}.isdisjoint({b.wait, b.active, b.delayed})
