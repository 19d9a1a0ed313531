"""Tests for crawl frontier bookkeeping."""

from rendercrawl.crawler.frontier import Frontier
from rendercrawl.crawler.links import LinkPolicy

TARGET = "https://docs.example.com/api"


def _assert_exclusive(frontier: Frontier) -> None:
    queued = set(frontier.queued_urls())
    in_flight = set(frontier.in_flight)
    completed = frontier.completed
    assert not queued & in_flight
    assert not queued & completed
    assert not in_flight & completed


class TestEnqueue:
    """Tests for Frontier.enqueue."""

    def test_canonicalizes_and_dedupes(self) -> None:
        """Test variants of one URL are queued once."""
        frontier = Frontier([TARGET])

        assert frontier.enqueue("https://docs.example.com/api/intro#frag") is True
        assert frontier.enqueue("https://DOCS.example.com/api/intro/") is False
        assert frontier.queued_urls() == ["https://docs.example.com/api/intro"]

    def test_rejects_unparseable(self) -> None:
        """Test invalid URLs are ignored."""
        frontier = Frontier([TARGET])
        assert frontier.enqueue("not a url") is False
        assert frontier.queue_size == 0

    def test_internal_depth_reset(self) -> None:
        """Test internal URLs are always depth 0."""
        frontier = Frontier([TARGET])
        frontier.enqueue("https://docs.example.com/api/intro", depth=3)
        assert frontier.depth_of("https://docs.example.com/api/intro") == 0

    def test_external_requires_follow(self) -> None:
        """Test external URLs need the follow flag and a depth within bound."""
        assert Frontier([TARGET]).enqueue("https://other.com/page", depth=1) is False

        frontier = Frontier([TARGET], LinkPolicy(follow_external_links=True, max_external_hops=1))
        assert frontier.enqueue("https://other.com/page", depth=1) is True
        assert frontier.enqueue("https://third.com/page", depth=2) is False
        assert frontier.depth_of("https://other.com/page") == 1

    def test_full_target_not_enqueued(self) -> None:
        """Test URLs of a target at its limit are skipped."""
        frontier = Frontier([TARGET], page_limit=1)
        frontier.enqueue(TARGET)
        url = frontier.claim_next()
        assert url is not None
        frontier.complete(url)

        assert frontier.enqueue("https://docs.example.com/api/intro") is False

    def test_finished_urls_never_requeued(self) -> None:
        """Test completed, failed and settled URLs stay out of the queue."""
        frontier = Frontier([TARGET])
        for path in ("a", "b", "c"):
            frontier.enqueue(f"{TARGET}/{path}")

        frontier.complete(frontier.claim_next() or "")
        frontier.fail(frontier.claim_next() or "", "RenderError: boom")
        frontier.release(frontier.claim_next() or "")

        for path in ("a", "b", "c"):
            assert frontier.enqueue(f"{TARGET}/{path}") is False
        assert frontier.queue_size == 0


class TestClaim:
    """Tests for Frontier.claim_next and state transitions."""

    def test_fifo_order(self) -> None:
        """Test URLs are claimed in insertion order."""
        frontier = Frontier([TARGET])
        frontier.enqueue(f"{TARGET}/b")
        frontier.enqueue(f"{TARGET}/a")

        assert frontier.claim_next() == f"{TARGET}/b"
        assert frontier.claim_next() == f"{TARGET}/a"
        assert frontier.claim_next() is None

    def test_states_stay_exclusive(self) -> None:
        """Test a URL lives in one state set at a time."""
        frontier = Frontier([TARGET])
        for path in ("a", "b", "c"):
            frontier.enqueue(f"{TARGET}/{path}")
        _assert_exclusive(frontier)

        first = frontier.claim_next()
        _assert_exclusive(frontier)
        assert first in frontier.in_flight

        assert first is not None
        frontier.complete(first)
        _assert_exclusive(frontier)
        assert frontier.pages_found == 3
        assert frontier.completed_count == 1
        assert frontier.in_flight_count == 0

    def test_claim_skips_full_target(self) -> None:
        """Test queued URLs of a full target are dropped at claim time."""
        frontier = Frontier([TARGET], page_limit=1)
        frontier.enqueue(f"{TARGET}/a")
        frontier.enqueue(f"{TARGET}/b")

        first = frontier.claim_next()
        assert first is not None
        frontier.complete(first)

        assert frontier.claim_next() is None
        assert frontier.is_known(f"{TARGET}/b") is True

    def test_clear_pending(self) -> None:
        """Test queued and in-flight URLs are forgotten."""
        frontier = Frontier([TARGET])
        frontier.enqueue(f"{TARGET}/a")
        frontier.enqueue(f"{TARGET}/b")
        frontier.claim_next()

        frontier.clear_pending()

        assert frontier.queue_size == 0
        assert frontier.in_flight_count == 0

    def test_errors_shape(self) -> None:
        """Test failed URLs are reported for the job record."""
        frontier = Frontier([TARGET])
        frontier.enqueue(TARGET)
        url = frontier.claim_next()
        assert url is not None
        frontier.fail(url, "RenderTimeoutError: too slow")

        errors = frontier.errors()

        assert len(errors) == 1
        assert errors[0]["url"] == TARGET
        assert errors[0]["error"] == "RenderTimeoutError: too slow"
        assert "timestamp" in errors[0]
        assert frontier.failed_count == 1


class TestQuotas:
    """Tests for per-target quota checks."""

    def test_unlimited(self) -> None:
        """Test no limit means always capacity."""
        frontier = Frontier([TARGET])
        assert frontier.can_grab_more() is True
        assert frontier.all_limits_met() is False
        assert frontier.has_capacity(TARGET) is True

    def test_limit_per_target(self) -> None:
        """Test limits are counted per target."""
        other = "https://blog.example.com/"
        frontier = Frontier([TARGET, other], page_limit=1)
        frontier.enqueue(f"{TARGET}/a")
        url = frontier.claim_next()
        assert url is not None
        frontier.complete(url)

        assert frontier.has_met_limit(TARGET) is True
        assert frontier.has_capacity(other) is True
        assert frontier.can_grab_more() is True
        assert frontier.all_limits_met() is False

        frontier.enqueue(f"{other}post")
        url = frontier.claim_next()
        assert url is not None
        frontier.complete(url)

        assert frontier.can_grab_more() is False
        assert frontier.all_limits_met() is True

    def test_in_flight_does_not_count(self) -> None:
        """Test only completed pages use quota."""
        frontier = Frontier([TARGET], page_limit=1)
        frontier.enqueue(f"{TARGET}/a")
        frontier.claim_next()
        assert frontier.has_capacity(TARGET) is True

    def test_zero_limit_means_unlimited(self) -> None:
        """Test non-positive limits disable quotas."""
        assert Frontier([TARGET], page_limit=0).page_limit is None
