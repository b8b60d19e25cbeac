"""Tests for candle comment keys and window annotation."""

from core.chart.annotations import CommentBook, annotate_window, candle_key
from core.chart.builder import CandleBuilder
from core.chart.viewport import ViewportController, ZoomConfig
from core.periods import DAY_MS, PeriodCatalogue
from tests.fixtures import BASE_MS, create_events


class TestCandleKey:
    """Test suite for candle_key."""

    def setup_method(self):
        """Set up test fixtures."""
        self.builder = CandleBuilder()
        self.events = create_events([(5, 10), (-2, 70), (1, 86_400 + 30)])

    def test_fixed_interval_key_uses_bucket_start(self):
        series = self.builder.build(self.events, "1m", now_ms=BASE_MS + 90_000)

        assert candle_key("7", "1m", series.candles[0]) == f"7|1m|{BASE_MS}"
        assert candle_key("7", PeriodCatalogue.M1, series.candles[1]) == (
            f"7|1m|{BASE_MS + 60_000}"
        )

    def test_calendar_key_uses_display_date(self):
        series = self.builder.build(self.events, "all", now_ms=BASE_MS + 2 * DAY_MS)

        midday = BASE_MS + DAY_MS // 2
        assert candle_key("7", "all", series.candles[0]) == f"7|all|{midday}"
        assert candle_key("7", "all", series.candles[1]) == f"7|all|{midday + DAY_MS}"

    def test_key_survives_rebuild(self):
        first = self.builder.build(self.events, "1m", now_ms=BASE_MS + 90_000)
        later = self.builder.build(self.events, "1m", now_ms=BASE_MS + 10 * 60_000)

        assert candle_key("7", "1m", first.candles[1]) == candle_key(
            "7", "1m", later.candles[1]
        )


class TestCommentBook:
    """Test suite for CommentBook."""

    def test_set_and_get(self):
        book = CommentBook()
        book.set_comment("a|1m|0", "  good session ")

        assert book.get_comment("a|1m|0") == "good session"
        assert len(book) == 1

    def test_blank_text_deletes(self):
        book = CommentBook({"a|1m|0": "note"})

        book.set_comment("a|1m|0", "   ")

        assert book.get_comment("a|1m|0") is None
        assert len(book) == 0

    def test_initial_blank_comments_are_dropped(self):
        book = CommentBook({"a": "kept", "b": ""})
        assert list(book) == ["a"]

    def test_delete_comment(self):
        book = CommentBook({"a": "note"})

        assert book.delete_comment("a") is True
        assert book.delete_comment("a") is False
        assert book.to_dict() == {}


def test_annotate_window_flags_commented_candles():
    events = create_events([(1, 60 * i) for i in range(6)])
    series = CandleBuilder().build(events, "1m", now_ms=BASE_MS + 5 * 60_000)
    window = ViewportController(ZoomConfig(visible_count=3, min_count=1)).window(series)
    book = CommentBook({candle_key("7", "1m", series.candles[4]): "streak"})

    annotated = annotate_window(window, "7", "1m", book)

    assert annotated.annotated == (False, True, False)
    assert annotated.candles == window.candles
    assert window.annotated == ()
