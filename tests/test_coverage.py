"""
Tests for the coverage tracker and the done() gate.
"""

import unittest

from reading.coverage import CoverageTracker, check_done, merge_into_ranges

LONG_OUTPUT = "A finished summary. " * 10


class TestCoverageTracker(unittest.TestCase):

    def test_mark_ignores_out_of_range(self):
        tracker = CoverageTracker(total_chunks=10)
        valid = tracker.mark([0, 1, 5, 11, 5])

        self.assertEqual(valid, [1, 5, 5])
        self.assertEqual(tracker.covered, {1, 5})
        self.assertAlmostEqual(tracker.ratio, 0.2)

    def test_unread_ranges(self):
        tracker = CoverageTracker(total_chunks=10)
        tracker.mark([1, 2, 3, 7])
        self.assertEqual(tracker.unread_ranges(), [(4, 6), (8, 10)])

    def test_required_count(self):
        self.assertEqual(CoverageTracker(100).required_count(0.8), 80)
        self.assertEqual(CoverageTracker(10).required_count(0.1), 1)
        self.assertEqual(CoverageTracker(3).required_count(0.5), 2)

    def test_empty_document_ratio(self):
        self.assertEqual(CoverageTracker(0).ratio, 0.0)


class TestMergeIntoRanges(unittest.TestCase):

    def test_merges_consecutive_indexes(self):
        self.assertEqual(merge_into_ranges([5, 1, 2, 3, 7, 2]), [(1, 3), (5, 5), (7, 7)])

    def test_empty(self):
        self.assertEqual(merge_into_ranges([]), [])


class TestCheckDone(unittest.TestCase):
    """The gate that decides whether a read may finish."""

    def test_gate_boundary_at_eighty_percent(self):
        """With 100 chunks at 0.8, 79 covered is refused and 80 accepted."""
        tracker = CoverageTracker(total_chunks=100)
        tracker.mark(range(1, 80))

        decision = check_done(tracker, LONG_OUTPUT, min_coverage=0.8)
        self.assertFalse(decision.accepted)
        self.assertIn("79/100", decision.message)
        self.assertIn("80-100", decision.message)
        self.assertIn("spawn_reader", decision.message)

        tracker.mark([80])
        decision = check_done(tracker, LONG_OUTPUT, min_coverage=0.8)
        self.assertTrue(decision.accepted)
        self.assertAlmostEqual(decision.coverage, 0.8)

    def test_small_documents_skip_coverage(self):
        tracker = CoverageTracker(total_chunks=10)
        decision = check_done(tracker, LONG_OUTPUT, min_coverage=0.8, gate_min_chunks=10)
        self.assertTrue(decision.accepted)

    def test_short_output_is_refused(self):
        tracker = CoverageTracker(total_chunks=20)
        tracker.mark(range(1, 21))

        decision = check_done(tracker, "too short", min_output_chars=100)
        self.assertFalse(decision.accepted)
        self.assertIn("update_output", decision.message)

    def test_coverage_checked_before_output(self):
        tracker = CoverageTracker(total_chunks=20)
        decision = check_done(tracker, "")
        self.assertIn("coverage", decision.message)

    def test_range_listing_is_limited(self):
        tracker = CoverageTracker(total_chunks=100)
        tracker.mark(range(2, 101, 2))

        decision = check_done(tracker, LONG_OUTPUT, range_display_limit=5)
        self.assertFalse(decision.accepted)
        self.assertIn("1, 3, 5, 7, 9", decision.message)
        self.assertIn("and 45 more ranges", decision.message)


if __name__ == "__main__":
    unittest.main()
