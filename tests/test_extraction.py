"""
Tests for best-effort JSON extraction from model output.
"""

import unittest

from reading.extraction import extract_json, extract_tagged_json, find_fenced_blocks


class TestTaggedExtraction(unittest.TestCase):

    def test_single_block(self):
        text = 'Answer.\n\n```chapters\n[{"chunkStart": 1, "chunkEnd": 2, "title": "One"}]\n```'
        result = extract_tagged_json(text, "chapters")

        self.assertTrue(result.ok)
        self.assertEqual(result.value[0]["title"], "One")

    def test_blocks_are_concatenated(self):
        text = (
            '```chapters\n[{"title": "A"}]\n```\n'
            'more text\n'
            '```chapters\n{"title": "B"}\n```'
        )
        result = extract_tagged_json(text, "chapters")
        self.assertEqual([item["title"] for item in result.value], ["A", "B"])

    def test_malformed_block_keeps_valid_ones(self):
        text = '```chapters\n[{"title": "A"}]\n```\n```chapters\n[{"title": \n```'
        result = extract_tagged_json(text, "chapters")

        self.assertTrue(result.found)
        self.assertFalse(result.ok)
        self.assertEqual(result.value, [{"title": "A"}])

    def test_missing_block(self):
        result = extract_tagged_json("Just prose.", "chapters")
        self.assertFalse(result.found)
        self.assertIsNone(result.error)

    def test_other_tags_ignored(self):
        self.assertEqual(find_fenced_blocks('```json\n{}\n```', "chapters"), [])


class TestExtractJson(unittest.TestCase):

    def test_fenced_json(self):
        result = extract_json('Here:\n```json\n{"chapters": []}\n```')
        self.assertEqual(result.value, {"chapters": []})

    def test_bare_object_in_prose(self):
        result = extract_json('The list is {"chapters": [{"title": "X"}]} as requested.')
        self.assertTrue(result.ok)
        self.assertEqual(result.value["chapters"][0]["title"], "X")

    def test_bare_array(self):
        self.assertEqual(extract_json('[1, 2, 3]').value, [1, 2, 3])

    def test_nothing_found(self):
        result = extract_json("no structured data here")
        self.assertFalse(result.found)
        self.assertFalse(result.ok)


if __name__ == "__main__":
    unittest.main()
