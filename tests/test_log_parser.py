"""
Tests for access-log line parsing.
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from s3log_exporter.log_parser import parse_log_line, parse_log_lines
from s3log_exporter.models import Observation


REAL_LINE = (
    '79a59df900b949e55d96a1e698fbacedfd6e09d98eacf8f8d5218e7cd47ef2be awsexamplebucket1 '
    '[06/Feb/2019:00:00:38 +0000] 192.0.2.3 '
    '79a59df900b949e55d96a1e698fbacedfd6e09d98eacf8f8d5218e7cd47ef2be 3E57427F3EXAMPLE '
    'REST.GET.VERSIONING - "GET /awsexamplebucket1?versioning HTTP/1.1" 200 - 113 - 7 - '
    '"-" "S3Console/0.4" - s9lzHYrFp76ZVxRcpX9+5cjAnEH2ROuNkd2BHfIa6UkFVdtjf5mKR3/eTPFvsiP/XV/VLi31234= '
    'SigV4 ECDHE-RSA-AES128-GCM-SHA256 AuthHeader awsexamplebucket1.s3.us-west-1.amazonaws.com TLSV1.2'
)


class TestParseLogLine(unittest.TestCase):
    """Test the single-line parser."""

    def test_sizes_mapped_to_fields(self):
        """First size field is the response size, second the request size."""
        self.assertEqual(
            parse_log_line('"GET /a" 200 ref 10 50 3"'),
            [Observation("GET", request_size=50, response_size=10)]
        )
        self.assertEqual(
            parse_log_line('"PUT /b" 200 ref 20 30 3"'),
            [Observation("PUT", request_size=30, response_size=20)]
        )

    def test_placeholder_response_size(self):
        """A '-' response size contributes nothing, the request size still counts."""
        result = parse_log_line('GET /x" 200 ua - 123 -')

        self.assertEqual(len(result), 1)
        self.assertEqual(result[0].method, "GET")
        self.assertIsNone(result[0].response_size)
        self.assertEqual(result[0].request_size, 123)

    def test_both_placeholders(self):
        result = parse_log_line('HEAD /x" 404 NoSuchKey - - 4')

        self.assertEqual(result, [Observation("HEAD", None, None)])

    def test_real_s3_line(self):
        result = parse_log_line(REAL_LINE)

        self.assertEqual(result, [Observation("GET", request_size=None, response_size=113)])

    def test_non_matching_line(self):
        """Garbage and unsupported methods are skipped silently."""
        self.assertEqual(parse_log_line(""), [])
        self.assertEqual(parse_log_line("not a log line at all"), [])
        self.assertEqual(parse_log_line('"DELETE /x" 204 - 0 0 1'), [])
        self.assertEqual(parse_log_line('"GET /x" abc - 1 2 3'), [])

    def test_multiple_records_in_one_line(self):
        line = '"GET /a" 200 - 1 2 3 junk "POST /b" 201 - 4 5 6'

        self.assertEqual(parse_log_line(line), [
            Observation("GET", request_size=2, response_size=1),
            Observation("POST", request_size=5, response_size=4),
        ])

    def test_bytes_input(self):
        self.assertEqual(
            parse_log_line(b'"PUT /k HTTP/1.1" 200 - 0 2048 9'),
            [Observation("PUT", request_size=2048, response_size=0)]
        )

    def test_invalid_utf8_does_not_raise(self):
        result = parse_log_line(b'\xff\xfe "GET /k" 200 - 7 8 9')

        self.assertEqual(result, [Observation("GET", request_size=8, response_size=7)])

    def test_idempotent(self):
        """Parsing the same line twice gives identical records."""
        for line in (REAL_LINE, 'GET /x" 200 ua - 123 -', "garbage"):
            self.assertEqual(parse_log_line(line), parse_log_line(line))


class TestParseLogLines(unittest.TestCase):

    def test_flattens_in_order(self):
        lines = ['"GET /a" 200 - 1 2 3', 'noise', b'"HEAD /b" 200 - 4 - 6']

        self.assertEqual(list(parse_log_lines(lines)), [
            Observation("GET", 2, 1),
            Observation("HEAD", None, 4),
        ])


if __name__ == '__main__':
    unittest.main()
