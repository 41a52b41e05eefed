import unittest

from nas_agent.utils import decode_name, encode_name


class NameEncodingTests(unittest.TestCase):
    def test_round_trip_with_separators(self):
        for name in ("naspool/data", "naspool/projects/2024 reports", "docs/ü.txt"):
            self.assertEqual(decode_name(encode_name(name)), name)

    def test_token_is_url_safe(self):
        token = encode_name("naspool/data??>>")
        self.assertNotIn("/", token)
        self.assertNotIn("+", token)

    def test_missing_padding_is_tolerated(self):
        token = encode_name("naspool/a").rstrip("=")
        self.assertEqual(decode_name(token), "naspool/a")

    def test_invalid_tokens_decode_to_empty(self):
        self.assertEqual(decode_name(""), "")
        self.assertEqual(decode_name("!!not-base64!!"), "")
        # valid base64, invalid UTF-8
        self.assertEqual(decode_name("_w"), "")


if __name__ == "__main__":
    unittest.main()
